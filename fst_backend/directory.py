#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
FST Node Model and Tree Operations

This module provides the in-memory representation of a GameCube File System
Table, including:
- The error types raised by the FST backend.
- Raw 12-byte node records and their resolution into File/Directory nodes.
- Directory and file nodes forming a strictly top-down owned tree.
- Lookup, traversal and canonical ordering of directory children.
- Flattening a tree into the depth-first pre-order node array.

It serves as the tree layer used by the FileSystem handler.
"""

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Iterator, List, Optional, Tuple

from .fst_utils import (
    NODE_TYPE_FILE, NODE_TYPE_DIRECTORY, NODE_TYPE_NAMES,
    FST_ENTRY_SIZE, name_sort_key
)

logger = logging.getLogger(__name__)


class FSTError(Exception):
    """Base exception for FST operations"""
    pass

class FormatError(FSTError):
    """Raised when a structural field of the table is malformed or out of range"""
    pass

class StreamError(FSTError, OSError):
    """Raised on stream failures or a premature end of stream"""
    pass

class ArgumentError(FSTError, ValueError):
    """Raised for invalid paths or options"""
    pass

class DuplicateEntryError(FSTError, FileExistsError):
    """Raised when adding a node whose name is already taken"""
    pass

class NotFoundError(FSTError, FileNotFoundError):
    """Raised when a source file for a bulk add does not exist"""
    pass

class InvariantError(FSTError):
    """Raised when the serializer's self-check fails (internal defect)"""
    pass


@dataclass
class FileSystemNode:
    """Common fields of File and Directory nodes"""
    node_type: ClassVar[int] = -1
    name: str = ''
    name_offset: int = 0

    @property
    def is_directory(self) -> bool:
        return self.node_type == NODE_TYPE_DIRECTORY


@dataclass
class DirectoryNode(FileSystemNode):
    """
    Directory entry owning an ordered list of children.

    Attributes:
        children: Child nodes in on-disk order.
        parent_index: Flat index of the enclosing directory.
        last_child_index: Flat index one past the last transitive descendant.
                          For the root this is the total node count.
    """
    node_type: ClassVar[int] = NODE_TYPE_DIRECTORY
    children: List[FileSystemNode] = field(default_factory=list)
    parent_index: int = 0
    last_child_index: int = 0

    def __str__(self):
        return f"{self.name or '<root>'}/ (next={self.last_child_index})"


@dataclass
class FileNode(FileSystemNode):
    """
    File entry pointing at its payload in the disc image.

    The payload is loaded by a separate bulk pass and is None until then.
    """
    node_type: ClassVar[int] = NODE_TYPE_FILE
    offset: int = 0
    length: int = 0
    data: Optional[bytes] = field(default=None, repr=False)

    def __str__(self):
        return f"{self.name} (0x{self.offset:x}:0x{self.offset + self.length:x})"


@dataclass(frozen=True)
class RawNode:
    """
    Generic 12-byte FST record before tag dispatch.

    field_a holds the file offset (files) or parent index (directories).
    field_b holds the file length (files) or last child index (directories).
    """
    node_type: int
    name_offset: int
    field_a: int
    field_b: int

    @classmethod
    def read(cls, cursor) -> 'RawNode':
        """Read one record at the cursor position"""
        return cls(
            node_type=cursor.read_uint8(),
            name_offset=cursor.read_uint24(),
            field_a=cursor.read_uint32(),
            field_b=cursor.read_uint32(),
        )

    @classmethod
    def from_node(cls, node: FileSystemNode, parent_index: int = 0) -> 'RawNode':
        if node.node_type == NODE_TYPE_DIRECTORY:
            return cls(NODE_TYPE_DIRECTORY, node.name_offset, parent_index, node.last_child_index)
        return cls(NODE_TYPE_FILE, node.name_offset, node.offset, node.length)

    def write(self, cursor):
        cursor.write_uint8(self.node_type)
        cursor.write_uint24(self.name_offset)
        cursor.write_uint32(self.field_a)
        cursor.write_uint32(self.field_b)


def resolve_node(raw: RawNode) -> FileSystemNode:
    """
    Resolve a raw record into its File or Directory node.

    The name is left empty; it is read from the name table afterwards.

    Raises:
        FormatError: If the type tag is neither file nor directory.
    """
    if raw.node_type == NODE_TYPE_FILE:
        return FileNode(name_offset=raw.name_offset, offset=raw.field_a, length=raw.field_b)
    if raw.node_type == NODE_TYPE_DIRECTORY:
        return DirectoryNode(name_offset=raw.name_offset, parent_index=raw.field_a,
                             last_child_index=raw.field_b)
    raise FormatError(f"Unknown node type 0x{raw.node_type:02x}")


def read_root_record(cursor) -> Tuple[RawNode, int]:
    """
    Read only the root record and return it with the announced node count.

    Raises:
        FormatError: If the root is not a directory or announces no nodes.
    """
    root = RawNode.read(cursor)
    if root.node_type != NODE_TYPE_DIRECTORY:
        logger.critical(f"Root record has type 0x{root.node_type:02x}")
        raise FormatError(f"Root record must be a directory, got type 0x{root.node_type:02x}")
    if root.field_b == 0:
        logger.critical("Root record announces zero nodes")
        raise FormatError("Root record announces zero nodes")
    return root, root.field_b


def read_raw_nodes(cursor, count: int) -> List[RawNode]:
    """Bulk-read count consecutive records starting at the cursor position"""
    return [RawNode.read(cursor) for _ in range(count)]


def node_table_size(count: int) -> int:
    return count * FST_ENTRY_SIZE


def get_child_node(directory: DirectoryNode, name: str) -> Optional[FileSystemNode]:
    """First child of any type with an exactly matching name"""
    for child in directory.children:
        if child.name == name:
            return child
    return None


def get_child_directory_node(directory: DirectoryNode, name: str) -> Optional[DirectoryNode]:
    """
    Single-level lookup of a child directory.

    Matching is case-sensitive and returns the first hit. Files with the
    same name are ignored.
    """
    for child in directory.children:
        if child.node_type == NODE_TYPE_DIRECTORY and child.name == name:
            return child
    return None


def iter_nodes(directory: DirectoryNode, path: str = '') -> Iterator[Tuple[str, FileSystemNode]]:
    """
    Depth-first pre-order walk below a directory.

    Yields:
        Tuples of (path relative to the walk start, node). The starting
        directory itself is not yielded.
    """
    for child in directory.children:
        child_path = f"{path}/{child.name}" if path else child.name
        yield child_path, child
        if child.node_type == NODE_TYPE_DIRECTORY:
            yield from iter_nodes(child, child_path)


def get_directories(directory: DirectoryNode) -> List[DirectoryNode]:
    return [node for _, node in iter_nodes(directory) if node.node_type == NODE_TYPE_DIRECTORY]


def get_files(directory: DirectoryNode) -> List[FileNode]:
    return [node for _, node in iter_nodes(directory) if node.node_type == NODE_TYPE_FILE]


def count_descendants(directory: DirectoryNode) -> int:
    """Count all transitive descendants of a directory"""
    count = 0
    for child in directory.children:
        count += 1
        if child.node_type == NODE_TYPE_DIRECTORY:
            count += count_descendants(child)
    return count


def sort_children(directory: DirectoryNode, encoding: str):
    """Recursively sort every directory's children into canonical order"""
    directory.children.sort(key=lambda node: name_sort_key(node.name, encoding))
    for child in directory.children:
        if child.node_type == NODE_TYPE_DIRECTORY:
            sort_children(child, encoding)


def flatten(root: DirectoryNode) -> List[Tuple[FileSystemNode, int]]:
    """
    Flatten a tree into its depth-first pre-order node array.

    Each directory gets its parent_index and last_child_index updated on the
    way. The root is entry 0 and its last_child_index is the node count.

    Returns:
        A list of (node, parent index) tuples indexed by flat position.
    """
    entries: List[Tuple[FileSystemNode, int]] = []

    def visit(node: FileSystemNode, parent_index: int):
        index = len(entries)
        entries.append((node, parent_index))
        if node.node_type == NODE_TYPE_DIRECTORY:
            node.parent_index = parent_index
            for child in node.children:
                visit(child, index)
            node.last_child_index = len(entries)

    visit(root, 0)
    return entries


def check_flat_entries(entries: List[Tuple[FileSystemNode, int]]):
    """
    Verify a flattened tree before it is written.

    Raises:
        InvariantError: If a directory's last child index does not cover
                        exactly its descendants, or a non-root node has no name.
    """
    if not entries or entries[0][0].node_type != NODE_TYPE_DIRECTORY:
        raise InvariantError("Flattened tree must start with a root directory")

    for index, (node, _) in enumerate(entries):
        if index > 0 and not node.name:
            raise InvariantError(f"Node at index {index} has an empty name")
        if node.node_type == NODE_TYPE_DIRECTORY:
            expected = index + 1 + count_descendants(node)
            if node.last_child_index != expected:
                logger.error(f"Directory '{node.name}' at index {index}: last child index "
                             f"{node.last_child_index}, expected {expected}")
                raise InvariantError(f"Directory '{node.name}' at index {index} has last child index "
                                     f"{node.last_child_index}, expected {expected}")


def format_tree(directory: DirectoryNode, depth: int = 0) -> str:
    """Indented tree listing for debug output"""
    result = (depth * "    ") + str(directory) + "\n"
    for child in directory.children:
        if child.node_type == NODE_TYPE_DIRECTORY:
            result += format_tree(child, depth + 1)
        else:
            result += ((depth + 1) * "    ") + str(child) + "\n"
    return result


def describe_type(node_type: int) -> str:
    return NODE_TYPE_NAMES.get(node_type, f"unknown(0x{node_type:02x})")
