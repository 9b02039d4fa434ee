#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
GameCube FST Handler
Core functionality for reading, editing and writing the File System Table of GameCube disc images
"""

import copy
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .fst_utils import (
    NODE_TYPE_DIRECTORY, NODE_TYPE_FILE, FST_ENTRY_SIZE,
    MAX_NAME_OFFSET, MAX_UINT32,
    align_offset, encode_name, is_known_encoding, join_path, split_path
)

from .directory import (
    DirectoryNode, FileNode, FileSystemNode, RawNode,
    resolve_node, read_root_record, read_raw_nodes, node_table_size,
    get_child_node, get_child_directory_node, get_directories, get_files,
    iter_nodes, sort_children, flatten, check_flat_entries, format_tree, describe_type,
    FSTError, FormatError, ArgumentError, DuplicateEntryError, NotFoundError, InvariantError
)

from .stream import AddressRange, BinaryCursor

logger = logging.getLogger(__name__)


@dataclass
class FileEntry:
    """Path and payload of one file in the table"""
    path: str
    data: Optional[bytes] = None


class FileSystem:
    """Handler for the FST region of a GameCube disc image"""

    DEFAULT_ALIGNMENT = 4
    # Retail discs store names in Shift-JIS; ASCII names encode identically
    DEFAULT_ENCODING = 'shift_jis'

    def __init__(self, alignment: int = DEFAULT_ALIGNMENT, encoding: str = DEFAULT_ENCODING):
        if not isinstance(alignment, int) or alignment < 1:
            raise ArgumentError(f"Alignment must be an integer > 0, got {alignment!r}")
        if not is_known_encoding(encoding):
            raise ArgumentError(f"Unknown name encoding: {encoding}")

        self.alignment = alignment
        self.encoding = encoding
        self.root = DirectoryNode(last_child_index=1)
        # Verbatim bytes of the last deserialized region; not refreshed by edits
        self.raw: Optional[bytes] = None
        self.address_range: Optional[AddressRange] = None
        self.node_table_range: Optional[AddressRange] = None
        self.name_table_range: Optional[AddressRange] = None
        logger.debug(f"Initializing FileSystem (alignment={alignment}, encoding={encoding})")

    def __str__(self):
        return format_tree(self.root)

    @classmethod
    def from_bytes(cls, data: bytes, alignment: int = DEFAULT_ALIGNMENT,
                   encoding: str = DEFAULT_ENCODING) -> 'FileSystem':
        """Deserialize a table (and its files) from an in-memory image starting at offset 0"""
        fs = cls(alignment, encoding)
        fs.deserialize(BinaryCursor(io.BytesIO(data)))
        return fs

    def to_bytes(self) -> bytes:
        """Serialize the table and file payloads into a new in-memory image starting at offset 0"""
        buffer = io.BytesIO()
        self.serialize(BinaryCursor(buffer))
        return buffer.getvalue()

    def copy(self) -> 'FileSystem':
        """Deep copy, for callers that want to edit a clone and swap it in on success"""
        return copy.deepcopy(self)

    # Deserialization

    def deserialize(self, cursor: BinaryCursor, read_files: bool = True):
        """
        Read the FST region starting at the cursor position.

        The root record is read on its own to learn the node count, then the
        cursor is rewound and all records are read in bulk. The nested tree is
        rebuilt with a stack of open directories, names are resolved from the
        name table, and finally the file payloads are loaded.

        Args:
            cursor: Cursor positioned at the start of the FST region.
            read_files: Whether to load file payloads (see read_all_files).

        Raises:
            FormatError: If a structural field is malformed or out of range.
            StreamError: If a seek or read goes past the end of the stream.
        """
        start = cursor.bookmark()
        logger.info(f"Reading FST at 0x{start:x}")

        _, count = read_root_record(cursor)
        cursor.seek(start)
        records = read_raw_nodes(cursor, count)
        names_start = cursor.bookmark()

        root = DirectoryNode(parent_index=records[0].field_a, last_child_index=count)
        names_end = self._build_tree(cursor, root, records, names_start)

        region = AddressRange(start, names_end)
        cursor.seek(start)
        raw = cursor.read_bytes(region.size)

        if read_files:
            self._load_payloads(cursor, root)

        # Only replace state once the region and payloads have been read
        self.root = root
        self.raw = raw
        self.address_range = region
        self.node_table_range = AddressRange(start, names_start)
        self.name_table_range = AddressRange(names_start, names_end)
        logger.debug(f"FST parsed: {count} nodes, nodes {self.node_table_range}, "
                     f"names {self.name_table_range}")

    def _build_tree(self, cursor: BinaryCursor, root: DirectoryNode,
                    records: List[RawNode], names_start: int) -> int:
        """
        Rebuild the nested tree below root from the flat records.

        Returns:
            The end address of the name table (high-water mark of name reads).
        """
        count = len(records)
        stack = [(0, root)]
        names_end = names_start

        for index in range(1, count):
            while index >= stack[-1][1].last_child_index:
                stack.pop()
            parent_index, parent = stack[-1]

            raw = records[index]
            node = resolve_node(raw)
            parent.children.append(node)

            cursor.seek(names_start + node.name_offset)
            try:
                node.name = cursor.read_cstring(self.encoding)
            except UnicodeDecodeError as e:
                logger.error(f"Undecodable name for node {index} at name offset 0x{node.name_offset:x}")
                raise FormatError(f"Node {index} has an undecodable name: {e}") from e
            if not node.name:
                raise FormatError(f"Node {index} has an empty name")
            names_end = max(names_end, cursor.tell())

            logger.debug(f"[{index}] {describe_type(raw.node_type)} '{node.name}'")

            if node.node_type == NODE_TYPE_DIRECTORY:
                if node.last_child_index < index or node.last_child_index > count:
                    logger.critical(f"Directory '{node.name}' at index {index} has last child index "
                                    f"{node.last_child_index} outside [{index}, {count}]")
                    raise FormatError(f"Directory '{node.name}' at index {index} has last child index "
                                      f"{node.last_child_index} outside [{index}, {count}]")
                if node.last_child_index > parent.last_child_index:
                    raise FormatError(f"Directory '{node.name}' at index {index} extends past its "
                                      f"parent's last child index {parent.last_child_index}")
                if node.parent_index != parent_index:
                    logger.warning(f"Directory '{node.name}' at index {index} records parent "
                                   f"{node.parent_index}, expected {parent_index}")
                stack.append((index, node))

        return names_end

    def read_all_files(self, cursor: BinaryCursor):
        """
        Load the payload of every file node, depth first.

        Each read seeks the shared cursor, so this must not run concurrently
        with other reads on the same stream.

        Payloads are read into a scratch list and only assigned once every
        read has succeeded, so a failure leaves the current data in place.

        Raises:
            StreamError: If a payload lies outside the stream.
        """
        self._load_payloads(cursor, self.root)

    def _load_payloads(self, cursor: BinaryCursor, root: DirectoryNode):
        files = [(path, node) for path, node in iter_nodes(root) if node.node_type == NODE_TYPE_FILE]
        logger.info(f"Reading {len(files)} file(s)")
        loaded = []
        for path, node in files:
            logger.debug(f"(0x{node.offset:x}:0x{node.offset + node.length:x}) -> {path}")
            cursor.seek(node.offset)
            loaded.append(cursor.read_bytes(node.length))
        for (_, node), data in zip(files, loaded):
            node.data = data

    # Serialization

    def serialize(self, cursor: BinaryCursor) -> AddressRange:
        """
        Write the node array, name table and file payloads at the cursor position.

        Children are sorted into canonical order first. All offsets are
        computed before any byte is written, so the emitted table always
        matches the payload layout.

        Returns:
            The address range of the table region (node array + name table).

        Raises:
            FSTError: If a file has no loaded data or a value does not fit its field.
            InvariantError: If the flattened tree fails its self-check.
        """
        start = cursor.bookmark()
        logger.info(f"Writing FST at 0x{start:x}")

        sort_children(self.root, self.encoding)
        entries = flatten(self.root)
        check_flat_entries(entries)

        name_table = self._build_name_table(entries)
        names_start = start + node_table_size(len(entries))
        names_end = names_start + len(name_table)

        # Dry run: place every payload before emitting anything
        position = names_end
        placements = []
        for node, _ in entries:
            if node.node_type != NODE_TYPE_FILE:
                continue
            if node.data is None:
                raise FSTError(f"File '{node.name}' has no data loaded")
            position = align_offset(position, self.alignment)
            if position > MAX_UINT32 or len(node.data) > MAX_UINT32:
                raise FSTError(f"File '{node.name}' at 0x{position:x} does not fit in 32-bit offsets")
            placements.append((node, position, len(node.data)))
            position += len(node.data)
        for node, offset, length in placements:
            node.offset = offset
            node.length = length

        for node, parent_index in entries:
            RawNode.from_node(node, parent_index).write(cursor)
        cursor.write_bytes(name_table)

        for node, offset, _ in placements:
            cursor.align(self.alignment)
            if cursor.tell() != offset:
                raise InvariantError(f"File '{node.name}' written at 0x{cursor.tell():x}, planned 0x{offset:x}")
            logger.debug(f"{node.name} -> (0x{offset:x}:0x{offset + node.length:x})")
            cursor.write_bytes(node.data)

        self.address_range = AddressRange(start, names_end)
        self.node_table_range = AddressRange(start, names_start)
        self.name_table_range = AddressRange(names_start, names_end)
        logger.info(f"FST written: {len(entries)} nodes, {len(placements)} file(s), "
                    f"region {self.address_range}")
        return self.address_range

    def _build_name_table(self, entries) -> bytes:
        """Concatenate non-root names in flat order and assign their offsets"""
        table = bytearray()
        self.root.name_offset = 0
        for node, _ in entries[1:]:
            if len(table) > MAX_NAME_OFFSET:
                raise FSTError(f"Name table exceeds 24-bit offsets at '{node.name}'")
            node.name_offset = len(table)
            table += encode_name(node.name, self.encoding) + b'\x00'
        return bytes(table)

    # Mutation API

    def _split(self, path: str):
        try:
            return split_path(path)
        except ValueError as e:
            raise ArgumentError(str(e)) from e

    def _validate_name(self, name: str):
        try:
            encode_name(name, self.encoding)
        except UnicodeEncodeError as e:
            raise ArgumentError(f"Name '{name}' cannot be encoded as {self.encoding}") from e

    def add_file(self, path: str, data: bytes, overwrite: bool = False) -> FileNode:
        """Add a file to the tree, creating missing parent directories

        Args:
            path: Path inside the file system ('/' or '\\' separated)
            data: File payload
            overwrite: Replace an existing node with the same name

        Returns:
            The new FileNode.

        Raises:
            ArgumentError: If the path is empty or invalid.
            DuplicateEntryError: If the name exists and overwrite is False, or
                                 a parent segment names an existing file.
        """
        if data is None or isinstance(data, (int, str)):
            raise ArgumentError(f"File data for '{path}' must be bytes, got {type(data).__name__}")
        try:
            data = bytes(data)
        except TypeError as e:
            raise ArgumentError(f"File data for '{path}' must be bytes, got {type(data).__name__}") from e

        segments, name = self._split(path)
        for segment in segments + [name]:
            self._validate_name(segment)

        # Check the whole path first so a collision leaves the tree unchanged
        directory = self.root
        missing = []
        for i, segment in enumerate(segments):
            child = get_child_directory_node(directory, segment)
            if child is None:
                if get_child_node(directory, segment) is not None:
                    raise DuplicateEntryError(f"'{join_path(segments[:i + 1])}' is a file, not a directory")
                missing = segments[i:]
                break
            directory = child

        if not missing:
            existing = get_child_node(directory, name)
            if existing is not None and not overwrite:
                logger.warning(f"Refusing to overwrite '{path}'")
                raise DuplicateEntryError(f"'{join_path(segments + [name])}' already exists")

        for segment in missing:
            logger.debug(f"Creating directory '{segment}'")
            child = DirectoryNode(name=segment)
            directory.children.append(child)
            directory = child

        node = FileNode(name=name, length=len(data), data=data)
        existing = get_child_node(directory, name)
        if existing is not None:
            directory.children[directory.children.index(existing)] = node
            logger.info(f"Replaced '{join_path(segments + [name])}' ({len(data)} bytes)")
        else:
            directory.children.append(node)
            logger.info(f"Added '{join_path(segments + [name])}' ({len(data)} bytes)")
        return node

    def add_files(self, paths: Iterable[Union[str, Path]], root: Union[str, Path],
                  overwrite: bool = False) -> List[FileNode]:
        """
        Add host files, naming each by its path relative to root.

        Stops at the first failure. Files added before the failure stay in
        the tree.

        Raises:
            NotFoundError: If a source path is missing or not a regular file.
            ArgumentError: If a source path is not below root.
            DuplicateEntryError: As for add_file.
        """
        root = Path(root)
        added = []
        for source in paths:
            source = Path(source)
            if not source.is_file():
                logger.error(f"Source file not found: {source}")
                raise NotFoundError(f"Source file not found: {source}")
            try:
                relative = source.relative_to(root)
            except ValueError as e:
                raise ArgumentError(f"'{source}' is not below '{root}'") from e
            added.append(self.add_file(relative.as_posix(), source.read_bytes(), overwrite))
        return added

    def remove_node(self, path: str) -> bool:
        """Remove a file or directory

        Returns:
            True if the node was removed, False if any part of the path is missing.
        """
        segments, name = self._split(path)
        directory = self.root
        for segment in segments:
            directory = get_child_directory_node(directory, segment)
            if directory is None:
                logger.debug(f"Nothing to remove at '{path}'")
                return False

        node = get_child_node(directory, name)
        if node is None:
            logger.debug(f"Nothing to remove at '{path}'")
            return False
        directory.children.remove(node)
        logger.info(f"Removed '{join_path(segments + [name])}'")
        return True

    # Queries

    def find_node(self, path: str) -> Optional[FileSystemNode]:
        """Exact lookup of a file or directory, None if absent"""
        segments, name = self._split(path)
        directory = self.root
        for segment in segments:
            directory = get_child_directory_node(directory, segment)
            if directory is None:
                return None
        return get_child_node(directory, name)

    @staticmethod
    def get_child_directory_node(directory: DirectoryNode, name: str) -> Optional[DirectoryNode]:
        return get_child_directory_node(directory, name)

    def get_directories(self) -> List[DirectoryNode]:
        return get_directories(self.root)

    def get_files(self) -> List[FileNode]:
        return get_files(self.root)

    def file_entries(self) -> List[FileEntry]:
        """Paths and payloads of all files in depth-first order"""
        return [FileEntry(path, node.data) for path, node in iter_nodes(self.root)
                if node.node_type == NODE_TYPE_FILE]

    def extract_files(self, destination: Union[str, Path]) -> int:
        """
        Write every file below a host directory, recreating the tree.

        Returns:
            The number of files written.

        Raises:
            FSTError: If a file has no loaded data.
        """
        destination = Path(destination)
        logger.info(f"Extracting files to '{destination}'")
        count = 0
        for path, node in iter_nodes(self.root):
            target = destination / path
            if node.node_type == NODE_TYPE_DIRECTORY:
                target.mkdir(parents=True, exist_ok=True)
                continue
            if node.data is None:
                raise FSTError(f"File '{path}' has no data loaded")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(node.data)
            logger.debug(f"{path} -> {target}")
            count += 1
        return count

    def node_count(self) -> int:
        """Total number of flat entries, root included"""
        return 1 + sum(1 for _ in iter_nodes(self.root))

    def table_size(self) -> int:
        """Size in bytes of the node array plus name table for the current tree"""
        names = sum(len(encode_name(node.name, self.encoding)) + 1 for _, node in iter_nodes(self.root))
        return self.node_count() * FST_ENTRY_SIZE + names
