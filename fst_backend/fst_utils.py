# Copyright (c) 2026 Stephen P Smith
# MIT License

import codecs
from typing import List, Tuple

# FST entry layout (12 bytes, big endian)
# Offset 0: type (1 byte)
# Offset 1: name offset into the name table (3 bytes)
# Offset 4: file offset / parent directory index (4 bytes)
# Offset 8: file length / last child index (4 bytes)
FST_ENTRY_SIZE = 12

NODE_TYPE_FILE = 0
NODE_TYPE_DIRECTORY = 1

NODE_TYPE_NAMES = {
    NODE_TYPE_FILE: 'file',
    NODE_TYPE_DIRECTORY: 'directory',
}

MAX_NAME_OFFSET = 0xFFFFFF
MAX_UINT32 = 0xFFFFFFFF

PATH_SEPARATOR = '/'


def align_offset(offset: int, alignment: int) -> int:
    """Round offset up to the next multiple of alignment"""
    if offset % alignment == 0:
        return offset
    return offset + alignment - (offset % alignment)


def is_known_encoding(encoding: str) -> bool:
    """Check if a codec name is available to the interpreter"""
    try:
        codecs.lookup(encoding)
    except LookupError:
        return False
    return True


def normalize_path(path: str) -> str:
    """Normalize a file system path to forward slashes without empty segments

    Rules:
    1. Backslashes are treated as separators
    2. Leading, trailing and repeated separators are dropped
    3. '.' segments are dropped

    Args:
        path: The path inside the file system (e.g. "docs\\readme.txt")

    Returns:
        The normalized path (e.g. "docs/readme.txt")

    Raises:
        ValueError: If the path is None, empty, whitespace-only, contains
                    a '..' segment or a NUL character.
    """
    if path is None:
        raise ValueError("Path must not be None")
    if not isinstance(path, str):
        raise ValueError(f"Path must be a string, got {type(path).__name__}")
    if not path.strip():
        raise ValueError("Path must not be empty or whitespace")
    if '\x00' in path:
        raise ValueError(f"Path must not contain NUL characters: {path!r}")

    segments = []
    for segment in path.replace('\\', PATH_SEPARATOR).split(PATH_SEPARATOR):
        if segment in ('', '.'):
            continue
        if segment == '..':
            raise ValueError(f"Parent references are not allowed: {path!r}")
        segments.append(segment)

    if not segments:
        raise ValueError(f"Path has no name segments: {path!r}")

    return PATH_SEPARATOR.join(segments)


def split_path(path: str) -> Tuple[List[str], str]:
    """Split a path into its directory segments and leaf name

    Returns:
        A tuple of (directory segments, leaf name).
    """
    segments = normalize_path(path).split(PATH_SEPARATOR)
    return segments[:-1], segments[-1]


def join_path(segments: List[str]) -> str:
    return PATH_SEPARATOR.join(segments)


def encode_name(name: str, encoding: str) -> bytes:
    """Encode a node name for the name table (without the NUL terminator)"""
    return name.encode(encoding)


def name_sort_key(name: str, encoding: str) -> Tuple[bytes, bytes]:
    """Collation key for canonical child ordering

    Names are compared by the byte values of their encoded form after
    folding ASCII letters to upper case. The unfolded bytes break ties so
    "A" and "a" still have a fixed order.
    """
    raw = encode_name(name, encoding)
    return raw.upper(), raw
