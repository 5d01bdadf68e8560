"""
JSON document helpers shared by the patch engines.

Documents are plain Python JSON values (dict / list / str / int / float /
bool / None). This module provides strict parsing, deep copy, JSON equality
and RFC 6901 JSON Pointer handling.
"""

import copy
import json
import re
from typing import Any, List, Union

from ehr_platform.exceptions import MalformedDocumentError


Document = Any

_ARRAY_INDEX = re.compile(r"^(0|[1-9][0-9]*)$")
_BAD_ESCAPE = re.compile(r"~(?![01])")

END_OF_ARRAY = "-"

# Object / array nesting limit for accepted documents.
MAX_DEPTH = 100


class PointerError(ValueError):
    """Base for pointer failures; the patch engine maps these onto operation errors."""


class InvalidPointerError(PointerError):
    """Pointer syntax is wrong, or it walks through a scalar."""


class PathNotFoundError(PointerError):
    """Pointer is well-formed but nothing lives at that location."""


# ============================================
# Parsing / equality
# ============================================

def _unique_keys(pairs):
    obj = {}
    for key, value in pairs:
        if key in obj:
            raise ValueError(f"duplicate object key {key!r}")
        obj[key] = value
    return obj


def _reject_constant(name):
    raise ValueError(f"non-standard JSON constant {name}")


def parse_json(data: Union[bytes, bytearray, str]) -> Document:
    """
    Strictly parse a JSON text.

    Duplicate object keys and NaN / Infinity are rejected.

    Raises:
        MalformedDocumentError: the input is not a single well-formed JSON value.
    """
    if isinstance(data, (bytes, bytearray)):
        try:
            data = bytes(data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedDocumentError(f"body is not UTF-8: {e}") from e
    try:
        doc = json.loads(data, object_pairs_hook=_unique_keys, parse_constant=_reject_constant)
    except RecursionError as e:
        raise MalformedDocumentError("document nesting is too deep") from e
    except ValueError as e:
        raise MalformedDocumentError(str(e)) from e
    check_depth(doc)
    return doc


def nesting_depth(doc: Document) -> int:
    """Deepest level of object / array nesting; a scalar is 0."""
    deepest = 0
    stack = [(doc, 0)]
    while stack:
        value, depth = stack.pop()
        if isinstance(value, dict):
            children = value.values()
        elif isinstance(value, list):
            children = value
        else:
            continue
        depth += 1
        deepest = max(deepest, depth)
        stack.extend((child, depth) for child in children)
    return deepest


def check_depth(doc: Document, limit: int = MAX_DEPTH) -> None:
    """
    Raises:
        MalformedDocumentError: doc nests objects / arrays deeper than limit.
    """
    if nesting_depth(doc) > limit:
        raise MalformedDocumentError(f"document nesting is too deep (limit {limit})")


def clone(doc: Document) -> Document:
    check_depth(doc)
    return copy.deepcopy(doc)


def deep_equal(a: Document, b: Document) -> bool:
    """
    JSON value equality.

    Numbers compare by value (1 == 1.0) but booleans never equal numbers.
    Object member order is irrelevant; array order matters.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))
    return a is None and b is None


# ============================================
# JSON Pointer (RFC 6901)
# ============================================

def parse_pointer(path: str) -> List[str]:
    """Split a pointer into unescaped reference tokens. "" is the whole document."""
    if not isinstance(path, str):
        raise InvalidPointerError("pointer must be a string")
    if path == "":
        return []
    if not path.startswith("/"):
        raise InvalidPointerError(f"pointer {path!r} must start with '/'")
    tokens = []
    for raw in path[1:].split("/"):
        if _BAD_ESCAPE.search(raw):
            raise InvalidPointerError(f"invalid escape sequence in {raw!r}")
        tokens.append(raw.replace("~1", "/").replace("~0", "~"))
    return tokens


def format_pointer(tokens: List[str]) -> str:
    return "".join("/" + t.replace("~", "~0").replace("/", "~1") for t in tokens)


def array_index(token: str, length: int, allow_end: bool = False) -> int:
    """
    Convert a reference token into a list index.

    allow_end permits "-" and an index equal to length (insertion points).
    """
    if token == END_OF_ARRAY:
        if allow_end:
            return length
        raise PathNotFoundError("'-' refers to a nonexistent element")
    if not _ARRAY_INDEX.match(token):
        raise InvalidPointerError(f"invalid array index {token!r}")
    index = int(token)
    limit = length if allow_end else length - 1
    if index > limit:
        raise PathNotFoundError(f"array index {index} out of range (length {length})")
    return index


def resolve_tokens(doc: Document, tokens: List[str]) -> Document:
    current = doc
    for depth, token in enumerate(tokens):
        if isinstance(current, dict):
            if token not in current:
                raise PathNotFoundError(f"member {format_pointer(tokens[:depth + 1])} does not exist")
            current = current[token]
        elif isinstance(current, list):
            current = current[array_index(token, len(current))]
        else:
            raise InvalidPointerError(
                f"cannot traverse into scalar at {format_pointer(tokens[:depth])}"
            )
    return current


def resolve_pointer(doc: Document, path: str) -> Document:
    """Return the value at path; raises PathNotFoundError / InvalidPointerError."""
    return resolve_tokens(doc, parse_pointer(path))


def is_pointer_prefix(prefix: str, path: str) -> bool:
    """True if path equals prefix or lies inside the subtree prefix points at."""
    head = parse_pointer(prefix)
    tail = parse_pointer(path)
    return len(head) <= len(tail) and tail[:len(head)] == head
