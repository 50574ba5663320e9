"""Identifier validation and node path helpers."""

from __future__ import annotations

import hashlib
import re
import uuid

from coordlock.core.config import NodeInfo
from coordlock.core.constants import MAX_ID_LENGTH

_VALID_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
_UNSAFE_CONTENT_CHARS = re.compile(r"[^A-Za-z0-9.-]")


def is_valid_id(value: object) -> bool:
    """Return True if ``value`` can be used as a lock identifier.

    Identifiers become a single node name in the store, so path separators,
    whitespace and the relative names ``.`` / ``..`` are rejected.
    """
    if not isinstance(value, str):
        return False
    if not value or len(value) > MAX_ID_LENGTH:
        return False
    if value in (".", ".."):
        return False
    return _VALID_ID_PATTERN.match(value) is not None


def join_path(parent: str, *names: str) -> str:
    path = parent.rstrip("/")
    for name in names:
        path = f"{path}/{name.strip('/')}"
    return path or "/"


def node_name(path: str) -> str:
    """Last segment of a node path."""
    return path.rstrip("/").rsplit("/", 1)[-1]


def parent_path(path: str) -> str:
    parent = path.rstrip("/").rsplit("/", 1)[0]
    return parent or "/"


def _sanitize(value: str) -> str:
    return _UNSAFE_CONTENT_CHARS.sub("-", value.strip()) or "unknown"


def build_node_content(node_info: NodeInfo | None = None) -> str:
    """Build the identity string written into a freshly created lock node.

    Format: ``nodeId-location-randomHash``. The hash is the SHA-1 of a fresh
    UUID4, so every engine instance gets unique content. Characters outside
    ``[A-Za-z0-9.-]`` are replaced so the content never contains the
    recovery key separator.
    """
    info = node_info or NodeInfo.from_env()
    random_hash = hashlib.sha1(str(uuid.uuid4()).encode("ascii")).hexdigest()
    return f"{_sanitize(info.node_id)}-{_sanitize(info.location)}-{random_hash}"
