from __future__ import annotations

from typing import Any


def insert_path(tree: dict[str, Any], dotted_path: str, value: Any) -> None:
    """Set ``value`` at ``dotted_path`` (``"reconnect.max_attempts"``) inside ``tree``."""

    segments = [segment.strip() for segment in dotted_path.split(".") if segment.strip()]
    if not segments:
        raise ValueError("Override keys must contain at least one non-empty segment")

    cursor = tree
    for segment in segments[:-1]:
        node = cursor.setdefault(segment, {})
        if not isinstance(node, dict):
            raise ValueError(
                f"Cannot override nested path '{dotted_path}': segment '{segment}' is already a value"
            )
        cursor = node

    leaf = segments[-1]
    if isinstance(cursor.get(leaf), dict):
        raise ValueError(f"Cannot override section '{dotted_path}' with a value")
    cursor[leaf] = value


def parse_overrides(pairs: list[str]) -> dict[str, Any]:
    """Turn repeated ``KEY=VALUE`` arguments into a nested mapping."""
    overrides: dict[str, Any] = {}
    for item in pairs:
        key, sep, value = item.partition("=")
        if sep == "":
            raise ValueError(f"--set requires KEY=VALUE format (got {item!r})")
        insert_path(overrides, key, value)
    return overrides
