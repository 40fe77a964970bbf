from __future__ import annotations

import re

_VERSION_PATTERN = re.compile(r"^\d+(\.\d+)*$")


def parse_version(version: str) -> tuple[int, ...]:
    """Split a dot-separated numeric version into integer segments."""

    if not isinstance(version, str) or not _VERSION_PATTERN.match(version.strip()):
        raise ValueError(f"Invalid version string: {version!r}")
    return tuple(int(segment) for segment in version.strip().split("."))


def is_valid_version(version: object) -> bool:
    return isinstance(version, str) and bool(_VERSION_PATTERN.match(version.strip()))


def coerce_version(value: object) -> str | None:
    """Return ``value`` as a version string, or None when it cannot be one.

    JSON numbers such as ``1`` or ``1.5`` are accepted as their decimal text.
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if is_valid_version(value):
        return str(value).strip()
    return None


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1; missing trailing segments count as zero, so "1" < "1.0.1"."""

    left_parts = parse_version(left)
    right_parts = parse_version(right)
    width = max(len(left_parts), len(right_parts))
    padded_left = left_parts + (0,) * (width - len(left_parts))
    padded_right = right_parts + (0,) * (width - len(right_parts))
    if padded_left > padded_right:
        return 1
    if padded_left < padded_right:
        return -1
    return 0


__all__ = ["coerce_version", "compare_versions", "is_valid_version", "parse_version"]
