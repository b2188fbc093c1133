"""
Version comparison utilities for database version upgrades.
Handles dotted numeric version comparison and upgrade type detection.
"""
import re
from enum import Enum
from typing import Tuple


class UpgradeType(str, Enum):
    """Types of version changes."""

    PATCH = "patch"  # e.g., 16.1.0 -> 16.1.2
    MINOR = "minor"  # e.g., 16.1 -> 16.4
    MAJOR = "major"  # e.g., 15.x -> 16.x
    NONE = "none"
    DOWNGRADE = "downgrade"


_VERSION_CORE = re.compile(r"\d+(?:\.\d+)*")


def parse_version(version: str) -> Tuple[int, ...]:
    """
    Parse a version string into a tuple of integer components.

    Supports various version formats:
    - "16" -> (16,)
    - "16.4" -> (16, 4)
    - "8.0.36" -> (8, 0, 36)
    - "8.0.35-debian" -> (8, 0, 35)  # Ignores suffix
    - "percona-7.0.4" -> (7, 0, 4)  # Handles prefix

    Raises:
        ValueError: If no numeric version can be found
    """
    match = _VERSION_CORE.search(version or "")
    if not match:
        raise ValueError(f"Cannot parse version: {version}")
    return tuple(int(part) for part in match.group(0).split("."))


def _pad(v1: Tuple[int, ...], v2: Tuple[int, ...]) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    width = max(len(v1), len(v2))
    return v1 + (0,) * (width - len(v1)), v2 + (0,) * (width - len(v2))


def compare_versions(version1: str, version2: str) -> int:
    """
    Compare two version strings component by component.

    Missing components count as zero, so "16" == "16.0.0". The first
    non-equal component, scanning left to right, decides.

    Returns:
        -1 if version1 < version2
         0 if version1 == version2
         1 if version1 > version2

    Raises:
        ValueError: If versions cannot be parsed
    """
    try:
        v1, v2 = _pad(parse_version(version1), parse_version(version2))
    except ValueError as e:
        raise ValueError(f"Error comparing versions '{version1}' and '{version2}': {str(e)}")

    for left, right in zip(v1, v2):
        if left < right:
            return -1
        if left > right:
            return 1
    return 0


def is_downgrade(current: str, desired: str) -> bool:
    """
    Check if desired is strictly older than current.

    Raises:
        ValueError: If either version cannot be parsed
    """
    return compare_versions(current, desired) > 0


def get_upgrade_type(current: str, target: str) -> UpgradeType:
    """
    Determine the type of change between two versions.

    Returns:
        UpgradeType enum value
    """
    v1, v2 = _pad(parse_version(current), parse_version(target))
    if v1 == v2:
        return UpgradeType.NONE
    if v2 < v1:
        return UpgradeType.DOWNGRADE
    if v2[0] != v1[0]:
        return UpgradeType.MAJOR
    if len(v1) > 1 and v2[1] != v1[1]:
        return UpgradeType.MINOR
    return UpgradeType.PATCH
