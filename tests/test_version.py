"""
Tests for version comparison.
"""
import pytest

from dboperator.utils.version import (
    UpgradeType,
    compare_versions,
    get_upgrade_type,
    is_downgrade,
    parse_version,
)


def test_parse_version_ignores_prefix_and_suffix():
    assert parse_version("16") == (16,)
    assert parse_version("8.0.35-debian") == (8, 0, 35)
    assert parse_version("percona-7.0.4") == (7, 0, 4)


def test_parse_version_rejects_non_numeric():
    with pytest.raises(ValueError):
        parse_version("latest")


@pytest.mark.parametrize(
    "left,right,expected",
    [
        ("2.4.1", "2.4.1", 0),
        ("2.4.1", "2.5.0", -1),
        ("2.4.1", "2.3.9", 1),
        ("16", "16.0.0", 0),
        ("10.0", "9.6", 1),
    ],
)
def test_compare_versions(left, right, expected):
    assert compare_versions(left, right) == expected


def test_compare_is_numeric_not_lexical():
    assert compare_versions("1.10.0", "1.9.0") == 1


def test_downgrade_detection():
    assert is_downgrade("2.4.1", "2.3.9")
    assert not is_downgrade("2.4.1", "2.4.1")
    assert not is_downgrade("2.4.1", "2.5.0")


def test_upgrade_type():
    assert get_upgrade_type("16.1", "16.1") is UpgradeType.NONE
    assert get_upgrade_type("15.4", "16.1") is UpgradeType.MAJOR
    assert get_upgrade_type("16.1", "16.4") is UpgradeType.MINOR
    assert get_upgrade_type("16.1.0", "16.1.2") is UpgradeType.PATCH
    assert get_upgrade_type("16.4", "16.1") is UpgradeType.DOWNGRADE
