"""Test version parsing and comparison."""

import pytest

from water.errors import InvalidVersionFormat
from water.version.compare import (
    ComparisonResult,
    Version,
    compare,
    is_compatible,
    major_minor,
    needs_upgrade,
    parse_version,
    validate_version,
)


class TestParseVersion:
    def test_with_and_without_prefix(self):
        assert parse_version("v1.10.5") == Version(1, 10, 5)
        assert parse_version("1.10.5") == Version(1, 10, 5)

    def test_suffix_is_kept_for_display(self):
        version = parse_version("v1.11.0-alpha.1")
        assert version.parts == (1, 11, 0)
        assert version.suffix == "alpha.1"
        assert str(version) == "v1.11.0-alpha.1"

    def test_suffix_ignored_for_equality(self):
        assert parse_version("v1.11.0-beta.0") == parse_version("v1.11.0")

    @pytest.mark.parametrize("value", ["", "v1.2", "1.2.3.4", "v1.x.3", "latest", "unknown", "v1..3"])
    def test_invalid_formats(self, value):
        with pytest.raises(InvalidVersionFormat):
            parse_version(value)

    def test_non_ascii_digits_rejected(self):
        with pytest.raises(InvalidVersionFormat):
            parse_version("v1.٢.3")

    def test_validate_version(self):
        validate_version("v1.33.3")
        with pytest.raises(InvalidVersionFormat, match="invalid version format"):
            validate_version("v1.33")


class TestCompare:
    def test_component_wise_ordering(self):
        assert compare("v1.10.0", "v1.9.9") is ComparisonResult.NEWER
        assert compare("v1.9.9", "v1.10.0") is ComparisonResult.OLDER
        assert compare("v2.0.0", "v1.99.99") is ComparisonResult.NEWER
        assert compare("v1.10.5", "1.10.5") is ComparisonResult.EQUAL

    def test_ordering_is_antisymmetric(self):
        versions = ["v1.9.0", "v1.10.0", "v1.10.5", "v2.0.0", "v0.1.1"]
        for a in versions:
            for b in versions:
                assert compare(a, b).value == -compare(b, a).value

    def test_ordering_is_transitive(self):
        ordered = sorted(parse_version(v) for v in ["v1.10.5", "v1.2.0", "v1.10.0", "v0.9.9"])
        assert [str(v) for v in ordered] == ["v0.9.9", "v1.2.0", "v1.10.0", "v1.10.5"]

    def test_suffix_compares_equal(self):
        assert compare("v1.11.0-rc.1", "v1.11.0") is ComparisonResult.EQUAL

    def test_invalid_input_raises(self):
        with pytest.raises(InvalidVersionFormat):
            compare("unknown", "v1.33.3")

    def test_result_string(self):
        assert str(ComparisonResult.NEWER) == "newer"


class TestNeedsUpgrade:
    @pytest.mark.parametrize(
        "current,target,expected",
        [
            ("v1.10.4", "v1.10.5", True),
            ("v1.9.9", "v1.10.0", True),
            ("v1.10.5", "v1.10.5", False),
            ("v1.11.0", "v1.10.5", False),
        ],
    )
    def test_only_strictly_older_needs_upgrade(self, current, target, expected):
        assert needs_upgrade(current, target) is expected

    def test_downgrade_is_logged(self, caplog):
        with caplog.at_level("DEBUG", logger="water"):
            assert needs_upgrade("v1.34.0", "v1.33.3") is False
        assert "v1.34.0 is newer than target v1.33.3" in caplog.text
        assert [r.levelname for r in caplog.records if "newer" in r.getMessage()] == ["WARNING"]


class TestCompatibility:
    def test_same_minor_is_compatible(self):
        assert is_compatible("v1.33.0", "v1.33.3")

    def test_different_minor_is_not(self):
        assert not is_compatible("v1.32.9", "v1.33.0")

    def test_major_minor(self):
        assert major_minor("1.33.3") == "v1.33"
