"""Unit tests for utility functions."""

import pytest

from pyasphalt.utils import (
    MAX_DISPLAY_NAME_LENGTH,
    format_size,
    is_valid_identifier,
    project_identifier,
    trim_display_name,
)


class TestTrimDisplayName:
    """Tests for trim_display_name function."""

    def test_short_name(self):
        """Test that short names are unchanged."""
        assert trim_display_name("icon.png") == "icon.png"

    def test_exact_length(self):
        """Test a name at the limit."""
        name = "a" * MAX_DISPLAY_NAME_LENGTH
        assert trim_display_name(name) == name

    def test_long_name_keeps_suffix(self):
        """Test that long names keep their last characters."""
        name = "b" * 10 + "c" * 46 + ".png"
        result = trim_display_name(name)
        assert len(result) == 50
        assert result.endswith(".png")
        assert "b" not in result


class TestIsValidIdentifier:
    """Tests for is_valid_identifier function."""

    @pytest.mark.parametrize("value", ["icons", "_private", "Icon2", "a_b"])
    def test_valid(self, value):
        """Test keys that need no quoting."""
        assert is_valid_identifier(value)

    @pytest.mark.parametrize("value", ["2icons", "a.png", "a b", "a-b", "", "icons/a"])
    def test_invalid(self, value):
        """Test keys that must be quoted."""
        assert not is_valid_identifier(value)


class TestProjectIdentifier:
    """Tests for project_identifier function."""

    def test_lowercases(self):
        """Test that names are lowercased."""
        assert project_identifier("Game") == ".asphalt-game"

    def test_whitespace_becomes_dash(self):
        """Test that whitespace runs become single dashes."""
        assert project_identifier("My  Cool\tGame") == ".asphalt-my-cool-game"


class TestFormatSize:
    """Tests for format_size function."""

    def test_bytes(self):
        """Test formatting bytes."""
        assert format_size(0) == "0 B"
        assert format_size(1023) == "1023 B"

    def test_kilobytes(self):
        """Test formatting kilobytes."""
        assert format_size(1536) == "1.5 KB"

    def test_megabytes(self):
        """Test formatting megabytes."""
        assert format_size(5 * 1024 * 1024) == "5.0 MB"

    def test_gigabytes(self):
        """Test formatting gigabytes."""
        assert format_size(2 * 1024**3) == "2.0 GB"
