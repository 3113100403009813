"""Tests for configuration loading and credentials."""

from pathlib import Path

import pytest

from pyasphalt.auth import resolve_auth
from pyasphalt.config import (
    CodegenStyle,
    CreatorType,
    load_config,
    parse_config,
)
from pyasphalt.exceptions import AsphaltConfigError

FULL_CONFIG = """
[creator]
type = "group"
id = 99

[codegen]
style = "nested"
strip_extensions = true
typescript = true
output_name = "Assets"

[inputs.icons]
path = "assets/icons/**/*.png"
output_path = "src/shared"
bleed = false
warn_each_duplicate = true

[inputs.icons.web]
"logo.png" = { id = 1234 }
"ui\\\\back.png" = { id = 5678 }

[inputs.sounds]
path = "assets/sounds/*"
output_path = "src/shared"
"""


class TestLoadConfig:
    """Tests for reading asphalt.toml."""

    def test_full(self, tmp_path):
        """Test reading every supported field."""
        path = tmp_path / "asphalt.toml"
        path.write_text(FULL_CONFIG)

        config = load_config(path)

        assert config.creator.type == CreatorType.GROUP
        assert config.creator.id == 99
        assert config.codegen.style == CodegenStyle.NESTED
        assert config.codegen.strip_extensions is True
        assert config.codegen.typescript is True
        assert config.codegen.luau is True
        assert config.codegen.output_name == "Assets"

        icons = config.inputs["icons"]
        assert icons.path == "assets/icons/**/*.png"
        assert icons.output_path == Path("src/shared")
        assert icons.bleed is False
        assert icons.warn_each_duplicate is True
        assert icons.web["logo.png"].id == 1234
        assert icons.web["ui/back.png"].id == 5678

    def test_defaults(self):
        """Test defaults for optional fields."""
        config = parse_config(
            {
                "creator": {"type": "user", "id": 1},
                "inputs": {"a": {"path": "a/*", "output_path": "out"}},
            }
        )

        assert config.codegen.style == CodegenStyle.FLAT
        assert config.codegen.luau is True
        assert config.codegen.typescript is False
        assert config.inputs["a"].bleed is True
        assert config.inputs["a"].web == {}
        assert config.inputs["a"].name == "a"

    def test_missing_file(self, tmp_path):
        """Test the error for a missing config file."""
        with pytest.raises(AsphaltConfigError, match="Did you create it"):
            load_config(tmp_path / "asphalt.toml")

    def test_invalid_toml(self, tmp_path):
        """Test the error for a malformed config file."""
        path = tmp_path / "asphalt.toml"
        path.write_text("[creator\n")
        with pytest.raises(AsphaltConfigError, match="Failed to parse"):
            load_config(path)

    def test_missing_creator(self):
        """Test that the creator table is required."""
        with pytest.raises(AsphaltConfigError, match="creator"):
            parse_config({"inputs": {}})

    def test_missing_input_path(self):
        """Test that inputs need a path."""
        with pytest.raises(AsphaltConfigError, match="path"):
            parse_config(
                {
                    "creator": {"type": "user", "id": 1},
                    "inputs": {"a": {"output_path": "out"}},
                }
            )

    def test_invalid_creator_type(self):
        """Test that unknown creator types are rejected."""
        with pytest.raises(AsphaltConfigError, match="creator.type"):
            parse_config({"creator": {"type": "team", "id": 1}})

    def test_creator_request(self):
        """Test rendering the creator for the asset service."""
        config = parse_config({"creator": {"type": "user", "id": 5}})
        assert config.creator.to_request() == {"userId": "5"}


class TestResolveAuth:
    """Tests for credential resolution."""

    def test_explicit_values(self, monkeypatch):
        """Test that explicit values win over the environment."""
        monkeypatch.setenv("ASPHALT_API_KEY", "env-key")
        auth = resolve_auth("cli-key", "cookie")
        assert auth.api_key == "cli-key"
        assert auth.cookie == "cookie"

    def test_environment_fallback(self, monkeypatch):
        """Test reading credentials from the environment."""
        monkeypatch.setenv("ASPHALT_API_KEY", "env-key")
        monkeypatch.setenv("ASPHALT_COOKIE", "env-cookie")
        auth = resolve_auth()
        assert auth.api_key == "env-key"
        assert auth.cookie == "env-cookie"

    def test_key_required(self, monkeypatch):
        """Test that a missing key is an error only when required."""
        monkeypatch.delenv("ASPHALT_API_KEY", raising=False)
        assert resolve_auth().api_key is None
        with pytest.raises(AsphaltConfigError, match="API key is required"):
            resolve_auth(key_required=True)
