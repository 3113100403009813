"""Configuration loading for asphalt.toml."""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .exceptions import AsphaltConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "asphalt.toml"

API_KEY_ENV = "ASPHALT_API_KEY"
COOKIE_ENV = "ASPHALT_COOKIE"
CONTENT_PATH_ENV = "ROBLOX_CONTENT_PATH"
TEST_MODE_ENV = "ASPHALT_TEST"


class CreatorType(str, Enum):
    """Owner type of uploaded assets."""

    USER = "user"
    GROUP = "group"


class CodegenStyle(str, Enum):
    """Shape of the generated asset table."""

    FLAT = "flat"
    NESTED = "nested"


@dataclass
class Creator:
    """Account or group that will own uploaded assets."""

    type: CreatorType
    id: int

    def to_request(self) -> dict[str, str]:
        """Render the creator the way the asset service expects it."""
        if self.type == CreatorType.GROUP:
            return {"groupId": str(self.id)}
        return {"userId": str(self.id)}


@dataclass
class WebAsset:
    """An asset that already exists on the platform and is never uploaded."""

    id: int


@dataclass
class CodegenConfig:
    """Code generation settings shared by every input."""

    style: CodegenStyle = CodegenStyle.FLAT
    strip_extensions: bool = False
    typescript: bool = False
    luau: bool = True
    output_name: str | None = None


@dataclass
class InputConfig:
    """A named group of files matched by a glob."""

    name: str
    path: str
    output_path: Path
    bleed: bool = True
    web: dict[str, WebAsset] = field(default_factory=dict)
    warn_each_duplicate: bool = False


@dataclass
class Config:
    """Parsed asphalt.toml."""

    creator: Creator
    inputs: dict[str, InputConfig]
    codegen: CodegenConfig = field(default_factory=CodegenConfig)


def _require(table: dict[str, Any], key: str, context: str) -> Any:
    if key not in table:
        raise AsphaltConfigError(f"Missing required field '{key}' in {context}")
    return table[key]


def _parse_enum(enum_type: type[Enum], value: Any, context: str) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_type)
        raise AsphaltConfigError(
            f"Invalid value {value!r} for {context} (expected one of: {choices})"
        ) from None


def _parse_input(name: str, data: dict[str, Any]) -> InputConfig:
    context = f"inputs.{name}"
    web: dict[str, WebAsset] = {}
    for rel_path, web_data in data.get("web", {}).items():
        asset_id = _require(web_data, "id", f"{context}.web.{rel_path}")
        web[rel_path.replace("\\", "/")] = WebAsset(id=int(asset_id))

    return InputConfig(
        name=name,
        path=str(_require(data, "path", context)),
        output_path=Path(_require(data, "output_path", context)),
        bleed=bool(data.get("bleed", True)),
        web=web,
        warn_each_duplicate=bool(data.get("warn_each_duplicate", False)),
    )


def parse_config(data: dict[str, Any]) -> Config:
    """Build a Config from a decoded TOML document.

    Raises:
        AsphaltConfigError: If a required field is missing or has a bad value
    """
    creator_data = _require(data, "creator", "config")
    creator = Creator(
        type=_parse_enum(
            CreatorType, _require(creator_data, "type", "creator"), "creator.type"
        ),
        id=int(_require(creator_data, "id", "creator")),
    )

    codegen_data = data.get("codegen", {})
    codegen = CodegenConfig(
        style=_parse_enum(
            CodegenStyle, codegen_data.get("style", "flat"), "codegen.style"
        ),
        strip_extensions=bool(codegen_data.get("strip_extensions", False)),
        typescript=bool(codegen_data.get("typescript", False)),
        luau=bool(codegen_data.get("luau", True)),
        output_name=codegen_data.get("output_name"),
    )

    inputs = {
        name: _parse_input(name, input_data)
        for name, input_data in data.get("inputs", {}).items()
    }

    return Config(creator=creator, inputs=inputs, codegen=codegen)


def load_config(path: Path | None = None) -> Config:
    """Read and parse asphalt.toml.

    Args:
        path: Config file path (defaults to asphalt.toml in the current directory)

    Raises:
        AsphaltConfigError: If the file is missing or is not valid TOML
    """
    config_path = path or Path(CONFIG_FILE_NAME)
    try:
        content = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise AsphaltConfigError(
            f"Failed to read config file {config_path}. Did you create it?"
        ) from None
    except OSError as e:
        raise AsphaltConfigError(f"Failed to read config file {config_path}: {e}") from e

    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise AsphaltConfigError(f"Failed to parse config file: {e}") from e

    config = parse_config(data)
    logger.debug(f"Loaded config with {len(config.inputs)} input(s)")
    return config
