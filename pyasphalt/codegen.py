"""Generate Luau and TypeScript modules mapping asset paths to references."""

import logging
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Union

from .asset import AssetRef
from .config import CodegenConfig, CodegenStyle
from .utils import is_valid_identifier

logger = logging.getLogger(__name__)

# A table maps keys to nested tables or to rendered asset URLs
CodegenNode = Union[dict[str, "CodegenNode"], str]


class CodegenLanguage(str, Enum):
    LUAU = "luau"
    TYPESCRIPT = "typescript"

    @property
    def extension(self) -> str:
        return "d.ts" if self == CodegenLanguage.TYPESCRIPT else "luau"


def _strip_extension(name: str) -> str:
    stem = PurePosixPath(name).stem
    return stem or name


def _flat_key(rel_path: str, strip_extensions: bool) -> str:
    if not strip_extensions:
        return rel_path
    parent, _, file_name = rel_path.rpartition("/")
    stem = _strip_extension(file_name)
    return f"{parent}/{stem}" if parent else stem


def _insert_nested(table: dict, components: list[str], value: str) -> None:
    *parents, leaf = components
    for component in parents:
        child = table.get(component)
        if not isinstance(child, dict):
            # A deeper path turns an existing leaf into a table
            child = {}
            table[component] = child
        table = child
    table[leaf] = value


def build_tree(
    refs: dict[str, AssetRef], config: CodegenConfig
) -> dict[str, CodegenNode]:
    """Arrange asset references into a flat or nested table.

    Args:
        refs: rel_path -> reference
        config: Codegen settings (style and extension stripping)

    Returns:
        Root table; rendering sorts the keys
    """
    root: dict[str, CodegenNode] = {}
    for rel_path in sorted(refs):
        value = refs[rel_path].to_url()
        if config.style == CodegenStyle.NESTED:
            components = [part for part in rel_path.split("/") if part]
            if not components:
                continue
            if config.strip_extensions:
                components[-1] = _strip_extension(components[-1])
            _insert_nested(root, components, value)
        else:
            root[_flat_key(rel_path, config.strip_extensions)] = value
    return root


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _luau_node(node: CodegenNode, indent: int) -> str:
    if isinstance(node, str):
        return f'"{_escape(node)}"'

    pad = "\t" * (indent + 1)
    lines = ["{"]
    for key in sorted(node):
        rendered_key = key if is_valid_identifier(key) else f'["{_escape(key)}"]'
        value = _luau_node(node[key], indent + 1)
        lines.append(f"{pad}{rendered_key} = {value},")
    lines.append("\t" * indent + "}")
    return "\n".join(lines)


def _typescript_node(node: CodegenNode, indent: int) -> str:
    if isinstance(node, str):
        return "string"

    pad = "\t" * (indent + 1)
    lines = ["{"]
    for key in sorted(node):
        rendered_key = key if is_valid_identifier(key) else f'"{_escape(key)}"'
        value = _typescript_node(node[key], indent + 1)
        lines.append(f"{pad}{rendered_key}: {value}")
    lines.append("\t" * indent + "}")
    return "\n".join(lines)


def generate_code(
    language: CodegenLanguage, name: str, tree: dict[str, CodegenNode]
) -> str:
    """Render a table as a Luau module or a TypeScript declaration.

    Luau keys that are not identifiers are written as ``["key"]``, TypeScript
    ones as ``"key"``. TypeScript leaves are all typed ``string``.
    """
    if language == CodegenLanguage.TYPESCRIPT:
        return f"declare const {name}: {_typescript_node(tree, 0)}\n\nexport = {name}"
    return f"local {name} = {_luau_node(tree, 0)}\n\nreturn {name}"


def write_codegen(
    input_name: str,
    output_path: Path,
    refs: dict[str, AssetRef],
    config: CodegenConfig,
) -> list[Path]:
    """Write the generated modules for one input.

    Args:
        input_name: Input name, used when no output_name is configured
        output_path: Directory receiving the generated files
        refs: rel_path -> reference
        config: Codegen settings

    Returns:
        Paths of the files written
    """
    name = config.output_name or input_name
    tree = build_tree(refs, config)

    languages = []
    if config.luau:
        languages.append(CodegenLanguage.LUAU)
    if config.typescript:
        languages.append(CodegenLanguage.TYPESCRIPT)

    output_path.mkdir(parents=True, exist_ok=True)
    written = []
    for language in languages:
        target = output_path / f"{name}.{language.extension}"
        target.write_text(generate_code(language, name, tree), encoding="utf-8")
        written.append(target)

    logger.debug(
        f"Generated {len(written)} file(s) for {input_name} ({len(refs)} assets)"
    )
    return written
