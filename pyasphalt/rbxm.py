"""Reader and writer for Roblox model containers.

Supports the chunked binary format (``.rbxm``) and the XML format
(``.rbxmx``) far enough to find the instances parented to the document root,
check their class, and write a copy of the document that contains a single
root instance and its descendants.

Binary layout reminder:

- 32 byte header: ``<roblox!`` magic, signature, version, class count,
  instance count, reserved bytes
- chunks: 4 byte name, compressed length, uncompressed length, reserved,
  then the (optionally LZ4 or zstd compressed) payload
- ``INST`` chunks list the referents of every instance of one class,
  ``PROP`` chunks store one property for every instance of a class,
  ``PRNT`` stores (child, parent) pairs, parent -1 meaning the root
"""

import logging
import struct
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from itertools import accumulate
from typing import Optional

import lz4.block
import zstandard

from .asset import ModelFormat
from .exceptions import AsphaltModelError

logger = logging.getLogger(__name__)

MAGIC = b"<roblox!"
SIGNATURE = b"\x89\xff\r\n\x1a\n"
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"
END_PAYLOAD = b"</roblox>"

KEYFRAME_SEQUENCE = "KeyframeSequence"

NOT_AN_ANIMATION = (
    "Root class name of this model is not KeyframeSequence. Asphalt expects "
    "Roblox model files (.rbxm/.rbxmx) to be animations (regular models can't "
    "be uploaded with Open Cloud). If you did not expect this error, don't "
    "include this file in this input."
)

_HEADER = struct.Struct("<8s6sHii8s")
_CHUNK_HEADER = struct.Struct("<4sIII")

# Property type ids whose values are stored as one or more interleaved arrays
# of fixed width, one array per component.
_INTERLEAVED_LAYOUTS: dict[int, tuple[int, ...]] = {
    0x03: (4,),  # Int32
    0x04: (4,),  # Float32
    0x06: (4, 4),  # UDim
    0x07: (4, 4, 4, 4),  # UDim2
    0x0B: (4,),  # BrickColor
    0x0C: (4, 4, 4),  # Color3
    0x0D: (4, 4),  # Vector2
    0x0E: (4, 4, 4),  # Vector3
    0x12: (4,),  # Enum
    0x18: (4, 4, 4, 4),  # Rect
    0x1A: (1, 1, 1),  # Color3uint8
    0x1B: (8,),  # Int64
    0x1C: (4,),  # SharedString
    0x1F: (16,),  # UniqueId
    0x21: (8,),  # SecurityCapabilities
}

# Property type ids stored as plain fixed-size records
_FIXED_SIZES: dict[int, int] = {
    0x02: 1,  # Bool
    0x05: 8,  # Float64
    0x08: 24,  # Ray
    0x09: 1,  # Faces
    0x0A: 1,  # Axes
    0x14: 6,  # Vector3int16
    0x17: 8,  # NumberRange
}

_STRING_TYPES = (0x01, 0x1D)  # String, Bytecode
_NUMBER_SEQUENCE = 0x15
_COLOR_SEQUENCE = 0x16
_PHYSICAL_PROPERTIES = 0x19
_FONT = 0x20
_CFRAME = 0x10
_OPTIONAL_CFRAME = 0x1E
_REFERENT = 0x13
_BOOL = 0x02


# =============================================================================
# Byte-level helpers
# =============================================================================


class _Reader:
    """Little-endian cursor over a chunk payload."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, size: int) -> bytes:
        if size < 0 or self.offset + size > len(self.data):
            raise AsphaltModelError("Unexpected end of model data")
        value = self.data[self.offset : self.offset + size]
        self.offset += size
        return value

    def u8(self) -> int:
        return self.read(1)[0]

    def u16(self) -> int:
        return int.from_bytes(self.read(2), "little")

    def u32(self) -> int:
        return int.from_bytes(self.read(4), "little")

    def string(self) -> bytes:
        return self.read(self.u32())

    def referents(self, count: int) -> list[int]:
        raw = _deinterleave(self.read(4 * count), count, 4)
        return list(accumulate(_zigzag_decode(int.from_bytes(v, "big")) for v in raw))


def _zigzag_decode(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


def _zigzag_encode(value: int) -> int:
    return ((value << 1) ^ (value >> 31)) & 0xFFFFFFFF


def _deinterleave(data: bytes, count: int, width: int) -> list[bytes]:
    return [bytes(data[b * count + i] for b in range(width)) for i in range(count)]


def _interleave(values: list[bytes], width: int) -> bytes:
    count = len(values)
    out = bytearray(count * width)
    for i, value in enumerate(values):
        for b in range(width):
            out[b * count + i] = value[b]
    return bytes(out)


def _encode_referents(referents: list[int]) -> bytes:
    deltas = []
    previous = 0
    for referent in referents:
        deltas.append(_zigzag_encode(referent - previous).to_bytes(4, "big"))
        previous = referent
    return _interleave(deltas, 4)


def _encode_string(value: bytes) -> bytes:
    return len(value).to_bytes(4, "little") + value


# =============================================================================
# Chunk model
# =============================================================================


@dataclass
class Chunk:
    name: bytes
    data: bytes


@dataclass
class ClassChunk:
    """Decoded INST chunk."""

    class_id: int
    class_name: str
    object_format: int
    referents: list[int]
    service_markers: bytes = b""

    @classmethod
    def decode(cls, data: bytes) -> "ClassChunk":
        reader = _Reader(data)
        class_id = reader.u32()
        class_name = reader.string().decode("utf-8", errors="replace")
        object_format = reader.u8()
        count = reader.u32()
        referents = reader.referents(count)
        markers = reader.read(count) if object_format == 1 else b""
        return cls(class_id, class_name, object_format, referents, markers)

    def encode(self) -> bytes:
        return b"".join(
            [
                self.class_id.to_bytes(4, "little"),
                _encode_string(self.class_name.encode("utf-8")),
                bytes([self.object_format]),
                len(self.referents).to_bytes(4, "little"),
                _encode_referents(self.referents),
                self.service_markers,
            ]
        )


@dataclass
class BinaryModel:
    """A decoded binary model: raw chunks plus the instance tree."""

    chunks: list[Chunk]
    classes: dict[int, ClassChunk] = field(default_factory=dict)
    parents: list[tuple[int, int]] = field(default_factory=list)

    def class_of(self, referent: int) -> Optional[str]:
        for class_chunk in self.classes.values():
            if referent in class_chunk.referents:
                return class_chunk.class_name
        return None

    def root_referents(self) -> list[int]:
        """Instances parented to the document root, in file order."""
        return [child for child, parent in self.parents if parent == -1]

    def descendants(self, referent: int) -> set[int]:
        """Referent plus every instance below it."""
        children: dict[int, list[int]] = {}
        for child, parent in self.parents:
            children.setdefault(parent, []).append(child)

        found = {referent}
        stack = [referent]
        while stack:
            for child in children.get(stack.pop(), []):
                if child not in found:
                    found.add(child)
                    stack.append(child)
        return found


def _decompress(name: bytes, payload: bytes, length: int, compressed: bool) -> bytes:
    if not compressed:
        return payload
    try:
        if payload[:4] == ZSTD_MAGIC:
            return zstandard.ZstdDecompressor().decompress(
                payload, max_output_size=length
            )
        return lz4.block.decompress(payload, uncompressed_size=length)
    except (lz4.block.LZ4BlockError, zstandard.ZstdError) as e:
        raise AsphaltModelError(
            f"Failed to decompress {name.decode(errors='replace')} chunk: {e}"
        ) from e


def read_binary(data: bytes) -> BinaryModel:
    """Decode the chunk structure of a binary model.

    Raises:
        AsphaltModelError: If the data is not a binary Roblox model
    """
    if len(data) < _HEADER.size or not data.startswith(MAGIC + SIGNATURE):
        raise AsphaltModelError("Not a binary Roblox model file")

    offset = _HEADER.size
    chunks: list[Chunk] = []
    while offset < len(data):
        if offset + _CHUNK_HEADER.size > len(data):
            raise AsphaltModelError("Truncated chunk header")
        name, compressed_len, length, _ = _CHUNK_HEADER.unpack_from(data, offset)
        offset += _CHUNK_HEADER.size

        size = compressed_len or length
        payload = data[offset : offset + size]
        if len(payload) != size:
            raise AsphaltModelError(f"Truncated {name!r} chunk")
        offset += size

        chunks.append(Chunk(name, _decompress(name, payload, length, compressed_len > 0)))
        if name == b"END\x00":
            break

    model = BinaryModel(chunks=chunks)
    for chunk in chunks:
        if chunk.name == b"INST":
            class_chunk = ClassChunk.decode(chunk.data)
            model.classes[class_chunk.class_id] = class_chunk
        elif chunk.name == b"PRNT":
            reader = _Reader(chunk.data)
            reader.u8()  # version
            count = reader.u32()
            children = reader.referents(count)
            parents = reader.referents(count)
            model.parents.extend(zip(children, parents))

    logger.debug(
        f"Decoded binary model: {len(model.classes)} classes, "
        f"{len(model.parents)} instances"
    )
    return model


# =============================================================================
# PROP value splitting
# =============================================================================


def _split_cframes(reader: _Reader, count: int) -> list[tuple[bytes, ...]]:
    rotations = []
    for _ in range(count):
        rotation_id = reader.u8()
        rotation = bytes([rotation_id])
        if rotation_id == 0:
            rotation += reader.read(36)
        rotations.append(rotation)
    positions = [_deinterleave(reader.read(4 * count), count, 4) for _ in range(3)]
    return [(rotations[i],) + tuple(p[i] for p in positions) for i in range(count)]


def _join_cframes(values: list[tuple[bytes, ...]]) -> bytes:
    parts = [b"".join(value[0] for value in values)]
    for axis in range(1, 4):
        parts.append(_interleave([value[axis] for value in values], 4))
    return b"".join(parts)


def _read_variable(type_id: int, reader: _Reader) -> bytes:
    start = reader.offset
    if type_id in _STRING_TYPES:
        reader.read(reader.u32())
    elif type_id == _NUMBER_SEQUENCE:
        reader.read(12 * reader.u32())
    elif type_id == _COLOR_SEQUENCE:
        reader.read(20 * reader.u32())
    elif type_id == _PHYSICAL_PROPERTIES:
        flags = reader.u8()
        if flags & 1:
            reader.read(20)
        if flags & 2:
            reader.read(4)
    elif type_id == _FONT:
        reader.string()
        reader.u16()
        reader.u8()
        reader.string()
    else:
        raise AsphaltModelError(f"Unsupported property type 0x{type_id:02x}")
    return reader.data[start : reader.offset]


def split_property_values(
    type_id: int, data: bytes, count: int
) -> list[tuple[bytes, ...]]:
    """Split a PROP value blob into one opaque value per instance."""
    reader = _Reader(data)

    if type_id in _INTERLEAVED_LAYOUTS:
        widths = _INTERLEAVED_LAYOUTS[type_id]
        components = [_deinterleave(reader.read(w * count), count, w) for w in widths]
        values = [tuple(component[i] for component in components) for i in range(count)]
    elif type_id in _FIXED_SIZES:
        size = _FIXED_SIZES[type_id]
        values = [(reader.read(size),) for _ in range(count)]
    elif type_id == _CFRAME:
        values = _split_cframes(reader, count)
    elif type_id == _OPTIONAL_CFRAME:
        if reader.u8() != _CFRAME:
            raise AsphaltModelError("Malformed OptionalCFrame property")
        cframes = _split_cframes(reader, count)
        if reader.u8() != _BOOL:
            raise AsphaltModelError("Malformed OptionalCFrame property")
        values = [cframes[i] + (reader.read(1),) for i in range(count)]
    else:
        values = [(_read_variable(type_id, reader),) for _ in range(count)]

    if reader.remaining():
        raise AsphaltModelError(
            f"Unexpected trailing data in property of type 0x{type_id:02x}"
        )
    return values


def join_property_values(type_id: int, values: list[tuple[bytes, ...]]) -> bytes:
    """Inverse of split_property_values."""
    if type_id in _INTERLEAVED_LAYOUTS:
        widths = _INTERLEAVED_LAYOUTS[type_id]
        return b"".join(
            _interleave([value[c] for value in values], width)
            for c, width in enumerate(widths)
        )
    if type_id == _CFRAME:
        return _join_cframes(values)
    if type_id == _OPTIONAL_CFRAME:
        return b"".join(
            [
                bytes([_CFRAME]),
                _join_cframes([value[:4] for value in values]),
                bytes([_BOOL]),
                b"".join(value[4] for value in values),
            ]
        )
    return b"".join(value[0] for value in values)


# =============================================================================
# Subset writer
# =============================================================================


def _write_chunk(name: bytes, data: bytes) -> bytes:
    return _CHUNK_HEADER.pack(name, 0, len(data), 0) + data


def _filter_property(
    data: bytes, class_ids: dict[int, tuple[int, list[int], int]], keep: set[int]
) -> Optional[bytes]:
    reader = _Reader(data)
    class_id = reader.u32()
    if class_id not in class_ids:
        return None
    new_id, kept_indices, count = class_ids[class_id]
    name = reader.string()
    type_id = reader.u8()
    values = data[reader.offset :]

    if type_id == _REFERENT:
        referents = _Reader(values).referents(count)
        kept = [referents[i] for i in kept_indices]
        new_values = _encode_referents([r if r in keep else -1 for r in kept])
    elif len(kept_indices) == count:
        new_values = values
    else:
        split = split_property_values(type_id, values, count)
        new_values = join_property_values(type_id, [split[i] for i in kept_indices])

    return b"".join(
        [
            new_id.to_bytes(4, "little"),
            _encode_string(name),
            bytes([type_id]),
            new_values,
        ]
    )


def write_subset(model: BinaryModel, keep: set[int]) -> bytes:
    """Serialize only the instances in keep, uncompressed.

    References to instances outside keep are cleared, and any kept instance
    whose parent is dropped becomes a root.
    """
    class_ids: dict[int, tuple[int, list[int], int]] = {}
    body: list[bytes] = []

    for chunk in model.chunks:
        if chunk.name == b"INST":
            class_chunk = ClassChunk.decode(chunk.data)
            kept_indices = [
                i for i, ref in enumerate(class_chunk.referents) if ref in keep
            ]
            if not kept_indices:
                continue
            new_id = len(class_ids)
            class_ids[class_chunk.class_id] = (
                new_id,
                kept_indices,
                len(class_chunk.referents),
            )
            markers = class_chunk.service_markers
            body.append(
                _write_chunk(
                    b"INST",
                    ClassChunk(
                        class_id=new_id,
                        class_name=class_chunk.class_name,
                        object_format=class_chunk.object_format,
                        referents=[class_chunk.referents[i] for i in kept_indices],
                        service_markers=bytes(markers[i] for i in kept_indices)
                        if markers
                        else b"",
                    ).encode(),
                )
            )
        elif chunk.name == b"PROP":
            filtered = _filter_property(chunk.data, class_ids, keep)
            if filtered is not None:
                body.append(_write_chunk(b"PROP", filtered))
        elif chunk.name == b"PRNT":
            pairs = [
                (child, parent if parent in keep else -1)
                for child, parent in model.parents
                if child in keep
            ]
            body.append(
                _write_chunk(
                    b"PRNT",
                    b"".join(
                        [
                            b"\x00",
                            len(pairs).to_bytes(4, "little"),
                            _encode_referents([child for child, _ in pairs]),
                            _encode_referents([parent for _, parent in pairs]),
                        ]
                    ),
                )
            )
        elif chunk.name == b"END\x00":
            break
        else:
            body.append(_write_chunk(chunk.name, chunk.data))

    header = _HEADER.pack(MAGIC, SIGNATURE, 0, len(class_ids), len(keep), bytes(8))
    return header + b"".join(body) + _write_chunk(b"END\x00", END_PAYLOAD)


# =============================================================================
# Animation extraction
# =============================================================================


def _extract_binary(data: bytes) -> bytes:
    model = read_binary(data)
    roots = model.root_referents()
    if not roots:
        raise AsphaltModelError("No children found in root")

    first = roots[0]
    if model.class_of(first) != KEYFRAME_SEQUENCE:
        raise AsphaltModelError(NOT_AN_ANIMATION)

    if len(roots) == 1:
        return data

    logger.debug(f"Keeping first of {len(roots)} root instances")
    return write_subset(model, model.descendants(first))


def _extract_xml(data: bytes) -> bytes:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise AsphaltModelError(f"Failed to parse XML model: {e}") from e

    items = [child for child in root if child.tag == "Item"]
    if not items:
        raise AsphaltModelError("No children found in root")

    first = items[0]
    if first.get("class") != KEYFRAME_SEQUENCE:
        raise AsphaltModelError(NOT_AN_ANIMATION)

    if len(items) == 1:
        return data

    logger.debug(f"Keeping first of {len(items)} root instances")
    for extra in items[1:]:
        root.remove(extra)

    kept_referents = {item.get("referent") for item in first.iter("Item")}
    for ref in first.iter("Ref"):
        target = (ref.text or "").strip()
        if target and target != "null" and target not in kept_referents:
            ref.text = "null"

    return ET.tostring(root, encoding="utf-8", xml_declaration=False)


def extract_animation(data: bytes, model_format: ModelFormat) -> bytes:
    """Return a document whose only root is the model's KeyframeSequence.

    Args:
        data: Raw model file
        model_format: Container format of data

    Returns:
        Model bytes in the same container format

    Raises:
        AsphaltModelError: If the first root instance is not a KeyframeSequence
            or the file cannot be decoded
    """
    if model_format == ModelFormat.XML:
        return _extract_xml(data)
    return _extract_binary(data)
