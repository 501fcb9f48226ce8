"""Vertex stream consolidation.

Face-varying geometry carries one index stream per attribute. This module
welds those streams into a single interleaved vertex buffer plus one shared
triangle index buffer: every distinct tuple of per-attribute indices (the
vertex key of a corner) becomes one output vertex.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from skelmesh.errors import InvariantError, UnsupportedFeatureError, ValidationError
from skelmesh.skinning import SkinWeights

CHANNEL_ORDER: tuple[str, ...] = (
    "position",
    "color",
    "normal",
    "tangent",
    "binormal",
    "texcoord",
    "joint_indices",
    "joint_weights",
)

# Per-corner kinds; the skin channels follow the position index.
KEYED_KINDS: tuple[str, ...] = CHANNEL_ORDER[:6]

SEMANTIC_KINDS: dict[str, str] = {
    "VERTEX": "position",
    "POSITION": "position",
    "COLOR": "color",
    "NORMAL": "normal",
    "TANGENT": "tangent",
    "TEXTANGENT": "tangent",
    "BINORMAL": "binormal",
    "TEXBINORMAL": "binormal",
    "TEXCOORD": "texcoord",
}

# 16-bit indices stay below 0xFFFF, the glTF primitive restart value
UINT16_LIMIT = 0xFFFF


@dataclass(frozen=True)
class AttributeSource:
    """Distinct values of one attribute, ``stride`` floats each."""

    data: np.ndarray  # flat float32
    stride: int
    id: str = ""

    @classmethod
    def from_values(cls, values: Sequence[float], stride: int, id: str = "") -> AttributeSource:
        data = np.asarray(values, dtype=np.float32).reshape(-1)
        if stride < 1 or len(data) % stride != 0:
            raise ValidationError(
                f"Source {id!r}: {len(data)} values do not divide into stride {stride}"
            )
        return cls(data=data, stride=stride, id=id)

    @property
    def count(self) -> int:
        return len(self.data) // self.stride

    def rows(self) -> np.ndarray:
        return self.data.reshape(self.count, self.stride)


@dataclass(frozen=True)
class VertexChannel:
    """One attribute of a mesh part: its source and per-corner index stream."""

    kind: str
    source: AttributeSource
    indices: np.ndarray


class ChannelDescription(NamedTuple):
    kind: str
    format: str
    component_count: int
    byte_offset: int


@dataclass
class ConsolidatedMesh:
    vertex_buffer: np.ndarray  # flat float32
    index_buffer: np.ndarray  # uint32 triangle list, reversed winding
    channel_layout: list[ChannelDescription]
    vertex_stride: int  # floats per vertex

    @property
    def vertex_count(self) -> int:
        return len(self.vertex_buffer) // self.vertex_stride

    @property
    def triangle_count(self) -> int:
        return len(self.index_buffer) // 3

    @property
    def kinds(self) -> list[str]:
        return [c.kind for c in self.channel_layout]

    def has_channel(self, kind: str) -> bool:
        return kind in self.kinds

    def channel(self, kind: str) -> np.ndarray:
        """(vertex_count, k) copy of one channel's floats."""
        for desc in self.channel_layout:
            if desc.kind == kind:
                start = desc.byte_offset // 4
                rows = self.vertex_buffer.reshape(self.vertex_count, self.vertex_stride)
                return rows[:, start : start + desc.component_count].copy()
        raise KeyError(f"Mesh has no {kind!r} channel")

    def colors(self) -> np.ndarray:
        """(vertex_count, 4) RGBA bytes of the packed color channel."""
        return unpack_colors(self.channel("color")[:, 0])

    @property
    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        positions = self.channel("position")[:, :3]
        if len(positions) == 0:
            zero = np.zeros(3, dtype=np.float32)
            return zero, zero.copy()
        return positions.min(axis=0), positions.max(axis=0)

    @property
    def index_format(self) -> str:
        return "uint16" if self.vertex_count <= UINT16_LIMIT else "uint32"

    def compact_indices(self) -> np.ndarray:
        """Index buffer in the narrowest format that holds every index."""
        return self.index_buffer.astype(np.uint16 if self.index_format == "uint16" else np.uint32)


# ---------------------------------------------------------------------------
# Index streams and primitives
# ---------------------------------------------------------------------------


def check_triangles(primitive: str, vcount: Sequence[int] | None = None) -> None:
    """Reject anything that is not a plain triangle list.

    Raises:
        UnsupportedFeatureError: For fans, strips, and faces that are not triangles.
    """
    if primitive == "triangles":
        return
    if primitive in ("polylist", "polygons"):
        for face, n in enumerate(vcount or ()):
            if n != 3:
                raise UnsupportedFeatureError(
                    f"Face {face} has {n} vertices; only triangles are supported"
                )
        return
    raise UnsupportedFeatureError(f"Primitive {primitive!r} is not supported; use triangles")


def split_index_stream(
    p: Sequence[int], offsets: Sequence[int], corner_count: int
) -> dict[int, np.ndarray]:
    """De-interleave a shared index stream into one index array per offset.

    ``p`` holds ``corner_count`` groups of equal width; offset ``k`` selects
    element ``k`` of every group.
    """
    stream = np.asarray(p, dtype=np.int64)
    if corner_count == 0:
        return {off: np.zeros(0, dtype=np.int64) for off in offsets}
    if len(stream) % corner_count != 0:
        raise ValidationError(
            f"Index stream of {len(stream)} entries does not split into "
            f"{corner_count} corners"
        )
    width = len(stream) // corner_count
    grouped = stream.reshape(corner_count, width)
    result: dict[int, np.ndarray] = {}
    for off in offsets:
        if not 0 <= off < width:
            raise ValidationError(f"Input offset {off} outside index group width {width}")
        result[off] = grouped[:, off].copy()
    return result


def reverse_winding(indices: np.ndarray) -> np.ndarray:
    """Swap the second and third index of every triangle."""
    out = np.array(indices, copy=True)
    if len(out) % 3 != 0:
        raise ValidationError(f"Index buffer length {len(out)} is not a multiple of 3")
    tris = out.reshape(-1, 3)
    tris[:, [1, 2]] = tris[:, [2, 1]]
    return out


# ---------------------------------------------------------------------------
# Packed colors
# ---------------------------------------------------------------------------


def pack_colors(rgba: np.ndarray) -> np.ndarray:
    """Pack float colors (3 or 4 components in 0..1) into one float32 each.

    The float's bit pattern is the little endian bytes R, G, B, A.
    """
    colors = np.asarray(rgba, dtype=np.float64)
    if colors.ndim != 2 or colors.shape[1] not in (3, 4):
        raise ValidationError(f"Colors need 3 or 4 components, got shape {colors.shape}")
    raw = np.clip(np.rint(colors * 255.0), 0, 255).astype(np.uint8)
    if raw.shape[1] == 3:
        raw = np.concatenate([raw, np.full((len(raw), 1), 255, dtype=np.uint8)], axis=1)
    return np.ascontiguousarray(raw).view("<u4").reshape(-1).view("<f4")


def unpack_colors(packed: np.ndarray) -> np.ndarray:
    """Inverse of ``pack_colors``: (N, 4) uint8 RGBA."""
    bits = np.ascontiguousarray(packed, dtype="<f4").view("<u4")
    return bits.view(np.uint8).reshape(-1, 4).copy()


# ---------------------------------------------------------------------------
# Consolidation
# ---------------------------------------------------------------------------


def _component_count(kind: str, source: AttributeSource | None) -> int:
    if kind == "color":
        return 1
    if kind == "joint_indices":
        return 4
    if kind == "joint_weights":
        return 3
    return source.stride


def _format(kind: str) -> str:
    if kind == "color":
        return "rgba8_packed"
    return "float32"


def consolidate(
    channels: Sequence[VertexChannel] | Mapping[str, VertexChannel],
    skin_weights: SkinWeights | None = None,
) -> ConsolidatedMesh:
    """Weld independently indexed attribute streams into one vertex buffer.

    Args:
        channels: One channel per attribute kind; ``position`` is required.
        skin_weights: Optional per base vertex joint binding. It is indexed by
            the position index stream and adds nothing to the vertex key.

    Returns:
        ConsolidatedMesh with channels in ``CHANNEL_ORDER`` and the triangle
        winding reversed.

    Raises:
        ValidationError: Missing position, mismatched stream lengths, unknown
            or duplicate kinds, or skin data that does not cover the positions.
        InvariantError: An index outside its attribute source.
    """
    if isinstance(channels, Mapping):
        channels = list(channels.values())

    by_kind: dict[str, VertexChannel] = {}
    for ch in channels:
        if ch.kind not in KEYED_KINDS:
            raise ValidationError(f"Unknown vertex channel kind {ch.kind!r}")
        if ch.kind in by_kind:
            raise ValidationError(f"Duplicate {ch.kind!r} channel")
        by_kind[ch.kind] = ch

    if "position" not in by_kind:
        raise ValidationError("Mesh part has no position stream")

    corner_count = len(by_kind["position"].indices)
    for ch in by_kind.values():
        if len(ch.indices) != corner_count:
            raise ValidationError(
                f"{ch.kind} index stream has {len(ch.indices)} entries, "
                f"position has {corner_count}"
            )
    if corner_count % 3 != 0:
        raise ValidationError(f"{corner_count} corners do not form whole triangles")

    streams: dict[str, np.ndarray] = {}
    for kind, ch in by_kind.items():
        idx = np.asarray(ch.indices, dtype=np.int64)
        if len(idx) and (idx.min() < 0 or idx.max() >= ch.source.count):
            bad = int(idx[(idx < 0) | (idx >= ch.source.count)][0])
            raise InvariantError(
                f"{kind} index {bad} outside source {ch.source.id!r} "
                f"of {ch.source.count} values"
            )
        streams[kind] = idx

    if skin_weights is not None:
        needed = by_kind["position"].source.count
        if skin_weights.vertex_count < needed:
            raise ValidationError(
                f"Skin weights cover {skin_weights.vertex_count} vertices, "
                f"position source has {needed}"
            )

    keyed = [k for k in KEYED_KINDS if k in by_kind]
    dedup: dict[tuple[int, ...], int] = {}
    first_corner: list[int] = []
    indices = np.empty(corner_count, dtype=np.uint32)
    key_columns = [streams[k].tolist() for k in keyed]
    for i, key in enumerate(zip(*key_columns)):
        found = dedup.get(key)
        if found is None:
            found = len(first_corner)
            dedup[key] = found
            first_corner.append(i)
        indices[i] = found

    corners = np.asarray(first_corner, dtype=np.int64)
    kinds = list(keyed)
    if skin_weights is not None:
        kinds += ["joint_indices", "joint_weights"]

    layout: list[ChannelDescription] = []
    offset = 0
    for kind in kinds:
        n = _component_count(kind, by_kind[kind].source if kind in by_kind else None)
        layout.append(ChannelDescription(kind, _format(kind), n, offset * 4))
        offset += n
    stride = offset

    rows = np.zeros((len(corners), stride), dtype=np.float32)
    for desc in layout:
        col = desc.byte_offset // 4
        end = col + desc.component_count
        kind = desc.kind
        if kind == "color":
            packed = pack_colors(by_kind[kind].source.rows())
            picked = packed.view("<u4")[streams[kind][corners]]
            rows.view("<u4")[:, col] = picked
        elif kind == "texcoord":
            uv = by_kind[kind].source.rows()[streams[kind][corners]].copy()
            if uv.shape[1] >= 2:
                uv[:, 1] = 1.0 - uv[:, 1]
            rows[:, col:end] = uv
        elif kind == "joint_indices":
            base = streams["position"][corners]
            rows[:, col:end] = skin_weights.joint_indices[base].astype(np.float32)
        elif kind == "joint_weights":
            base = streams["position"][corners]
            rows[:, col:end] = skin_weights.joint_weights[base]
        else:
            rows[:, col:end] = by_kind[kind].source.rows()[streams[kind][corners]]

    return ConsolidatedMesh(
        vertex_buffer=rows.reshape(-1),
        index_buffer=reverse_winding(indices),
        channel_layout=layout,
        vertex_stride=stride,
    )
