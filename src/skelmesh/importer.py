"""Scene description to renderer-ready model.

Import order: joint hierarchy, skins (inverse bind poses and weights),
geometry consolidation, then animations addressed by joint index. Any error
aborts the whole import.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from skelmesh.animation import (
    JointAnimation,
    JointAnimationChannel,
    JointAnimationList,
    JointAnimationSampler,
    combine_animations,
    is_supported_member,
    keyframe_from_channel_value,
    split_target,
    value_width,
)
from skelmesh.consolidation import (
    SEMANTIC_KINDS,
    AttributeSource,
    ConsolidatedMesh,
    VertexChannel,
    check_triangles,
    consolidate,
    split_index_stream,
)
from skelmesh.errors import ValidationError
from skelmesh.hierarchy import JointHierarchy, build_joint_hierarchy
from skelmesh.models import Animation, Geometry, GeometryPart, SceneSpec, Skin
from skelmesh.parser import parse_scene
from skelmesh.skinning import SkinWeights, apply_inverse_bind_poses, reduce_skin_weights
from skelmesh.warning_policy import WarningPolicy, emit_warning


@dataclass
class MeshPart:
    material: str | None
    mesh: ConsolidatedMesh


@dataclass
class Mesh:
    name: str
    parts: list[MeshPart]
    skin_weights: SkinWeights | None = None

    @property
    def skinned(self) -> bool:
        return self.skin_weights is not None


@dataclass
class Model:
    joints: JointHierarchy
    meshes: list[Mesh] = field(default_factory=list)
    animations: JointAnimationList = field(default_factory=JointAnimationList)


def load_model(source: str | Path, *, warning_policy: WarningPolicy | None = None) -> Model:
    """Parse a scene description and import it."""
    return import_scene(parse_scene(source), warning_policy=warning_policy)


def import_scene(spec: SceneSpec, *, warning_policy: WarningPolicy | None = None) -> Model:
    """Import a parsed scene.

    Raises:
        ValidationError: Malformed input (missing sources, dangling references).
        UnsupportedFeatureError: Non-triangle faces or unsupported behaviours.
        InvariantError: Corrupt weights or out-of-range indices.
    """
    hierarchy = build_joint_hierarchy(spec.nodes, spec.skeletons)
    geometries = {g.id: g for g in spec.geometries}

    skins: dict[str, Skin] = {}
    for skin in spec.skins:
        if skin.source not in geometries:
            raise ValidationError(f"Mesh referenced by skin not found: {skin.source!r}")
        apply_inverse_bind_poses(skin, hierarchy)
        skins[skin.source] = skin

    meshes = [
        _import_geometry(g, skins.get(g.id), hierarchy, warning_policy) for g in spec.geometries
    ]
    animations = _import_animations(spec.animations, hierarchy, warning_policy)

    hierarchy.check_invariants()
    hierarchy.update_absolute_transforms()
    return Model(joints=hierarchy, meshes=meshes, animations=animations)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


def _import_geometry(
    geometry: Geometry,
    skin: Skin | None,
    hierarchy: JointHierarchy,
    policy: WarningPolicy | None,
) -> Mesh:
    sources = {
        s.id: AttributeSource.from_values(s.data, s.stride, s.id) for s in geometry.sources
    }

    skin_weights = None
    if skin is not None and len(hierarchy) > 1 and geometry.parts:
        positions = _part_source(geometry, geometry.parts[0], "position", sources)
        skin_weights = reduce_skin_weights(
            skin, hierarchy, vertex_count=positions.count, policy=policy
        )

    parts = []
    for part in geometry.parts:
        try:
            mesh = _consolidate_part(part, sources, skin_weights, policy)
        except ValidationError as e:
            raise ValidationError(f"Geometry {geometry.id!r}: {e}") from e
        parts.append(MeshPart(material=part.material, mesh=mesh))

    return Mesh(name=geometry.name or geometry.id, parts=parts, skin_weights=skin_weights)


def _part_source(
    geometry: Geometry,
    part: GeometryPart,
    kind: str,
    sources: dict[str, AttributeSource],
) -> AttributeSource:
    for inp in part.inputs:
        if SEMANTIC_KINDS[inp.semantic] == kind:
            return _lookup_source(inp.source, sources)
    raise ValidationError(f"Geometry {geometry.id!r} has no {kind} stream")


def _lookup_source(ref: str, sources: dict[str, AttributeSource]) -> AttributeSource:
    key = ref[1:] if ref.startswith("#") else ref
    if key not in sources:
        raise ValidationError(f"Source {ref!r} not found")
    return sources[key]


def _consolidate_part(
    part: GeometryPart,
    sources: dict[str, AttributeSource],
    skin_weights: SkinWeights | None,
    policy: WarningPolicy | None,
) -> ConsolidatedMesh:
    check_triangles(part.primitive, part.vcount)
    corner_count = 3 * part.count
    streams = split_index_stream(part.p, [inp.offset for inp in part.inputs], corner_count)

    # First input of each kind wins
    channels: dict[str, VertexChannel] = {}
    for inp in part.inputs:
        kind = SEMANTIC_KINDS[inp.semantic]
        if kind in channels:
            emit_warning(
                "W05",
                f"Input {inp.semantic} from {inp.source!r} ignored; "
                f"part already has a {kind} stream",
                policy=policy,
            )
            continue
        channels[kind] = VertexChannel(
            kind=kind,
            source=_lookup_source(inp.source, sources),
            indices=streams[inp.offset],
        )
    return consolidate(channels, skin_weights)


# ---------------------------------------------------------------------------
# Animations
# ---------------------------------------------------------------------------


def _import_animations(
    animations: list[Animation],
    hierarchy: JointHierarchy,
    policy: WarningPolicy | None,
) -> JointAnimationList:
    joint_ids = hierarchy.address_index("id")
    imported = []
    for anim in animations:
        channels = []
        for ch in anim.channels:
            node_id, member, component = split_target(ch.target)
            if node_id not in joint_ids:
                continue
            if not is_supported_member(member, component):
                emit_warning("W04", f"Animation target {ch.target!r} ignored", policy=policy)
                continue

            width = value_width(member, component)
            if len(ch.values) != len(ch.times) * width:
                raise ValidationError(
                    f"Channel {ch.target!r}: {len(ch.times)} times need "
                    f"{len(ch.times) * width} values, got {len(ch.values)}"
                )
            keyframes = []
            for i, t in enumerate(ch.times):
                value = ch.values[i] if width == 1 else ch.values[i * width : (i + 1) * width]
                keyframes.append(
                    keyframe_from_channel_value(member, component, value, t, policy=policy)
                )
            sampler = JointAnimationSampler(
                keyframes,
                ch.interpolation,
                ch.pre_behaviour,
                ch.post_behaviour,
                policy=policy,
            )
            channels.append(JointAnimationChannel(sampler, joint_ids[node_id]))

        if channels:
            imported.append(
                JointAnimation(channels, name=anim.name, global_id=anim.id, scoped_id=anim.sid)
            )

    return JointAnimationList(combine_animations(imported))
