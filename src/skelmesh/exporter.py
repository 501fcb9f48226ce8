"""glTF/GLB assembly via pygltflib."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pygltflib

from skelmesh.animation import JointAnimation
from skelmesh.consolidation import ConsolidatedMesh, reverse_winding
from skelmesh.errors import ExportError
from skelmesh.hierarchy import JointHierarchy
from skelmesh.importer import Model
from skelmesh.transforms import decompose

# Float channels that map straight onto glTF attributes
_ATTRIBUTE_NAMES = {
    "position": "POSITION",
    "normal": "NORMAL",
}

# Written to their own views (tangent gains a handedness w, binormal folds into it)
_SEPARATE_KINDS = ("tangent", "binormal", "joint_indices", "joint_weights")

_ACCESSOR_TYPES = {
    1: pygltflib.SCALAR,
    2: pygltflib.VEC2,
    3: pygltflib.VEC3,
    4: pygltflib.VEC4,
}


def export_gltf(model: Model, output_path: Path) -> None:
    """Export an imported model to a GLB file.

    Joints become nodes in hierarchy order, so JOINTS_0 values equal joint
    indices. Triangle winding is restored to counter-clockwise.
    """
    try:
        gltf = build_gltf(model)
        glb_bytes = b"".join(gltf.save_to_bytes())
        output_path.write_bytes(glb_bytes)
    except Exception as e:
        if isinstance(e, ExportError):
            raise
        raise ExportError(f"Failed to export glTF: {e}") from e


def build_gltf(model: Model) -> pygltflib.GLTF2:
    """Build the glTF2 structure of a model with an embedded binary blob."""
    gltf = pygltflib.GLTF2(
        scene=0,
        scenes=[pygltflib.Scene(nodes=[])],
        nodes=[],
        meshes=[],
        accessors=[],
        bufferViews=[],
        buffers=[],
        materials=[],
        skins=[],
        animations=[],
    )
    blob_data = bytearray()

    joints = model.joints
    _add_joint_nodes(gltf, joints)
    gltf.scenes[0].nodes.append(joints.root.index)

    skin_idx = None
    if any(mesh.skinned for mesh in model.meshes):
        skin_idx = _add_skin(gltf, blob_data, joints)

    material_map: dict[str, int] = {}
    for mesh in model.meshes:
        primitives = []
        for part in mesh.parts:
            if part.mesh.vertex_count == 0:
                continue
            prim = _add_primitive(gltf, blob_data, part.mesh)
            if part.material is not None:
                prim.material = _register_material(gltf, part.material, material_map)
            primitives.append(prim)
        if not primitives:
            continue

        mesh_idx = len(gltf.meshes)
        gltf.meshes.append(pygltflib.Mesh(name=mesh.name, primitives=primitives))
        node_idx = len(gltf.nodes)
        node = pygltflib.Node(name=mesh.name, mesh=mesh_idx)
        if mesh.skinned and skin_idx is not None:
            node.skin = skin_idx
        gltf.nodes.append(node)
        gltf.scenes[0].nodes.append(node_idx)

    for anim in model.animations:
        _add_animation(gltf, blob_data, anim)

    gltf.buffers.append(pygltflib.Buffer(byteLength=len(blob_data)))
    gltf.set_binary_blob(bytes(blob_data))
    return gltf


def _append_aligned(blob_data: bytearray, data: bytes) -> int:
    """Append ``data`` at a 4-byte boundary and return its offset."""
    blob_data.extend(b"\x00" * ((4 - len(blob_data) % 4) % 4))
    offset = len(blob_data)
    blob_data.extend(data)
    return offset


def _write_buffer_view_and_accessor(
    gltf: pygltflib.GLTF2,
    blob_data: bytearray,
    data_array: np.ndarray,
    component_type: int,
    accessor_type: str,
    target: int | None = None,
    *,
    include_min_max: bool = False,
) -> int:
    """Write a tightly packed buffer view and accessor, returning the accessor index."""
    offset = _append_aligned(blob_data, data_array.tobytes())

    bv_idx = len(gltf.bufferViews)
    bv = pygltflib.BufferView(buffer=0, byteOffset=offset, byteLength=data_array.nbytes)
    if target is not None:
        bv.target = target
    gltf.bufferViews.append(bv)

    acc_kwargs: dict = {
        "bufferView": bv_idx,
        "byteOffset": 0,
        "componentType": component_type,
        "count": len(data_array),
        "type": accessor_type,
    }
    if include_min_max:
        acc_kwargs["min"] = np.atleast_1d(data_array.min(axis=0)).tolist()
        acc_kwargs["max"] = np.atleast_1d(data_array.max(axis=0)).tolist()

    acc_idx = len(gltf.accessors)
    gltf.accessors.append(pygltflib.Accessor(**acc_kwargs))
    return acc_idx


# ---------------------------------------------------------------------------
# Joints and skin
# ---------------------------------------------------------------------------


def _add_joint_nodes(gltf: pygltflib.GLTF2, joints: JointHierarchy) -> None:
    for joint in joints:
        node = pygltflib.Node(name=joint.name or f"joint_{joint.index}")
        try:
            scale, rotation, translation = decompose(joint.local_transform)
        except ValueError:
            # glTF matrices are column-major
            node.matrix = joint.local_transform.T.reshape(-1).tolist()
        else:
            node.translation = translation.tolist()
            node.rotation = [rotation[1], rotation[2], rotation[3], rotation[0]]
            node.scale = scale.tolist()
        if joint.children:
            node.children = list(joint.children)
        gltf.nodes.append(node)


def _add_skin(gltf: pygltflib.GLTF2, blob_data: bytearray, joints: JointHierarchy) -> int:
    ibms = np.stack([j.inverse_bind_pose.T for j in joints]).astype(np.float32)
    ibm_acc_idx = _write_buffer_view_and_accessor(
        gltf, blob_data, ibms, pygltflib.FLOAT, pygltflib.MAT4,
    )
    skin_idx = len(gltf.skins)
    gltf.skins.append(
        pygltflib.Skin(
            joints=[j.index for j in joints],
            skeleton=joints.root.index,
            inverseBindMatrices=ibm_acc_idx,
        )
    )
    return skin_idx


# ---------------------------------------------------------------------------
# Meshes
# ---------------------------------------------------------------------------


def _add_primitive(
    gltf: pygltflib.GLTF2, blob_data: bytearray, mesh: ConsolidatedMesh
) -> pygltflib.Primitive:
    layout = {d.kind: d for d in mesh.channel_layout}
    if layout["position"].component_count != 3:
        raise ExportError(
            f"glTF positions need 3 components, got {layout['position'].component_count}"
        )

    # Float and packed color channels share one strided view
    offset = _append_aligned(blob_data, mesh.vertex_buffer.astype(np.float32).tobytes())
    vertex_bv = len(gltf.bufferViews)
    gltf.bufferViews.append(
        pygltflib.BufferView(
            buffer=0,
            byteOffset=offset,
            byteLength=mesh.vertex_buffer.nbytes,
            byteStride=mesh.vertex_stride * 4,
            target=pygltflib.ARRAY_BUFFER,
        )
    )

    attributes = pygltflib.Attributes()
    for kind, desc in layout.items():
        if kind in _SEPARATE_KINDS:
            continue
        acc = pygltflib.Accessor(
            bufferView=vertex_bv,
            byteOffset=desc.byte_offset,
            count=mesh.vertex_count,
        )
        if kind == "color":
            acc.componentType = pygltflib.UNSIGNED_BYTE
            acc.normalized = True
            acc.type = pygltflib.VEC4
            name = "COLOR_0"
        else:
            acc.componentType = pygltflib.FLOAT
            acc.type = _ACCESSOR_TYPES[desc.component_count]
            if kind == "texcoord":
                if desc.component_count != 2:
                    continue
                name = "TEXCOORD_0"
            else:
                name = _ATTRIBUTE_NAMES[kind]
        if kind == "position":
            lo, hi = mesh.bounds
            acc.min = lo.tolist()
            acc.max = hi.tolist()
        setattr(attributes, name, len(gltf.accessors))
        gltf.accessors.append(acc)

    if "tangent" in layout and layout["tangent"].component_count == 3:
        attributes.TANGENT = _write_buffer_view_and_accessor(
            gltf, blob_data, _tangents_with_handedness(mesh), pygltflib.FLOAT,
            pygltflib.VEC4, pygltflib.ARRAY_BUFFER,
        )

    if "joint_indices" in layout:
        joints = mesh.channel("joint_indices")
        if joints.max(initial=0) > 0xFFFF:
            raise ExportError("Joint index does not fit JOINTS_0 (UNSIGNED_SHORT)")
        attributes.JOINTS_0 = _write_buffer_view_and_accessor(
            gltf, blob_data, joints.astype(np.uint16), pygltflib.UNSIGNED_SHORT,
            pygltflib.VEC4, pygltflib.ARRAY_BUFFER,
        )
        w3 = mesh.channel("joint_weights").astype(np.float64)
        w4 = np.concatenate([w3, 1.0 - w3.sum(axis=1, keepdims=True)], axis=1)
        attributes.WEIGHTS_0 = _write_buffer_view_and_accessor(
            gltf, blob_data, w4.astype(np.float32), pygltflib.FLOAT,
            pygltflib.VEC4, pygltflib.ARRAY_BUFFER,
        )

    indices = reverse_winding(mesh.compact_indices())
    index_type = (
        pygltflib.UNSIGNED_SHORT if indices.dtype == np.uint16 else pygltflib.UNSIGNED_INT
    )
    index_acc = _write_buffer_view_and_accessor(
        gltf, blob_data, indices, index_type, pygltflib.SCALAR, pygltflib.ELEMENT_ARRAY_BUFFER,
    )
    return pygltflib.Primitive(attributes=attributes, indices=index_acc, mode=pygltflib.TRIANGLES)


def _tangents_with_handedness(mesh: ConsolidatedMesh) -> np.ndarray:
    """(N, 4) tangents; w is -1 where the binormal opposes normal x tangent."""
    tangents = mesh.channel("tangent").astype(np.float64)
    w = np.ones((mesh.vertex_count, 1), dtype=np.float64)
    if mesh.has_channel("normal") and mesh.has_channel("binormal"):
        normals = mesh.channel("normal")[:, :3].astype(np.float64)
        binormals = mesh.channel("binormal")[:, :3].astype(np.float64)
        side = np.einsum("ij,ij->i", np.cross(normals, tangents), binormals)
        w[side < 0.0, 0] = -1.0
    return np.concatenate([tangents, w], axis=1).astype(np.float32)


def _register_material(gltf: pygltflib.GLTF2, name: str, material_map: dict[str, int]) -> int:
    if name not in material_map:
        material_map[name] = len(gltf.materials)
        gltf.materials.append(
            pygltflib.Material(name=name, pbrMetallicRoughness=pygltflib.PbrMetallicRoughness())
        )
    return material_map[name]


# ---------------------------------------------------------------------------
# Animations
# ---------------------------------------------------------------------------


def _add_animation(gltf: pygltflib.GLTF2, blob_data: bytearray, anim: JointAnimation) -> None:
    samplers: list[pygltflib.AnimationSampler] = []
    channels: list[pygltflib.AnimationChannel] = []

    for channel in anim.channels:
        keyframes = channel.sampler.keyframes
        times = np.array([k.time for k in keyframes], dtype=np.float32)
        time_acc = _write_buffer_view_and_accessor(
            gltf, blob_data, times, pygltflib.FLOAT, pygltflib.SCALAR, include_min_max=True,
        )
        outputs = {
            "translation": (np.array([k.translation for k in keyframes]), pygltflib.VEC3),
            "rotation": (np.array([np.roll(k.rotation, -1) for k in keyframes]), pygltflib.VEC4),
            "scale": (np.array([k.scale for k in keyframes]), pygltflib.VEC3),
        }
        for path, (values, acc_type) in outputs.items():
            out_acc = _write_buffer_view_and_accessor(
                gltf, blob_data, values.astype(np.float32), pygltflib.FLOAT, acc_type,
            )
            channels.append(
                pygltflib.AnimationChannel(
                    sampler=len(samplers),
                    target=pygltflib.AnimationChannelTarget(node=channel.target, path=path),
                )
            )
            samplers.append(
                pygltflib.AnimationSampler(input=time_acc, output=out_acc, interpolation="LINEAR")
            )

    gltf.animations.append(
        pygltflib.Animation(
            name=anim.name or anim.global_id, samplers=samplers, channels=channels
        )
    )
