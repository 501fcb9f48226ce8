"""CPU linear blend skinning of consolidated meshes."""

from __future__ import annotations

import numpy as np

from skelmesh.consolidation import ConsolidatedMesh
from skelmesh.errors import InvariantError
from skelmesh.hierarchy import JointHierarchy

DIRECTION_KINDS = ("normal", "tangent", "binormal")


def joint_skinning_matrices(hierarchy: JointHierarchy) -> np.ndarray:
    """(J, 4, 4) per-joint ``absolute @ inverse_bind_pose``."""
    return np.stack([j.absolute_transform @ j.inverse_bind_pose for j in hierarchy])


def skin_vertices(mesh: ConsolidatedMesh, hierarchy: JointHierarchy) -> np.ndarray:
    """Deform a mesh by the hierarchy's current absolute transforms.

    Returns a new flat vertex buffer with the same layout. Positions are
    blended with the four joint weights; normals, tangents and binormals go
    through the inverse transpose of the blended matrix and are renormalized.
    Vertices without stored weights and meshes without skin channels are
    copied unchanged.
    """
    out = mesh.vertex_buffer.copy()
    if not (mesh.has_channel("joint_indices") and mesh.has_channel("joint_weights")):
        return out

    rows = out.reshape(mesh.vertex_count, mesh.vertex_stride)
    offsets = {d.kind: (d.byte_offset // 4, d.component_count) for d in mesh.channel_layout}

    skin_mats = joint_skinning_matrices(hierarchy)
    joints = mesh.channel("joint_indices").astype(np.int64)
    if len(joints) and (joints.min() < 0 or joints.max() >= len(skin_mats)):
        raise InvariantError(
            f"Joint index {int(joints.max())} outside hierarchy of {len(skin_mats)} joints"
        )
    w3 = mesh.channel("joint_weights").astype(np.float64)
    w4 = np.concatenate([w3, 1.0 - w3.sum(axis=1, keepdims=True)], axis=1)

    pos_col = offsets["position"][0]
    directions = [
        offsets[k][0] for k in DIRECTION_KINDS if k in offsets and offsets[k][1] == 3
    ]

    for v in range(mesh.vertex_count):
        if not np.any(w3[v]):
            continue
        m = np.zeros((4, 4), dtype=np.float64)
        for k in range(4):
            m += w4[v, k] * skin_mats[joints[v, k]]

        p_h = np.ones(4, dtype=np.float64)
        p_h[:3] = rows[v, pos_col : pos_col + 3]
        rows[v, pos_col : pos_col + 3] = (m @ p_h)[:3]

        if not directions:
            continue
        basis = m[:3, :3]
        if abs(np.linalg.det(basis)) > 1e-12:
            normal_mat = np.linalg.inv(basis).T
        else:
            normal_mat = basis
        for col in directions:
            d = normal_mat @ rows[v, col : col + 3].astype(np.float64)
            length = np.sqrt(np.dot(d, d))
            if length > 1e-12:
                rows[v, col : col + 3] = d / length

    return out
