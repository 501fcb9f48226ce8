"""Skin binding to per-vertex top-4 joint indices and weights."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from skelmesh.errors import InvariantError, ValidationError
from skelmesh.hierarchy import JointHierarchy
from skelmesh.models import Skin, SkinJoints
from skelmesh.transforms import matrix_from_row_major
from skelmesh.warning_policy import WarningPolicy, emit_warning

MAX_INFLUENCES = 4
WEIGHT_TOLERANCE = 1e-3


@dataclass
class SkinWeights:
    """Per base vertex joint binding, ready to attach as vertex channels."""

    joint_indices: np.ndarray  # (N, 4) int32, hierarchy indices
    joint_weights: np.ndarray  # (N, 3) float32, fourth weight implicit
    joint_source_indices: np.ndarray  # (N, 4) int32, -1 for unused slots

    @property
    def vertex_count(self) -> int:
        return len(self.joint_indices)

    def full_weights(self) -> np.ndarray:
        """(N, 4) weights including the implicit fourth one."""
        fourth = 1.0 - self.joint_weights.sum(axis=1, dtype=np.float64)
        out = np.zeros((self.vertex_count, 4), dtype=np.float32)
        out[:, :3] = self.joint_weights
        out[:, 3] = fourth
        return out


def reduce_skin_weights(
    skin: Skin,
    hierarchy: JointHierarchy,
    *,
    vertex_count: int | None = None,
    policy: WarningPolicy | None = None,
) -> SkinWeights:
    """Reduce a skin binding to at most four normalized influences per vertex.

    Args:
        skin: Decoded skin binding.
        hierarchy: Joints the skin's joint source refers to.
        vertex_count: Expected number of base vertices, checked against
            ``vertex_weights.vcount`` when given.
        policy: Warning policy for truncation (W02) and unweighted vertices (W03).

    Returns:
        SkinWeights with hierarchy joint indices.

    Raises:
        ValidationError: On inconsistent weight tables or unresolved joints.
        InvariantError: If a vertex's weights do not sum to one.
    """
    table = skin.vertex_weights
    names = skin.joints.names
    n_verts = len(table.vcount)
    if vertex_count is not None and n_verts != vertex_count:
        raise ValidationError(
            f"Skin on {skin.source!r} weights {n_verts} vertices, "
            f"mesh has {vertex_count}"
        )

    source_idx = np.full((n_verts, MAX_INFLUENCES), -1, dtype=np.int32)
    weights4 = np.zeros((n_verts, MAX_INFLUENCES), dtype=np.float64)
    truncated = 0
    unweighted = 0

    stride = table.stride
    cursor = 0
    for v, count in enumerate(table.vcount):
        end = cursor + count * stride
        if count < 0 or end > len(table.v):
            raise ValidationError(
                f"Skin on {skin.source!r}: vertex {v} declares {count} influences "
                f"past the end of the weight table"
            )

        pairs: list[tuple[int, float]] = []
        for base in range(cursor, end, stride):
            j = table.v[base + table.joint_offset]
            w = table.v[base + table.weight_offset]
            if not 0 <= j < len(names):
                raise ValidationError(
                    f"Skin on {skin.source!r}: vertex {v} references joint source "
                    f"entry {j} (have {len(names)})"
                )
            if not 0 <= w < len(skin.weights):
                raise ValidationError(
                    f"Skin on {skin.source!r}: vertex {v} references weight "
                    f"entry {w} (have {len(skin.weights)})"
                )
            pairs.append((j, float(skin.weights[w])))
        cursor = end

        # Stable: equal weights keep declaration order
        pairs.sort(key=lambda p: -p[1])
        if len(pairs) > MAX_INFLUENCES:
            truncated += 1
            pairs = pairs[:MAX_INFLUENCES]

        raw_sum = sum(w for _, w in pairs)
        if raw_sum == 0.0:
            # Leave all weights at zero; slot 3 takes the implicit full weight
            unweighted += 1
            source_idx[v, : len(pairs)] = [j for j, _ in pairs]
            continue
        for slot, (j, w) in enumerate(pairs):
            source_idx[v, slot] = j
            weights4[v, slot] = w / raw_sum

    if cursor != len(table.v):
        raise ValidationError(
            f"Skin on {skin.source!r}: weight table has {len(table.v) - cursor} "
            f"unused entries"
        )

    if truncated:
        emit_warning(
            "W02",
            f"Skin on {skin.source!r}: {truncated} vertices have more than "
            f"{MAX_INFLUENCES} influences; kept the heaviest {MAX_INFLUENCES}",
            policy=policy,
        )
    if unweighted:
        emit_warning(
            "W03",
            f"Skin on {skin.source!r}: {unweighted} vertices have zero total weight; "
            f"bound to joint 0",
            policy=policy,
        )

    used = np.unique(source_idx[source_idx >= 0])
    probe = int(source_idx[0, 0]) if n_verts and source_idx[0, 0] >= 0 else 0
    resolved = resolve_joint_references(
        skin.joints, hierarchy, probe=probe, required=(int(i) for i in used),
    )

    joint_indices = np.zeros((n_verts, MAX_INFLUENCES), dtype=np.int32)
    unweighted_rows = weights4.sum(axis=1) == 0.0
    for v in range(n_verts):
        if unweighted_rows[v]:
            continue
        for slot in range(MAX_INFLUENCES):
            j = source_idx[v, slot]
            if j >= 0:
                joint_indices[v, slot] = resolved[j]

    _check_weight_sums(weights4, unweighted_rows, skin.source)

    return SkinWeights(
        joint_indices=joint_indices,
        joint_weights=weights4[:, :3].astype(np.float32),
        joint_source_indices=source_idx,
    )


def resolve_joint_references(
    joints: SkinJoints,
    hierarchy: JointHierarchy,
    *,
    probe: int = 0,
    required: Iterable[int] | None = None,
) -> list[int | None]:
    """Map joint source entries to hierarchy indices.

    Entries are looked up by the source's reference kind. If the probe entry
    does not resolve by name, the whole source switches to sid lookup.
    Entries listed in ``required`` (all entries when None) must resolve.

    Raises:
        ValidationError: If the probe or a required entry stays unresolved.
    """
    names = joints.names
    kind = joints.kind
    index = hierarchy.address_index(kind)
    if names[probe] not in index and kind == "name":
        index = hierarchy.address_index("sidref")
        kind = "sidref"
    if names[probe] not in index:
        raise ValidationError(f"Joint {names[probe]!r} not found in hierarchy")

    resolved: list[int | None] = [index.get(n) for n in names]
    for i in range(len(names)) if required is None else required:
        if resolved[i] is None:
            raise ValidationError(
                f"Joint {names[i]!r} not found in hierarchy (looked up by {kind})"
            )
    return resolved


def apply_inverse_bind_poses(skin: Skin, hierarchy: JointHierarchy) -> list[int]:
    """Store the skin's inverse bind matrices on the joints they belong to.

    Returns the hierarchy index of every joint source entry.
    """
    if len(hierarchy) <= 1:
        raise ValidationError(f"Skin on {skin.source!r} found no joints in the hierarchy")
    matrices = skin.inverse_bind_matrices
    if matrices and len(matrices) != len(skin.joints.names):
        raise ValidationError(
            f"Skin on {skin.source!r} has {len(skin.joints.names)} joints but "
            f"{len(matrices)} inverse bind matrices"
        )

    resolved = [int(i) for i in resolve_joint_references(skin.joints, hierarchy)]
    for idx, values in zip(resolved, matrices):
        hierarchy[idx].inverse_bind_pose = matrix_from_row_major(values)
    return resolved


def _check_weight_sums(weights4: np.ndarray, unweighted: np.ndarray, source: str) -> None:
    if not np.all(np.isfinite(weights4)):
        bad = int(np.argwhere(~np.isfinite(weights4))[0][0])
        raise InvariantError(f"Skin on {source!r}: vertex {bad} has non-finite weights")
    first3 = weights4[:, :3].sum(axis=1)
    total = first3 + weights4[:, 3]
    off = np.abs(total - 1.0) >= WEIGHT_TOLERANCE
    off &= ~unweighted
    if np.any(off):
        bad = int(np.argmax(off))
        raise InvariantError(
            f"Skin on {source!r}: vertex {bad} weights sum to {total[bad]:.6f}"
        )
