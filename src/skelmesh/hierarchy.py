"""Joint hierarchy: flat indexed joints with a synthetic root appended last."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

import numpy as np

from skelmesh.errors import InvariantError, ValidationError
from skelmesh.models import NodeTransform, SceneNode
from skelmesh.transforms import (
    axis_angle_matrix,
    identity,
    lookat_matrix,
    matrix_from_row_major,
    scale_matrix,
    translation_matrix,
)

ROOT_NAME = "__root"

ADDRESS_KINDS: dict[str, str] = {
    "name": "name",
    "idref": "global_id",
    "id": "global_id",
    "sidref": "scoped_id",
    "sid": "scoped_id",
}


@dataclass(eq=False)
class Joint:
    """One joint. ``parent`` and ``children`` are indices into the hierarchy."""

    index: int
    name: str | None = None
    global_id: str | None = None
    scoped_id: str | None = None
    local_transform: np.ndarray = field(default_factory=identity)
    absolute_transform: np.ndarray = field(default_factory=identity)
    inverse_bind_pose: np.ndarray = field(default_factory=identity)
    parent: int | None = None
    children: list[int] = field(default_factory=list)


class JointHierarchy:
    """Flat joint list whose last element is the single root."""

    def __init__(self, joints: list[Joint]) -> None:
        if not joints:
            raise ValidationError("A joint hierarchy needs at least a root joint")
        self._joints = joints

    def __len__(self) -> int:
        return len(self._joints)

    def __getitem__(self, index: int) -> Joint:
        return self._joints[index]

    def __iter__(self) -> Iterator[Joint]:
        return iter(self._joints)

    @property
    def root(self) -> Joint:
        return self._joints[-1]

    @property
    def names(self) -> list[str | None]:
        return [j.name for j in self._joints]

    def parent_of(self, index: int) -> Joint | None:
        parent = self._joints[index].parent
        return None if parent is None else self._joints[parent]

    def children_of(self, index: int) -> list[Joint]:
        return [self._joints[c] for c in self._joints[index].children]

    def address_index(self, kind: str = "name") -> dict[str, int]:
        """Map joint addresses of one kind to joint indices.

        Joints without an address of that kind are left out. When two joints
        share an address the first one wins.
        """
        attr = _address_attr(kind)
        index: dict[str, int] = {}
        for joint in self._joints:
            key = getattr(joint, attr)
            if key is not None and key not in index:
                index[key] = joint.index
        return index

    def find(self, address: str, kind: str = "name") -> Joint | None:
        idx = self.address_index(kind).get(address)
        return None if idx is None else self._joints[idx]

    def update_absolute_transforms(self) -> None:
        """Recompute absolute transforms, parents before children."""
        root = self.root
        root.absolute_transform = root.local_transform.copy()
        stack = list(reversed(root.children))
        while stack:
            joint = self._joints[stack.pop()]
            parent = self._joints[joint.parent]
            joint.absolute_transform = parent.absolute_transform @ joint.local_transform
            stack.extend(reversed(joint.children))

    def copy(self) -> JointHierarchy:
        """Independent copy with the same indices and links."""
        return JointHierarchy(
            [
                Joint(
                    index=j.index,
                    name=j.name,
                    global_id=j.global_id,
                    scoped_id=j.scoped_id,
                    local_transform=j.local_transform.copy(),
                    absolute_transform=j.absolute_transform.copy(),
                    inverse_bind_pose=j.inverse_bind_pose.copy(),
                    parent=j.parent,
                    children=list(j.children),
                )
                for j in self._joints
            ]
        )

    def check_invariants(self) -> None:
        """Raise InvariantError unless the last joint is the only parentless one."""
        roots = [j.index for j in self._joints if j.parent is None]
        if roots != [len(self._joints) - 1]:
            raise InvariantError(
                f"Hierarchy must have exactly one root at index {len(self._joints) - 1}, "
                f"found parentless joints {roots}"
            )
        for position, joint in enumerate(self._joints):
            if joint.index != position:
                raise InvariantError(f"Joint {joint.name!r} has stale index {joint.index}")
            for child in joint.children:
                if self._joints[child].parent != joint.index:
                    raise InvariantError(
                        f"Joint {child} is listed as a child of {joint.index} "
                        f"but its parent is {self._joints[child].parent}"
                    )


def _address_attr(kind: str) -> str:
    try:
        return ADDRESS_KINDS[kind.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown joint address kind {kind!r} (known: {sorted(ADDRESS_KINDS)})"
        ) from None


# ---------------------------------------------------------------------------
# Node transforms
# ---------------------------------------------------------------------------


def node_transform(transforms: Sequence[NodeTransform]) -> np.ndarray:
    """Compose a node's transform elements in document order."""
    mat = identity()
    for t in transforms:
        if t.matrix is not None:
            mat = mat @ matrix_from_row_major(t.matrix)
        elif t.rotate is not None:
            mat = mat @ axis_angle_matrix(t.rotate[:3], t.rotate[3])
        elif t.translate is not None:
            mat = mat @ translation_matrix(t.translate)
        elif t.scale is not None:
            mat = mat @ scale_matrix(t.scale)
        elif t.lookat is not None:
            mat = mat @ lookat_matrix(t.lookat[0:3], t.lookat[3:6], t.lookat[6:9])
        # skew is accepted by the schema but has no effect
    return mat


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def build_joint_hierarchy(
    nodes: Sequence[SceneNode],
    skeletons: Sequence[str] = (),
) -> JointHierarchy:
    """Build the joint hierarchy of a scene.

    Root candidates are the nodes named by ``skeletons`` or, when there are
    none, the first joint node in document order. Each candidate subtree is
    walked depth-first; every visited node becomes a joint. Nodes whose id was
    already visited are skipped with their subtree. A synthetic root is
    appended last and adopts the candidates.

    Raises:
        ValidationError: If a skeleton reference names no node.
        ValueError: If a node transform is degenerate.
    """
    candidates = _root_candidates(nodes, skeletons)

    joints: list[Joint] = []
    visited: set[str] = set()
    top_level: list[int] = []
    for node in candidates:
        idx = _visit(node, None, joints, visited)
        if idx is not None:
            top_level.append(idx)

    root_index = len(joints)
    for idx in top_level:
        joints[idx].parent = root_index
    joints.append(
        Joint(
            index=root_index,
            name=ROOT_NAME,
            global_id=ROOT_NAME,
            scoped_id=ROOT_NAME,
            children=top_level,
        )
    )

    hierarchy = JointHierarchy(joints)
    hierarchy.update_absolute_transforms()
    return hierarchy


def _visit(
    node: SceneNode,
    parent: int | None,
    joints: list[Joint],
    visited: set[str],
) -> int | None:
    if node.id is not None:
        if node.id in visited:
            return None
        visited.add(node.id)

    index = len(joints)
    joints.append(
        Joint(
            index=index,
            name=node.name if node.name is not None else node.id,
            global_id=node.id,
            scoped_id=node.sid,
            local_transform=node_transform(node.transforms),
            parent=parent,
        )
    )
    for child in node.children:
        child_index = _visit(child, index, joints, visited)
        if child_index is not None:
            joints[index].children.append(child_index)
    return index


def _root_candidates(nodes: Sequence[SceneNode], skeletons: Sequence[str]) -> list[SceneNode]:
    if skeletons:
        by_id = {n.id: n for n in _walk(nodes) if n.id is not None}
        candidates = []
        for ref in skeletons:
            key = ref[1:] if ref.startswith("#") else ref
            if key not in by_id:
                raise ValidationError(f"Skeleton node {ref!r} not found")
            candidates.append(by_id[key])
        return candidates

    for node in _walk(nodes):
        if node.type == "joint":
            return [node]
    return []


def _walk(nodes: Sequence[SceneNode]) -> Iterator[SceneNode]:
    """Depth-first pre-order over a node forest."""
    for node in nodes:
        yield node
        yield from _walk(node.children)
