"""Pydantic v2 schema for decoded scene descriptions."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

POSITION_SEMANTICS: frozenset[str] = frozenset({"VERTEX", "POSITION"})

INTERPOLATIONS: tuple[str, ...] = ("LINEAR", "STEP", "BEZIER", "HERMITE", "BSPLINE", "CARDINAL")

BEHAVIOURS: tuple[str, ...] = ("CONSTANT", "GRADIENT", "CYCLE", "OSCILLATE", "CYCLE_RELATIVE")


class NodeTransform(BaseModel):
    """One transform element of a node; elements apply in list order."""

    model_config = ConfigDict(extra="forbid")

    matrix: list[float] | None = None  # 16 values, row-major
    rotate: tuple[float, float, float, float] | None = None  # axis xyz, degrees
    translate: tuple[float, float, float] | None = None
    scale: tuple[float, float, float] | None = None
    lookat: list[float] | None = None  # eye, target, up
    skew: list[float] | None = None  # accepted, not evaluated

    @model_validator(mode="after")
    def _exactly_one_element(self) -> NodeTransform:
        forms = [
            self.matrix is not None,
            self.rotate is not None,
            self.translate is not None,
            self.scale is not None,
            self.lookat is not None,
            self.skew is not None,
        ]
        if sum(forms) != 1:
            raise ValueError(
                "Transform element must set exactly one of: "
                "matrix, rotate, translate, scale, lookat, skew"
            )
        if self.matrix is not None and len(self.matrix) != 16:
            raise ValueError(f"matrix needs 16 values, got {len(self.matrix)}")
        if self.lookat is not None and len(self.lookat) != 9:
            raise ValueError(f"lookat needs 9 values, got {len(self.lookat)}")
        return self


class SceneNode(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    sid: str | None = None
    name: str | None = None
    type: Literal["node", "joint"] = "node"
    transforms: list[NodeTransform] = []
    children: list[SceneNode] = []


class Source(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    stride: int = Field(ge=1)
    data: list[float]

    @model_validator(mode="after")
    def _data_multiple_of_stride(self) -> Source:
        if len(self.data) % self.stride != 0:
            raise ValueError(
                f"Source {self.id!r}: {len(self.data)} values is not a multiple "
                f"of stride {self.stride}"
            )
        return self


class PartInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    semantic: Literal[
        "VERTEX",
        "POSITION",
        "COLOR",
        "NORMAL",
        "TEXCOORD",
        "TANGENT",
        "TEXTANGENT",
        "BINORMAL",
        "TEXBINORMAL",
    ]
    source: str
    offset: int = Field(ge=0)


class GeometryPart(BaseModel):
    model_config = ConfigDict(extra="forbid")

    primitive: Literal["triangles", "polylist", "polygons", "trifans", "tristrips"] = "triangles"
    count: int = Field(ge=0)  # number of faces
    material: str | None = None
    vcount: list[int] | None = None
    inputs: list[PartInput]
    p: list[int]


class Geometry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str | None = None
    sources: list[Source]
    parts: list[GeometryPart]


class SkinJoints(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["name", "idref", "sidref"] = "name"
    names: list[str]

    @field_validator("names")
    @classmethod
    def names_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("Skin joint source must not be empty")
        return v


class VertexWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vcount: list[int]
    v: list[int]
    joint_offset: int = Field(default=0, ge=0)
    weight_offset: int = Field(default=1, ge=0)

    @model_validator(mode="after")
    def _distinct_offsets(self) -> VertexWeights:
        if self.joint_offset == self.weight_offset:
            raise ValueError("joint_offset and weight_offset must differ")
        return self

    @property
    def stride(self) -> int:
        return max(self.joint_offset, self.weight_offset) + 1


class Skin(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str  # geometry id
    joints: SkinJoints
    inverse_bind_matrices: list[list[float]] = []
    weights: list[float]
    vertex_weights: VertexWeights

    @field_validator("inverse_bind_matrices")
    @classmethod
    def matrices_have_16_values(cls, v: list[list[float]]) -> list[list[float]]:
        for i, m in enumerate(v):
            if len(m) != 16:
                raise ValueError(f"inverse_bind_matrices[{i}] needs 16 values, got {len(m)}")
        return v

    @field_validator("source")
    @classmethod
    def strip_fragment_marker(cls, v: str) -> str:
        return v[1:] if v.startswith("#") else v


class AnimationChannel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target: str  # "<node id>/<member>[.<component>]"
    times: list[float]
    values: list[float]
    interpolation: str = "LINEAR"
    pre_behaviour: str = "CONSTANT"
    post_behaviour: str = "CYCLE"

    @field_validator("interpolation")
    @classmethod
    def known_interpolation(cls, v: str) -> str:
        v = v.upper()
        if v not in INTERPOLATIONS:
            raise ValueError(f"Unknown interpolation {v!r} (known: {list(INTERPOLATIONS)})")
        return v

    @field_validator("pre_behaviour", "post_behaviour")
    @classmethod
    def known_behaviour(cls, v: str) -> str:
        v = v.upper()
        if v not in BEHAVIOURS:
            raise ValueError(f"Unknown behaviour {v!r} (known: {list(BEHAVIOURS)})")
        return v

    @field_validator("target")
    @classmethod
    def target_has_member(cls, v: str) -> str:
        if "/" not in v:
            raise ValueError(f"Channel target {v!r} must look like '<node id>/<member>'")
        return v


class Animation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    name: str | None = None
    sid: str | None = None
    channels: list[AnimationChannel]


class SceneSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: str
    nodes: list[SceneNode] = []
    skeletons: list[str] = []
    geometries: list[Geometry] = []
    skins: list[Skin] = []
    animations: list[Animation] = []
