"""Shared scene fixtures."""

import pytest
import yaml

from skelmesh.models import SceneSpec


QUAD_SCENE = """\
version: "0.1"
geometries:
  - id: quad
    name: Quad
    sources:
      - id: quad-positions
        stride: 3
        data: [0, 0, 0,  1, 0, 0,  1, 1, 0,  0, 1, 0]
      - id: quad-normals
        stride: 3
        data: [0, 0, 1]
      - id: quad-uvs
        stride: 2
        data: [0, 0,  1, 0,  1, 1,  0, 1]
    parts:
      - primitive: triangles
        count: 2
        material: tile
        inputs:
          - {semantic: VERTEX, source: "#quad-positions", offset: 0}
          - {semantic: NORMAL, source: "#quad-normals", offset: 1}
          - {semantic: TEXCOORD, source: "#quad-uvs", offset: 2}
        p: [0, 0, 0,  1, 0, 1,  2, 0, 2,  0, 0, 0,  2, 0, 2,  3, 0, 3]
"""


SKINNED_SCENE = """\
version: "0.1"
nodes:
  - id: armature
    type: node
    children:
      - id: hip
        sid: hip_sid
        type: joint
        transforms:
          - translate: [0, 0, 0]
        children:
          - id: knee
            sid: knee_sid
            type: joint
            transforms:
              - translate: [0, 1, 0]
skeletons: ["#hip"]
geometries:
  - id: leg
    sources:
      - id: leg-positions
        stride: 3
        data: [0, 0, 0,  1, 0, 0,  1, 2, 0,  0, 2, 0]
    parts:
      - primitive: polylist
        count: 2
        vcount: [3, 3]
        inputs:
          - {semantic: VERTEX, source: "#leg-positions", offset: 0}
        p: [0, 1, 2,  0, 2, 3]
skins:
  - source: "#leg"
    joints:
      kind: name
      names: [hip, knee]
    inverse_bind_matrices:
      - [1, 0, 0, 0,  0, 1, 0, 0,  0, 0, 1, 0,  0, 0, 0, 1]
      - [1, 0, 0, 0,  0, 1, 0, -1,  0, 0, 1, 0,  0, 0, 0, 1]
    weights: [1.0, 0.5]
    vertex_weights:
      vcount: [1, 1, 2, 2]
      v: [0, 0,  0, 0,  0, 0, 1, 1,  0, 0, 1, 1]
animations:
  - id: knee-lift
    name: knee_lift
    channels:
      - target: knee/translate
        times: [0, 10]
        values: [0, 1, 0,  0, 2, 0]
  - id: hip-x
    name: hip_x
    channels:
      - target: hip/translate.X
        times: [0, 10]
        values: [0, 10]
  - id: hip-rot
    name: hip_rot
    channels:
      - target: hip/rotateZ.ANGLE
        times: [0, 10]
        values: [0, 90]
"""


@pytest.fixture
def quad_scene_yaml():
    return QUAD_SCENE


@pytest.fixture
def skinned_scene_yaml():
    return SKINNED_SCENE


@pytest.fixture
def quad_spec(quad_scene_yaml):
    return SceneSpec(**yaml.safe_load(quad_scene_yaml))


@pytest.fixture
def skinned_spec(skinned_scene_yaml):
    return SceneSpec(**yaml.safe_load(skinned_scene_yaml))
