"""Tests for scene import."""

import math
import warnings

import numpy.testing as npt
import pytest
import yaml

from skelmesh.errors import UnsupportedFeatureError, ValidationError
from skelmesh.hierarchy import ROOT_NAME
from skelmesh.importer import import_scene, load_model
from skelmesh.models import SceneSpec
from skelmesh.transforms import quat_from_axis_angle
from skelmesh.warning_policy import SkelmeshWarning, WarningPolicy


def _spec(text, edit=None):
    data = yaml.safe_load(text)
    if edit is not None:
        edit(data)
    return SceneSpec(**data)


class TestStaticMesh:
    def test_quad(self, quad_spec):
        model = import_scene(quad_spec)
        assert len(model.joints) == 1
        assert len(model.meshes) == 1
        mesh = model.meshes[0]
        assert mesh.name == "Quad"
        assert not mesh.skinned
        part = mesh.parts[0]
        assert part.material == "tile"
        assert part.mesh.vertex_count == 4
        assert part.mesh.index_buffer.tolist() == [0, 2, 1, 0, 3, 2]
        assert part.mesh.kinds == ["position", "normal", "texcoord"]
        npt.assert_allclose(part.mesh.channel("texcoord")[2], [1, 0])

    def test_load_from_file(self, quad_scene_yaml, tmp_path):
        f = tmp_path / "quad.scene.yaml"
        f.write_text(quad_scene_yaml)
        model = load_model(f)
        assert model.meshes[0].parts[0].mesh.triangle_count == 2

    def test_non_triangles_rejected(self, quad_scene_yaml):
        def edit(data):
            data["geometries"][0]["parts"][0]["primitive"] = "tristrips"

        with pytest.raises(UnsupportedFeatureError, match="tristrips"):
            import_scene(_spec(quad_scene_yaml, edit))

    def test_unknown_source(self, quad_scene_yaml):
        def edit(data):
            data["geometries"][0]["parts"][0]["inputs"][1]["source"] = "#nowhere"

        with pytest.raises(ValidationError, match="nowhere"):
            import_scene(_spec(quad_scene_yaml, edit))

    def test_part_errors_name_geometry(self, quad_scene_yaml):
        def edit(data):
            data["geometries"][0]["parts"][0]["p"].pop()

        with pytest.raises(ValidationError, match="Geometry 'quad'"):
            import_scene(_spec(quad_scene_yaml, edit))


class TestSkinnedScene:
    def test_joints(self, skinned_spec):
        model = import_scene(skinned_spec)
        assert [j.name for j in model.joints] == ["hip", "knee", ROOT_NAME]
        npt.assert_allclose(model.joints[1].inverse_bind_pose[:3, 3], [0, -1, 0])
        npt.assert_allclose(model.joints[1].absolute_transform[:3, 3], [0, 1, 0])

    def test_skin_weights(self, skinned_spec):
        model = import_scene(skinned_spec)
        mesh = model.meshes[0]
        assert mesh.skinned
        assert mesh.skin_weights.vertex_count == 4
        part = mesh.parts[0].mesh
        assert part.kinds == ["position", "joint_indices", "joint_weights"]
        npt.assert_allclose(part.channel("joint_weights")[3], [2 / 3, 1 / 3, 0], atol=1e-6)
        npt.assert_allclose(part.channel("joint_indices")[3], [0, 1, 0, 0])

    def test_animations_combined_per_joint(self, skinned_spec):
        model = import_scene(skinned_spec)
        assert [a.name for a in model.animations] == ["knee_lift", "hip_x+hip_rot"]
        hip = model.animations["hip_x+hip_rot"]
        assert hip.global_id == "hip-x\nhip-rot"
        kf = hip.channels[0].sampler.keyframes[1]
        npt.assert_allclose(kf.translation, [10, 0, 0])
        npt.assert_allclose(kf.rotation, quat_from_axis_angle((0, 0, 1), math.pi / 2), atol=1e-12)

    def test_missing_skin_mesh(self, skinned_scene_yaml):
        def edit(data):
            data["skins"][0]["source"] = "#arm"

        with pytest.raises(ValidationError, match="Mesh referenced by skin not found"):
            import_scene(_spec(skinned_scene_yaml, edit))

    def test_unknown_skin_joint(self, skinned_scene_yaml):
        def edit(data):
            data["skins"][0]["joints"]["names"] = ["hip", "ankle"]

        with pytest.raises(ValidationError, match="ankle"):
            import_scene(_spec(skinned_scene_yaml, edit))

    def test_non_joint_targets_skipped(self, skinned_scene_yaml):
        def edit(data):
            data["animations"].append(
                {
                    "id": "arm-move",
                    "channels": [{"target": "armature/translate.Y", "times": [0], "values": [1]}],
                }
            )

        model = import_scene(_spec(skinned_scene_yaml, edit))
        assert len(model.animations) == 2
        assert model.animations.get("arm-move") is None

    def test_unsupported_member_warns_once(self, skinned_scene_yaml):
        def edit(data):
            data["animations"].append(
                {
                    "id": "blink",
                    "channels": [
                        {"target": "knee/visibility", "times": [0, 1, 2], "values": [1, 0, 1]}
                    ],
                }
            )

        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            model = import_scene(_spec(skinned_scene_yaml, edit))
        codes = [x.message.code for x in w if issubclass(x.category, SkelmeshWarning)]
        assert codes == ["W04"]
        assert model.animations.get("blink") is None

    def test_unsupported_member_as_error(self, skinned_scene_yaml):
        def edit(data):
            data["animations"][0]["channels"][0]["target"] = "knee/visibility"

        policy = WarningPolicy(warn_as_error=frozenset({"W04"}))
        with pytest.raises(ValidationError, match="W04"):
            import_scene(_spec(skinned_scene_yaml, edit), warning_policy=policy)

    def test_value_count_mismatch(self, skinned_scene_yaml):
        def edit(data):
            data["animations"][0]["channels"][0]["values"] = [0, 1, 0]

        with pytest.raises(ValidationError, match="need 6 values, got 3"):
            import_scene(_spec(skinned_scene_yaml, edit))

    def test_sampled_pose_propagates(self, skinned_spec):
        model = import_scene(skinned_spec)
        model.animations[0].sample(5.0, model.joints)
        model.joints.update_absolute_transforms()
        npt.assert_allclose(model.joints[1].absolute_transform[:3, 3], [0, 1.5, 0])


class TestRepeatedSemantics:
    def _two_uv_sets(self, quad_scene_yaml):
        def edit(data):
            geometry = data["geometries"][0]
            geometry["sources"].append(
                {"id": "quad-lightmap", "stride": 2, "data": [0.5, 0.5]}
            )
            part = geometry["parts"][0]
            part["inputs"].append(
                {"semantic": "TEXCOORD", "source": "#quad-lightmap", "offset": 3}
            )
            # Widen every corner group with a lightmap index of 0
            p = part["p"]
            part["p"] = [v for i in range(0, len(p), 3) for v in p[i : i + 3] + [0]]

        return _spec(quad_scene_yaml, edit)

    def test_first_set_kept(self, quad_scene_yaml):
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            model = import_scene(self._two_uv_sets(quad_scene_yaml))
        mesh = model.meshes[0].parts[0].mesh
        assert mesh.kinds == ["position", "normal", "texcoord"]
        npt.assert_allclose(mesh.channel("texcoord")[2], [1, 0])
        codes = [x.message.code for x in w if issubclass(x.category, SkelmeshWarning)]
        assert codes == ["W05"]

    def test_repeated_semantic_as_error(self, quad_scene_yaml):
        policy = WarningPolicy(warn_as_error=frozenset({"W05"}))
        with pytest.raises(ValidationError, match="W05"):
            import_scene(self._two_uv_sets(quad_scene_yaml), warning_policy=policy)

    def test_plain_tangent_semantic(self, quad_scene_yaml):
        def edit(data):
            geometry = data["geometries"][0]
            geometry["sources"].append({"id": "quad-tangents", "stride": 3, "data": [1, 0, 0]})
            geometry["parts"][0]["inputs"].append(
                {"semantic": "TANGENT", "source": "#quad-tangents", "offset": 1}
            )

        mesh = import_scene(_spec(quad_scene_yaml, edit)).meshes[0].parts[0].mesh
        assert mesh.kinds == ["position", "normal", "tangent", "texcoord"]
        npt.assert_allclose(mesh.channel("tangent")[0], [1, 0, 0])
