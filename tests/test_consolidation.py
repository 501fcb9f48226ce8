"""Tests for vertex stream consolidation."""

import numpy as np
import numpy.testing as npt
import pytest

from skelmesh.consolidation import (
    AttributeSource,
    ChannelDescription,
    ConsolidatedMesh,
    VertexChannel,
    check_triangles,
    consolidate,
    pack_colors,
    reverse_winding,
    split_index_stream,
    unpack_colors,
)
from skelmesh.errors import InvariantError, UnsupportedFeatureError, ValidationError
from skelmesh.skinning import SkinWeights

QUAD_POSITIONS = AttributeSource.from_values(
    [0, 0, 0, 1, 0, 0, 1, 1, 0, 0, 1, 0], 3, "positions"
)


def _channel(kind, source, indices):
    return VertexChannel(kind, source, np.asarray(indices))


def _quad_mesh(**extra):
    channels = [_channel("position", QUAD_POSITIONS, [0, 1, 2, 0, 2, 3])]
    channels += [_channel(k, src, idx) for k, (src, idx) in extra.items()]
    return consolidate(channels)


class TestConsolidate:
    def test_two_triangles_share_an_edge(self):
        mesh = _quad_mesh()
        assert mesh.vertex_count == 4
        assert len(mesh.index_buffer) == 6
        assert mesh.index_buffer.tolist() == [0, 2, 1, 0, 3, 2]
        npt.assert_allclose(
            mesh.channel("position"), QUAD_POSITIONS.rows()
        )

    def test_identical_keys_share_a_vertex(self):
        normals = AttributeSource.from_values([0, 0, 1], 3)
        mesh = _quad_mesh(normal=(normals, [0] * 6))
        indices = reverse_winding(mesh.index_buffer)
        assert indices[0] == indices[3]
        assert indices[2] == indices[4]

    def test_differing_attribute_splits_vertex(self):
        normals = AttributeSource.from_values([0, 0, 1, 0, 0, -1], 3)
        mesh = _quad_mesh(normal=(normals, [0, 0, 0, 1, 1, 1]))
        indices = reverse_winding(mesh.index_buffer)
        assert mesh.vertex_count == 6
        assert indices[0] != indices[3]
        assert indices[2] != indices[4]

    def test_index_buffer_valid(self):
        uvs = AttributeSource.from_values([0, 0, 1, 0, 1, 1, 0, 1], 2)
        mesh = _quad_mesh(texcoord=(uvs, [0, 1, 2, 3, 2, 1]))
        assert len(mesh.index_buffer) % 3 == 0
        assert mesh.index_buffer.max() < len(mesh.vertex_buffer) / mesh.vertex_stride

    def test_texcoord_v_flipped(self):
        uvs = AttributeSource.from_values([0.25, 0.25], 2)
        mesh = _quad_mesh(texcoord=(uvs, [0] * 6))
        npt.assert_allclose(mesh.channel("texcoord")[0], [0.25, 0.75])

    def test_channel_order_and_layout(self):
        normals = AttributeSource.from_values([0, 0, 1], 3)
        uvs = AttributeSource.from_values([0, 0], 2)
        colors = AttributeSource.from_values([1, 0, 0], 3)
        mesh = _quad_mesh(
            texcoord=(uvs, [0] * 6), normal=(normals, [0] * 6), color=(colors, [0] * 6)
        )
        assert mesh.kinds == ["position", "color", "normal", "texcoord"]
        assert mesh.vertex_stride == 3 + 1 + 3 + 2
        assert [d.byte_offset for d in mesh.channel_layout] == [0, 12, 16, 28]
        assert mesh.channel_layout[1].format == "rgba8_packed"

    def test_colors_round_trip_through_buffer(self):
        colors = AttributeSource.from_values([1, 0.5, 0, 0.2], 4)
        mesh = _quad_mesh(color=(colors, [0] * 6))
        assert mesh.colors()[0].tolist() == [255, 128, 0, 51]

    def test_missing_position(self):
        normals = AttributeSource.from_values([0, 0, 1], 3)
        with pytest.raises(ValidationError, match="no position"):
            consolidate([_channel("normal", normals, [0, 0, 0])])

    def test_stream_length_mismatch(self):
        normals = AttributeSource.from_values([0, 0, 1], 3)
        with pytest.raises(ValidationError, match="index stream"):
            _quad_mesh(normal=(normals, [0, 0, 0]))

    def test_partial_triangle(self):
        with pytest.raises(ValidationError, match="whole triangles"):
            consolidate([_channel("position", QUAD_POSITIONS, [0, 1, 2, 3])])

    def test_index_outside_source(self):
        with pytest.raises(InvariantError, match="position index 7"):
            consolidate([_channel("position", QUAD_POSITIONS, [0, 1, 7])])

    def test_duplicate_kind(self):
        with pytest.raises(ValidationError, match="Duplicate"):
            consolidate(
                [
                    _channel("position", QUAD_POSITIONS, [0, 1, 2]),
                    _channel("position", QUAD_POSITIONS, [0, 1, 2]),
                ]
            )

    def test_mapping_input(self):
        mesh = consolidate({"position": _channel("position", QUAD_POSITIONS, [0, 1, 2])})
        assert mesh.vertex_count == 3

    def test_bounds(self):
        lo, hi = _quad_mesh().bounds
        npt.assert_allclose(lo, [0, 0, 0])
        npt.assert_allclose(hi, [1, 1, 0])

    def test_compact_indices(self):
        mesh = _quad_mesh()
        assert mesh.index_format == "uint16"
        assert mesh.compact_indices().dtype == np.uint16

    def test_restart_value_never_used_as_index(self):
        def mesh_with(n):
            return ConsolidatedMesh(
                vertex_buffer=np.zeros(n * 3, dtype=np.float32),
                index_buffer=np.array([0, n - 1, n - 2], dtype=np.uint32),
                channel_layout=[ChannelDescription("position", "float32", 3, 0)],
                vertex_stride=3,
            )

        assert mesh_with(0xFFFF).index_format == "uint16"
        wide = mesh_with(0x10000)
        assert wide.index_format == "uint32"
        assert wide.compact_indices().dtype == np.uint32
        assert wide.compact_indices().max() == 0xFFFF


class TestSkinChannels:
    def _weights(self, n):
        return SkinWeights(
            joint_indices=np.tile(np.array([[1, 0, 0, 0]], dtype=np.int32), (n, 1)),
            joint_weights=np.tile(np.array([[1.0, 0.0, 0.0]], dtype=np.float32), (n, 1)),
            joint_source_indices=np.zeros((n, 4), dtype=np.int32),
        )

    def test_skin_follows_position_index(self):
        weights = self._weights(4)
        weights.joint_indices[3, 0] = 2
        channels = [_channel("position", QUAD_POSITIONS, [0, 1, 2, 0, 2, 3])]
        mesh = consolidate(channels, weights)
        assert mesh.kinds[-2:] == ["joint_indices", "joint_weights"]
        assert mesh.vertex_count == 4
        npt.assert_allclose(mesh.channel("joint_indices")[:, 0], [1, 1, 1, 2])
        npt.assert_allclose(mesh.channel("joint_weights")[:, 0], 1.0)

    def test_skin_must_cover_positions(self):
        channels = [_channel("position", QUAD_POSITIONS, [0, 1, 2])]
        with pytest.raises(ValidationError, match="Skin weights cover"):
            consolidate(channels, self._weights(2))


class TestHelpers:
    def test_winding_reversal_is_idempotent(self):
        indices = np.array([0, 1, 2, 3, 4, 5, 6, 7, 8], dtype=np.uint32)
        once = reverse_winding(indices)
        assert once.tolist() == [0, 2, 1, 3, 5, 4, 6, 8, 7]
        assert reverse_winding(once).tolist() == indices.tolist()

    def test_pack_unpack_bytes_exact(self):
        rgba = np.array([[1.0, 0.0, 0.5, 1.0], [0.1, 0.2, 0.3, 0.4]])
        packed = pack_colors(rgba)
        assert packed.dtype == np.float32
        assert unpack_colors(packed).tolist() == [[255, 0, 128, 255], [26, 51, 76, 102]]

    def test_pack_rgb_gets_opaque_alpha(self):
        assert unpack_colors(pack_colors([[0, 0, 0]]))[0, 3] == 255

    def test_pack_nan_pattern_survives(self):
        # 0xFF in the top byte makes the float a NaN
        packed = pack_colors([[1.0, 1.0, 1.0, 1.0]])
        assert np.isnan(packed[0])
        assert unpack_colors(packed).tolist() == [[255, 255, 255, 255]]

    def test_pack_rejects_two_components(self):
        with pytest.raises(ValidationError, match="3 or 4"):
            pack_colors([[0.5, 0.5]])

    def test_split_index_stream(self):
        streams = split_index_stream([0, 10, 1, 11, 2, 12], [0, 1], 3)
        assert streams[0].tolist() == [0, 1, 2]
        assert streams[1].tolist() == [10, 11, 12]

    def test_split_shared_offset(self):
        streams = split_index_stream([5, 6, 7], [0, 0], 3)
        assert streams[0].tolist() == [5, 6, 7]

    def test_split_uneven(self):
        with pytest.raises(ValidationError, match="does not split"):
            split_index_stream([0, 1, 2, 3], [0], 3)

    def test_check_triangles(self):
        check_triangles("triangles")
        check_triangles("polylist", [3, 3])
        with pytest.raises(UnsupportedFeatureError, match="4 vertices"):
            check_triangles("polylist", [3, 4])
        with pytest.raises(UnsupportedFeatureError, match="tristrips"):
            check_triangles("tristrips")

    def test_source_stride_checked(self):
        with pytest.raises(ValidationError, match="stride"):
            AttributeSource.from_values([1, 2, 3, 4], 3)
