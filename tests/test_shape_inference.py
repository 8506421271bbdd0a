import numpy as np
import pytest

from upstream_graphs.ir import GraphBuilder, UnsupportedPattern
from upstream_graphs.compiler.shape_inference import ShapeInference
from upstream_graphs.ops.shape_utils import (
    broadcast_shapes,
    resolve_reshape,
    aligned_axis,
    preserved_trailing_dims,
    preserved_leading_dims,
)


def test_broadcast_shapes():
    assert broadcast_shapes((4, 1, 256), (32, 256)) == (4, 32, 256)
    assert broadcast_shapes((8,), (2, 1)) == (2, 8)
    assert broadcast_shapes((None, 4), (3, 4)) == (3, 4)
    with pytest.raises(UnsupportedPattern):
        broadcast_shapes((3,), (4,))


def test_resolve_reshape():
    assert resolve_reshape((4, 32, 256), [-1, 256]) == (128, 256)
    assert resolve_reshape((4, 32, 1024), [0, 0, 16, 64]) == (4, 32, 16, 64)
    with pytest.raises(UnsupportedPattern):
        resolve_reshape((4, 32), [3, -1])
    with pytest.raises(UnsupportedPattern):
        resolve_reshape((4, None), [-1])


def test_axis_helpers():
    assert aligned_axis(2, 3, 1) == 0
    assert aligned_axis(0, 3, 2) is None
    assert preserved_trailing_dims((4, 32, 256), (128, 256)) == 1
    assert preserved_leading_dims((4, 32, 1024), (4, 32, 16, 64)) == 2


def test_matmul_and_gather_shapes():
    b = GraphBuilder()
    x = b.input("x", (2, 8, 16))
    w = b.input("w", (16, 4))
    mm = b.matmul(x, w)
    assert mm.shape == (2, 8, 4)
    assert b.gather(mm, 1, axis=1).shape == (2, 4)
    assert b.gather(mm, [0, 1, 1], axis=-1).shape == (2, 8, 3)


def test_layer_norm_side_outputs():
    b = GraphBuilder()
    x = b.input("x", (2, 8, 16))
    scale = b.initializer(np.ones(16, dtype=np.float32))
    bias = b.initializer(np.zeros(16, dtype=np.float32))
    y, mean, inv_std = b.op(
        "LayerNormalization", [x, scale, bias], {"axis": -1}, num_outputs=3
    )
    assert y.shape == (2, 8, 16)
    assert mean.shape == (2, 8, 1)
    assert inv_std.shape == (2, 8, 1)


def test_unsqueeze_squeeze_transpose():
    b = GraphBuilder()
    x = b.input("x", (3, 5))
    u = b.unsqueeze(x, [0])
    assert u.shape == (1, 3, 5)
    assert b.squeeze(u, [0]).shape == (3, 5)
    assert b.transpose(x, [1, 0]).shape == (5, 3)


def test_reshape_needs_constant_spec():
    b = GraphBuilder()
    x = b.input("x", (4, 6))
    shape = b.input("shape", (2,))
    assert b.reshape(x, [2, -1]).shape == (2, 12)
    # Rank is known from the shape input, dims are not
    assert b.reshape(x, shape).shape == (None, None)


def test_unresolvable_shape_is_none():
    b = GraphBuilder()
    x = b.input("x", (3, 4))
    y = b.input("y", (5, 4))
    out = b.add(x, y)
    assert out.shape is None
    node = b.graph.producer(out)
    assert ShapeInference.infer_node(b.graph, node) == [None]


def test_gather_nd_shapes():
    b = GraphBuilder()
    x = b.input("x", (2, 8, 16))
    assert b.gather_nd(x, np.zeros((2, 3, 1), dtype=np.int64), batch_dims=1).shape == (2, 3, 16)
    assert b.gather_nd(x, np.zeros((4, 2), dtype=np.int64)).shape == (4, 16)
    assert b.gather_nd(x, np.zeros((5, 3), dtype=np.int64)).shape == (5,)
    # Indices deeper than the data rank
    assert b.gather_nd(x, np.zeros((5, 4), dtype=np.int64)).shape is None
