import numpy as np
import pytest

from upstream_graphs.backend import KernelRegistry, evaluate_graph
from upstream_graphs.ir import GraphBuilder, DType
from upstream_graphs.ops.op_types import OpType


def test_every_op_has_a_kernel():
    for op in OpType.ELEMENTWISE_BINARY + OpType.ELEMENTWISE_UNARY:
        assert KernelRegistry.has_kernel(op), op
    for op in (
        OpType.MATMUL,
        OpType.LAYER_NORM,
        OpType.SOFTMAX,
        OpType.TRANSPOSE,
        OpType.GATHER,
        OpType.GATHER_ND,
        OpType.RESHAPE,
        OpType.UNSQUEEZE,
        OpType.SQUEEZE,
    ):
        assert KernelRegistry.has_kernel(op), op


def test_layer_norm_matches_numpy():
    x = np.random.randn(2, 3, 8).astype(np.float32)
    scale = np.random.rand(8).astype(np.float32)
    bias = np.random.rand(8).astype(np.float32)
    kernel = KernelRegistry.get_kernel(OpType.LAYER_NORM)
    y, mean, inv_std = kernel([x, scale, bias], {"axis": -1, "epsilon": 1e-5})

    ref_mean = x.mean(axis=-1, keepdims=True)
    ref_var = x.var(axis=-1, keepdims=True)
    expected = (x - ref_mean) / np.sqrt(ref_var + 1e-5) * scale + bias
    np.testing.assert_allclose(y, expected, rtol=1e-5, atol=1e-5)
    assert mean.shape == (2, 3, 1)
    assert inv_std.shape == (2, 3, 1)


def test_gather_negative_index():
    data = np.arange(12, dtype=np.float32).reshape(3, 4)
    kernel = KernelRegistry.get_kernel(OpType.GATHER)
    out = kernel([data, np.array(-1, dtype=np.int64)], {"axis": 1})
    np.testing.assert_array_equal(out, data[:, 3])


def test_gather_nd_batched_positions():
    data = np.arange(2 * 5 * 3, dtype=np.float32).reshape(2, 5, 3)
    positions = np.array([[[4], [0]], [[1], [-1]]], dtype=np.int64)
    kernel = KernelRegistry.get_kernel(OpType.GATHER_ND)
    out = kernel([data, positions], {"batch_dims": 1})
    assert out.shape == (2, 2, 3)
    np.testing.assert_array_equal(out[0], data[0, [4, 0]])
    np.testing.assert_array_equal(out[1], data[1, [1, 4]])


def test_gather_nd_coordinates():
    data = np.arange(24, dtype=np.float32).reshape(2, 3, 4)
    coords = np.array([[1, 2], [0, 0]], dtype=np.int64)
    kernel = KernelRegistry.get_kernel(OpType.GATHER_ND)
    out = kernel([data, coords], {})
    np.testing.assert_array_equal(out, np.stack([data[1, 2], data[0, 0]]))


def test_reshape_copies_and_infers():
    data = np.zeros((2, 3, 4), dtype=np.float32)
    kernel = KernelRegistry.get_kernel(OpType.RESHAPE)
    out = kernel([data, np.array([0, -1], dtype=np.int64)], {})
    assert out.shape == (2, 12)
    with pytest.raises(ValueError):
        kernel([data, np.array([5, -1], dtype=np.int64)], {})


def test_evaluate_graph():
    b = GraphBuilder()
    x = b.input("x", (2, 3))
    w = b.initializer(np.eye(3, dtype=np.float32), name="w")
    y = b.cast(b.relu(b.matmul(x, w)), DType.FP16, name="y")
    b.output(y)
    g = b.build()

    feeds = {"x": np.array([[1, -2, 3], [-4, 5, -6]], dtype=np.float32)}
    result = evaluate_graph(g, feeds)
    assert list(result) == ["y_out"]
    assert result["y_out"].dtype == np.float16
    np.testing.assert_array_equal(result["y_out"], [[1, 0, 3], [0, 5, 0]])


def test_evaluate_graph_missing_input():
    b = GraphBuilder()
    b.output(b.relu(b.input("x", (2,))))
    with pytest.raises(ValueError):
        evaluate_graph(b.build(), {})
