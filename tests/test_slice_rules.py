import numpy as np

from upstream_graphs.compiler.descriptors import SliceDescriptor
from upstream_graphs.compiler.registry import (
    PropagationRegistry,
    OpInfo,
    Blocked,
    Propagation,
)
from upstream_graphs.compiler import propagation  # noqa: F401
from upstream_graphs.ops.op_types import OpType


def _slice(axis, rank, scalar=True):
    return SliceDescriptor.create(axis, rank, "idx", () if scalar else (2,))


def _rule(op_type, desc, input_shapes, output_shape, attrs=None, constants=None):
    info = OpInfo(op_type, attrs or {}, tuple(input_shapes), output_shape, constants or {})
    return PropagationRegistry.rule(op_type, desc, info)


def test_elementwise_skips_broadcast_operand():
    result = _rule(OpType.ADD, _slice(1, 3), [(4, 32, 8), (4, 1, 8)], (4, 32, 8))
    assert isinstance(result, Propagation)
    assert [index for index, _ in result.branches] == [0]
    assert result.branches[0][1].axis == 1


def test_elementwise_skips_lower_rank_operand():
    result = _rule(OpType.MUL, _slice(0, 3), [(4, 32, 8), (32, 8)], (4, 32, 8))
    assert [index for index, _ in result.branches] == [0]


def test_elementwise_maps_axis_into_operand_rank():
    result = _rule(OpType.SUB, _slice(2, 3, False), [(4, 32, 8), (8,)], (4, 32, 8))
    assert [(i, d.axis, d.rank) for i, d in result.branches] == [(0, 2, 3), (1, 0, 1)]


def test_elementwise_all_broadcast_is_blocked():
    result = _rule(OpType.ADD, _slice(0, 2), [(1, 8), (1, 8)], (4, 8))
    assert isinstance(result, Blocked)


def test_matmul_column_goes_to_rhs():
    result = _rule(OpType.MATMUL, _slice(2, 3, False), [(2, 8, 16), (16, 4)], (2, 8, 4))
    assert [(i, d.axis) for i, d in result.branches] == [(1, 1)]


def test_matmul_row_goes_to_lhs():
    result = _rule(OpType.MATMUL, _slice(1, 3), [(2, 8, 16), (16, 4)], (2, 8, 4))
    assert [(i, d.axis) for i, d in result.branches] == [(0, 1)]


def test_matmul_batch_goes_to_batched_operands():
    result = _rule(OpType.MATMUL, _slice(0, 3), [(2, 8, 16), (2, 16, 4)], (2, 8, 4))
    assert [(i, d.axis) for i, d in result.branches] == [(0, 0), (1, 0)]
    result = _rule(OpType.MATMUL, _slice(0, 3), [(2, 8, 16), (1, 16, 4)], (2, 8, 4))
    assert [i for i, _ in result.branches] == [0]


def test_matmul_vector_operand_blocked():
    result = _rule(OpType.MATMUL, _slice(0, 1), [(8, 16), (16,)], (8,))
    assert isinstance(result, Blocked)


def test_layer_norm_leaves_scale_and_bias():
    shapes = [(4, 8, 16), (16,), (16,)]
    result = _rule(OpType.LAYER_NORM, _slice(1, 3), shapes, (4, 8, 16), {"axis": -1})
    assert [i for i, _ in result.branches] == [0]


def test_layer_norm_blocked_on_normalized_axis():
    shapes = [(4, 8, 16), (8, 16), (8, 16)]
    for axis in (1, 2):
        result = _rule(
            OpType.LAYER_NORM, _slice(axis, 3), shapes, (4, 8, 16), {"axis": 1}
        )
        assert isinstance(result, Blocked)


def test_softmax_axis_blocked():
    result = _rule(OpType.SOFTMAX, _slice(2, 3), [(2, 4, 4)], (2, 4, 4), {"axis": -1})
    assert isinstance(result, Blocked)
    result = _rule(OpType.SOFTMAX, _slice(1, 3), [(2, 4, 4)], (2, 4, 4), {"axis": -1})
    assert [i for i, _ in result.branches] == [0]


def test_transpose_uses_perm():
    result = _rule(
        OpType.TRANSPOSE, _slice(1, 3, False), [(2, 3, 4)], (4, 2, 3), {"perm": [2, 0, 1]}
    )
    assert result.branches[0][1].axis == 0


def test_reshape_scalar_drops_spec_entry():
    spec = np.array([0, 0, 16, 64], dtype=np.int64)
    result = _rule(
        OpType.RESHAPE,
        _slice(1, 4),
        [(4, 32, 1024), (4,)],
        (4, 32, 16, 64),
        constants={1: spec},
    )
    assert not result.keep_dims
    assert result.branches[0][1].axis == 1
    assert result.constant_updates[1].tolist() == [0, 16, 64]


def test_reshape_range_keeps_spec_entry():
    spec = np.array([4, 32, 16, 64], dtype=np.int64)
    result = _rule(
        OpType.RESHAPE,
        _slice(1, 4, False),
        [(4, 32, 1024), (4,)],
        (4, 32, 16, 64),
        constants={1: spec},
    )
    assert result.constant_updates[1].tolist() == [4, 0, 16, 64]


def test_reshape_rewritten_axis_blocked():
    spec = np.array([0, 0, 16, 64], dtype=np.int64)
    result = _rule(
        OpType.RESHAPE,
        _slice(2, 4),
        [(4, 32, 1024), (4,)],
        (4, 32, 16, 64),
        constants={1: spec},
    )
    assert isinstance(result, Blocked)
    result = _rule(OpType.RESHAPE, _slice(0, 4), [(4, 32, 1024), (4,)], (4, 32, 16, 64))
    assert isinstance(result, Blocked)


def test_unregistered_op_blocked():
    result = _rule("TopK", _slice(0, 2), [(4, 8)], (4, 8))
    assert isinstance(result, Blocked)
    assert "TopK" in result.reason


def test_unknown_shapes_blocked():
    result = _rule(OpType.ADD, _slice(0, 2), [(4, 8), None], (4, 8))
    assert isinstance(result, Blocked)
