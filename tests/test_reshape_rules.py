import unittest

from upstream_graphs.compiler.descriptors import ReshapeDescriptor
from upstream_graphs.compiler.registry import (
    PropagationRegistry,
    OpInfo,
    Blocked,
    Propagation,
)
from upstream_graphs.ops.op_types import OpType


def _rule(op_type, desc, input_shapes, attrs=None):
    info = OpInfo(op_type, attrs or {}, tuple(input_shapes), desc.input_shape, {})
    return PropagationRegistry.rule(op_type, desc, info)


class TestReshapeRules(unittest.TestCase):
    def setUp(self):
        self.merge = ReshapeDescriptor.create((4, 32, 256), [-1, 256])

    def test_elementwise_both_operands(self):
        result = _rule(OpType.ADD, self.merge, [(4, 32, 256), (4, 32, 256)])
        self.assertIsInstance(result, Propagation)
        specs = [d.spec for _, d in result.branches]
        self.assertEqual(specs, [(-1, 256), (-1, 256)])

    def test_elementwise_trailing_operand_untouched(self):
        result = _rule(OpType.ADD, self.merge, [(4, 32, 256), (256,)])
        self.assertEqual([i for i, _ in result.branches], [0])

    def test_elementwise_broadcast_over_merged_dims_blocked(self):
        result = _rule(OpType.ADD, self.merge, [(4, 1, 256), (32, 256)])
        self.assertIsInstance(result, Blocked)
        result = _rule(OpType.MUL, self.merge, [(4, 32, 256), (32, 256)])
        self.assertIsInstance(result, Blocked)

    def test_unary_passthrough(self):
        result = _rule(OpType.GELU, self.merge, [(4, 32, 256)])
        self.assertEqual(result.branches[0][1].output_shape, (128, 256))

    def test_layer_norm_last_axis(self):
        shapes = [(4, 32, 256), (256,), (256,)]
        result = _rule(OpType.LAYER_NORM, self.merge, shapes, {"axis": -1})
        self.assertEqual([i for i, _ in result.branches], [0])
        self.assertEqual(result.attr_updates, {})

    def test_layer_norm_positive_axis_rewritten(self):
        shapes = [(4, 32, 256), (256,), (256,)]
        result = _rule(OpType.LAYER_NORM, self.merge, shapes, {"axis": 2})
        self.assertEqual(result.attr_updates, {"axis": -1})

    def test_layer_norm_over_merged_dims_blocked(self):
        shapes = [(4, 32, 256), (32, 256), (32, 256)]
        result = _rule(OpType.LAYER_NORM, self.merge, shapes, {"axis": 1})
        self.assertIsInstance(result, Blocked)

    def test_softmax(self):
        result = _rule(OpType.SOFTMAX, self.merge, [(4, 32, 256)], {"axis": 2})
        self.assertEqual(result.attr_updates, {"axis": -1})
        result = _rule(OpType.SOFTMAX, self.merge, [(4, 32, 256)], {"axis": 1})
        self.assertIsInstance(result, Blocked)

    def test_matmul_lhs_only(self):
        result = _rule(OpType.MATMUL, self.merge, [(4, 32, 64), (64, 256)])
        self.assertEqual([i for i, _ in result.branches], [0])
        self.assertEqual(result.branches[0][1].spec, (-1, 64))

    def test_matmul_batched_rhs_blocked(self):
        result = _rule(OpType.MATMUL, self.merge, [(4, 32, 64), (4, 64, 256)])
        self.assertIsInstance(result, Blocked)

    def test_unregistered_op_blocked(self):
        result = _rule(OpType.TRANSPOSE, self.merge, [(4, 256, 32)], {"perm": [0, 2, 1]})
        self.assertIsInstance(result, Blocked)


if __name__ == "__main__":
    unittest.main()
