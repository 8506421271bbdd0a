"""
File: upstream_graphs/rules/reshape_rules.py

How a leading-dim Reshape crosses each supported producer. The producer
must operate on the trailing dims only; every operand that spans the
collapsed leading dims receives its own Reshape.
"""

from ..compiler.descriptors import ReshapeDescriptor
from ..compiler.registry import PropagationRegistry, Propagation, Blocked
from ..ir.errors import UnsupportedPattern
from ..ops.op_types import OpType
from ..ops.shape_utils import normalize_axis


def _check_output(info, desc: ReshapeDescriptor):
    if tuple(info.out_shape) != desc.input_shape:
        raise UnsupportedPattern(
            f"{info.op_type} output {info.out_shape} is not the reshaped tensor"
        )


@PropagationRegistry.register(ReshapeDescriptor, *OpType.ELEMENTWISE_BINARY)
def reshape_through_elementwise(info, desc: ReshapeDescriptor):
    _check_output(info, desc)
    out = desc.input_shape
    branches = []
    for index in range(len(info.input_shapes)):
        shape = info.input_shape(index)
        if len(shape) <= desc.trailing:
            # Broadcasts over the trailing dims only, valid after the reshape
            continue
        if len(shape) != len(out) or tuple(shape[: desc.leading_in]) != out[: desc.leading_in]:
            return Blocked(f"operand {index} {tuple(shape)} broadcasts over the merged dims")
        branches.append((index, desc.on_input(shape)))
    return Propagation(branches)


@PropagationRegistry.register(ReshapeDescriptor, *OpType.ELEMENTWISE_UNARY)
def reshape_through_unary(info, desc: ReshapeDescriptor):
    _check_output(info, desc)
    return Propagation([(0, desc.on_input(info.input_shape(0)))])


def _trailing_axis_update(info, desc: ReshapeDescriptor, default: int):
    x = info.input_shape(0)
    attr = info.get_attr("axis", default)
    axis = normalize_axis(attr, len(x))
    if axis < desc.leading_in:
        return None, axis
    # Negative form stays valid once the leading dims change rank
    return ({"axis": axis - len(x)} if attr >= 0 else {}), axis


@PropagationRegistry.register(ReshapeDescriptor, OpType.LAYER_NORM)
def reshape_through_layer_norm(info, desc: ReshapeDescriptor):
    _check_output(info, desc)
    updates, axis = _trailing_axis_update(info, desc, -1)
    if updates is None:
        return Blocked(f"normalization axis {axis} spans the merged dims")
    return Propagation([(0, desc.on_input(info.input_shape(0)))], attr_updates=updates)


@PropagationRegistry.register(ReshapeDescriptor, OpType.SOFTMAX)
def reshape_through_softmax(info, desc: ReshapeDescriptor):
    _check_output(info, desc)
    updates, axis = _trailing_axis_update(info, desc, -1)
    if updates is None:
        return Blocked(f"softmax axis {axis} is one of the merged dims")
    return Propagation([(0, desc.on_input(info.input_shape(0)))], attr_updates=updates)


@PropagationRegistry.register(ReshapeDescriptor, OpType.MATMUL)
def reshape_through_matmul(info, desc: ReshapeDescriptor):
    _check_output(info, desc)
    lhs = info.input_shape(0)
    rhs = info.input_shape(1)
    if len(rhs) != 2:
        return Blocked(f"right operand {tuple(rhs)} is batched")
    if len(lhs) != len(desc.input_shape):
        return Blocked(f"left operand {tuple(lhs)} is broadcast")
    return Propagation([(0, desc.on_input(lhs))])
