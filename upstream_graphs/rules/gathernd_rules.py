"""
File: upstream_graphs/rules/gathernd_rules.py

How a GatherND over leading dims crosses each supported producer. The
producer may only work on the trailing dims the lookup copies through;
every operand spanning the indexed dims receives its own GatherND.
"""

from ..compiler.descriptors import GatherNDDescriptor
from ..compiler.registry import PropagationRegistry, Propagation, Blocked
from ..ir.dtypes import is_static
from ..ir.errors import UnsupportedPattern
from ..ops.op_types import OpType
from ..ops.shape_utils import normalize_axis


def _indexed_dims(info, desc: GatherNDDescriptor):
    out = info.out_shape
    if len(out) != desc.rank:
        raise UnsupportedPattern(f"{info.op_type} output {out} is not the gathered tensor")
    leading = tuple(out[: desc.indexed])
    if not is_static(leading):
        raise UnsupportedPattern(f"Indexed dims {leading} are not static")
    return leading


def _spans_indexed_dims(shape, desc: GatherNDDescriptor, leading, index):
    """
    False for operands that only cover trailing dims. Operands reaching into
    the indexed dims must carry all of them unbroadcast.
    """
    if len(shape) <= desc.trailing:
        return False
    if len(shape) != desc.rank or tuple(shape[: desc.indexed]) != leading:
        raise UnsupportedPattern(
            f"operand {index} {tuple(shape)} broadcasts over the indexed dims"
        )
    return True


@PropagationRegistry.register(GatherNDDescriptor, *OpType.ELEMENTWISE_BINARY)
def gathernd_through_elementwise(info, desc: GatherNDDescriptor):
    leading = _indexed_dims(info, desc)
    branches = []
    for index in range(len(info.input_shapes)):
        shape = info.input_shape(index)
        if _spans_indexed_dims(shape, desc, leading, index):
            branches.append((index, desc.on_input(len(shape))))
    return Propagation(branches)


@PropagationRegistry.register(GatherNDDescriptor, *OpType.ELEMENTWISE_UNARY)
def gathernd_through_unary(info, desc: GatherNDDescriptor):
    _indexed_dims(info, desc)
    return Propagation([(0, desc.on_input(len(info.input_shape(0))))])


def _trailing_axis(info, desc: GatherNDDescriptor, what: str):
    x = info.input_shape(0)
    attr = info.get_attr("axis", -1)
    axis = normalize_axis(attr, len(x))
    if axis < desc.indexed:
        return Blocked(f"{what} axis {axis} is one of the indexed dims")
    updates = {"axis": axis - len(x)} if attr >= 0 else {}
    return Propagation([(0, desc.on_input(len(x)))], attr_updates=updates)


@PropagationRegistry.register(GatherNDDescriptor, OpType.LAYER_NORM)
def gathernd_through_layer_norm(info, desc: GatherNDDescriptor):
    _indexed_dims(info, desc)
    return _trailing_axis(info, desc, "normalization")


@PropagationRegistry.register(GatherNDDescriptor, OpType.SOFTMAX)
def gathernd_through_softmax(info, desc: GatherNDDescriptor):
    _indexed_dims(info, desc)
    return _trailing_axis(info, desc, "softmax")


@PropagationRegistry.register(GatherNDDescriptor, OpType.MATMUL)
def gathernd_through_matmul(info, desc: GatherNDDescriptor):
    leading = _indexed_dims(info, desc)
    lhs = info.input_shape(0)
    rhs = info.input_shape(1)
    rank = desc.rank
    if len(lhs) < 2 or len(rhs) < 2:
        raise UnsupportedPattern("MatMul with a 1-D operand")
    if desc.indexed > rank - 1:
        return Blocked("the column dim is indexed")
    # rhs batch dims sit right before the row dim of the output
    if len(rhs) > 2 and rank - len(rhs) < desc.indexed:
        return Blocked(f"right operand {tuple(rhs)} spans the indexed dims")
    if desc.reduced_rank < 2:
        return Blocked("left operand would become a vector")
    if not _spans_indexed_dims(lhs, desc, leading, 0):
        return Blocked(f"left operand {tuple(lhs)} is broadcast")
    return Propagation([(0, desc.on_input(len(lhs)))])
