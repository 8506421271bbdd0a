"""
File: upstream_graphs/rules/slice_rules.py

How a Gather slice crosses each supported producer. Every rule maps the
slice axis (expressed on the producer output) into the axis space of the
inputs that own that dimension.
"""

import numpy as np

from ..compiler.descriptors import SliceDescriptor
from ..compiler.registry import PropagationRegistry, Propagation, Blocked
from ..ir.errors import UnsupportedPattern
from ..ops.op_types import OpType
from ..ops.shape_utils import aligned_axis, normalize_axis, preserved_leading_dims
from ..ir.dtypes import is_static


def _owns_axis(shape, axis, out_extent) -> bool:
    """False when ``shape`` broadcasts along ``axis`` (size 1 against a larger dim)."""
    dim = shape[axis]
    if dim is None:
        raise UnsupportedPattern(f"Dim {axis} of {shape} is not static")
    return not (dim == 1 and out_extent != 1)


@PropagationRegistry.register(SliceDescriptor, *OpType.ELEMENTWISE_BINARY)
def slice_through_elementwise(info, desc: SliceDescriptor):
    out = info.out_shape
    branches = []
    for index in range(len(info.input_shapes)):
        shape = info.input_shape(index)
        axis = aligned_axis(desc.axis, len(out), len(shape))
        if axis is None:
            continue
        if not _owns_axis(shape, axis, out[desc.axis]):
            continue
        branches.append((index, desc.on_input(axis, len(shape))))
    return Propagation(branches)


@PropagationRegistry.register(SliceDescriptor, *OpType.ELEMENTWISE_UNARY)
def slice_through_unary(info, desc: SliceDescriptor):
    shape = info.input_shape(0)
    return Propagation([(0, desc.on_input(desc.axis, len(shape)))])


@PropagationRegistry.register(SliceDescriptor, OpType.MATMUL)
def slice_through_matmul(info, desc: SliceDescriptor):
    lhs = info.input_shape(0)
    rhs = info.input_shape(1)
    if len(lhs) < 2 or len(rhs) < 2:
        raise UnsupportedPattern("MatMul with a 1-D operand")
    out = info.out_shape
    rank = len(out)

    # Column dim belongs to the right operand, row dim to the left one
    if desc.axis == rank - 1:
        return Propagation([(1, desc.on_input(len(rhs) - 1, len(rhs)))])
    if desc.axis == rank - 2:
        return Propagation([(0, desc.on_input(len(lhs) - 2, len(lhs)))])

    branches = []
    for index, shape in enumerate((lhs, rhs)):
        axis = aligned_axis(desc.axis, rank, len(shape))
        if axis is None or axis >= len(shape) - 2:
            continue
        if not _owns_axis(shape, axis, out[desc.axis]):
            continue
        branches.append((index, desc.on_input(axis, len(shape))))
    return Propagation(branches)


@PropagationRegistry.register(SliceDescriptor, OpType.LAYER_NORM)
def slice_through_layer_norm(info, desc: SliceDescriptor):
    x = info.input_shape(0)
    norm_axis = normalize_axis(info.get_attr("axis", -1), len(x))
    if desc.axis >= norm_axis:
        return Blocked(f"axis {desc.axis} is normalized (normalization axis {norm_axis})")
    # Scale and bias only span the normalized dims
    return Propagation([(0, desc.on_input(desc.axis, len(x)))])


@PropagationRegistry.register(SliceDescriptor, OpType.SOFTMAX)
def slice_through_softmax(info, desc: SliceDescriptor):
    x = info.input_shape(0)
    softmax_axis = normalize_axis(info.get_attr("axis", -1), len(x))
    if desc.axis == softmax_axis:
        return Blocked(f"axis {desc.axis} is the softmax axis")
    return Propagation([(0, desc.on_input(desc.axis, len(x)))])


@PropagationRegistry.register(SliceDescriptor, OpType.TRANSPOSE)
def slice_through_transpose(info, desc: SliceDescriptor):
    x = info.input_shape(0)
    perm = info.get_attr("perm")
    if perm is None:
        perm = list(reversed(range(len(x))))
    return Propagation([(0, desc.on_input(perm[desc.axis], len(x)))])


@PropagationRegistry.register(SliceDescriptor, OpType.RESHAPE)
def slice_through_reshape(info, desc: SliceDescriptor):
    if info.get_attr("allowzero", 0):
        raise UnsupportedPattern("Reshape with allowzero=1")
    spec = info.constants.get(1)
    if spec is None:
        raise UnsupportedPattern("Reshape target is not a constant")
    spec = [int(v) for v in np.asarray(spec).reshape(-1)]

    x = info.input_shape(0)
    out = info.out_shape
    if not is_static(x) or not is_static(out):
        raise UnsupportedPattern("Reshape with dynamic shapes")

    # Only dims the reshape leaves in place can be sliced before it
    if desc.axis >= preserved_leading_dims(x, out):
        return Blocked(f"axis {desc.axis} is rewritten by the reshape")
    if spec[desc.axis] not in (0, -1, x[desc.axis]):
        return Blocked(f"spec entry {spec[desc.axis]} does not copy dim {desc.axis}")

    if desc.is_scalar:
        new_spec = spec[: desc.axis] + spec[desc.axis + 1 :]
    else:
        new_spec = list(spec)
        new_spec[desc.axis] = 0

    return Propagation(
        [(0, desc.on_input(desc.axis, len(x)))],
        keep_dims=False,
        constant_updates={1: np.asarray(new_spec, dtype=np.int64)},
    )
