import numpy as np

from ..registry import KernelRegistry
from ...ir.errors import UnsupportedPattern
from ...ops.op_types import OpType
from ...ops.shape_utils import resolve_reshape


@KernelRegistry.register(OpType.GATHER)
def gather_kernel(inputs, attrs):
    data, indices = inputs
    axis = attrs.get("axis", 0)
    indices = indices.astype(np.int64)
    # Negative indices count from the end of the axis
    indices = np.where(indices < 0, indices + data.shape[axis], indices)
    return np.take(data, indices, axis=axis)


@KernelRegistry.register(OpType.GATHER_ND)
def gather_nd_kernel(inputs, attrs):
    data, indices = inputs
    batch_dims = attrs.get("batch_dims", 0)
    depth = indices.shape[-1]
    indexed = np.asarray(data.shape[batch_dims : batch_dims + depth], dtype=np.int64)
    indices = indices.astype(np.int64)
    indices = np.where(indices < 0, indices + indexed, indices)

    batch = int(np.prod(data.shape[:batch_dims]))
    data_flat = data.reshape((batch,) + data.shape[batch_dims:])
    index_flat = indices.reshape((batch, -1, depth))
    picked = np.stack(
        [data_flat[i][tuple(index_flat[i].T)] for i in range(batch)]
    )
    return picked.reshape(indices.shape[:-1] + data.shape[batch_dims + depth :])


@KernelRegistry.register(OpType.RESHAPE)
def reshape_kernel(inputs, attrs):
    data, spec = inputs
    allowzero = bool(attrs.get("allowzero", 0))
    try:
        target = resolve_reshape(data.shape, spec.reshape(-1).tolist(), allowzero)
    except UnsupportedPattern as e:
        raise ValueError(f"Cannot reshape {data.shape}: {e}") from e
    return data.reshape(target)


@KernelRegistry.register(OpType.UNSQUEEZE)
def unsqueeze_kernel(inputs, attrs):
    x = inputs[0]
    axes = attrs.get("axes", [])
    out_rank = x.ndim + len(axes)
    for axis in sorted(a + out_rank if a < 0 else a for a in axes):
        x = np.expand_dims(x, axis)
    return x


@KernelRegistry.register(OpType.SQUEEZE)
def squeeze_kernel(inputs, attrs):
    axes = attrs.get("axes")
    if axes is None:
        return np.squeeze(inputs[0])
    return np.squeeze(inputs[0], axis=tuple(axes))


@KernelRegistry.register(OpType.TRANSPOSE)
def transpose_kernel(inputs, attrs):
    return np.transpose(inputs[0], attrs.get("perm"))
