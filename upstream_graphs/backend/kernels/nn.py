import numpy as np

from ..registry import KernelRegistry
from ...ops.op_types import OpType


@KernelRegistry.register(OpType.MATMUL)
def matmul_kernel(inputs, attrs):
    return np.matmul(inputs[0], inputs[1])


@KernelRegistry.register(OpType.SOFTMAX)
def softmax_kernel(inputs, attrs):
    x = inputs[0]
    axis = attrs.get("axis", -1)
    x_max = np.max(x, axis=axis, keepdims=True)
    exp_x = np.exp(x - x_max)
    return exp_x / np.sum(exp_x, axis=axis, keepdims=True)


@KernelRegistry.register(OpType.LAYER_NORM)
def layer_norm_kernel(inputs, attrs):
    """
    Normalizes over every dim from ``axis`` onwards. Also returns the mean
    and inverse standard deviation, with the normalized dims kept as 1.
    """
    x = inputs[0]
    scale = inputs[1]
    bias = inputs[2] if len(inputs) > 2 else None
    axis = attrs.get("axis", -1)
    eps = attrs.get("epsilon", 1e-5)

    if axis < 0:
        axis += x.ndim
    reduce_axes = tuple(range(axis, x.ndim))

    mean = np.mean(x, axis=reduce_axes, keepdims=True)
    var = np.mean(np.square(x - mean), axis=reduce_axes, keepdims=True)
    inv_std = 1.0 / np.sqrt(var + eps)

    y = (x - mean) * inv_std * scale
    if bias is not None:
        y = y + bias
    return y.astype(x.dtype), mean.astype(x.dtype), inv_std.astype(x.dtype)
