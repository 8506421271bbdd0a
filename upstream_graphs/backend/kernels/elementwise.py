import math

import numpy as np

from ..registry import KernelRegistry
from ...ir.dtypes import DType
from ...ops.op_types import OpType

_erf = np.vectorize(math.erf, otypes=[np.float64])


# --- Binary ---
@KernelRegistry.register(OpType.ADD)
def add_kernel(inputs, attrs):
    return inputs[0] + inputs[1]


@KernelRegistry.register(OpType.SUB)
def sub_kernel(inputs, attrs):
    return inputs[0] - inputs[1]


@KernelRegistry.register(OpType.MUL)
def mul_kernel(inputs, attrs):
    return inputs[0] * inputs[1]


@KernelRegistry.register(OpType.DIV)
def div_kernel(inputs, attrs):
    a, b = inputs
    if np.issubdtype(a.dtype, np.integer):
        return np.trunc(a / b).astype(a.dtype)
    return a / b


@KernelRegistry.register(OpType.POW)
def pow_kernel(inputs, attrs):
    return np.power(inputs[0], inputs[1]).astype(inputs[0].dtype)


# --- Unary ---
@KernelRegistry.register(OpType.IDENTITY)
def identity_kernel(inputs, attrs):
    return inputs[0]


@KernelRegistry.register(OpType.DROPOUT)
def dropout_kernel(inputs, attrs):
    # Inference behaviour: data passes through, mask is all ones
    x = inputs[0]
    return x, np.ones(x.shape, dtype=bool)


@KernelRegistry.register(OpType.CAST)
def cast_kernel(inputs, attrs):
    return inputs[0].astype(DType(attrs["to"]).np_dtype)


@KernelRegistry.register(OpType.RELU)
def relu_kernel(inputs, attrs):
    return np.maximum(inputs[0], 0).astype(inputs[0].dtype)


@KernelRegistry.register(OpType.GELU)
def gelu_kernel(inputs, attrs):
    x = inputs[0]
    result = 0.5 * x * (1.0 + _erf(x / np.sqrt(2.0)))
    return result.astype(x.dtype)


@KernelRegistry.register(OpType.ERF)
def erf_kernel(inputs, attrs):
    return _erf(inputs[0]).astype(inputs[0].dtype)


@KernelRegistry.register(OpType.TANH)
def tanh_kernel(inputs, attrs):
    return np.tanh(inputs[0])


@KernelRegistry.register(OpType.SIGMOID)
def sigmoid_kernel(inputs, attrs):
    x = inputs[0]
    return (1.0 / (1.0 + np.exp(-x))).astype(x.dtype)


@KernelRegistry.register(OpType.NEG)
def neg_kernel(inputs, attrs):
    return -inputs[0]


@KernelRegistry.register(OpType.SQRT)
def sqrt_kernel(inputs, attrs):
    return np.sqrt(inputs[0])


@KernelRegistry.register(OpType.EXP)
def exp_kernel(inputs, attrs):
    return np.exp(inputs[0])
