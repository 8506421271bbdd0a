import logging
from typing import Callable, Dict, List, Optional

from ..ir.graph import Graph
from ..ir.node import Node
from ..ir.dtypes import Shape, is_static
from ..ir.errors import UnsupportedPattern
from ..ops.op_types import OpType
from ..ops.shape_utils import broadcast_shapes, normalize_axis, resolve_reshape

logger = logging.getLogger(__name__)

# (graph, node, input shapes) -> output shapes
ShapeHandler = Callable[[Graph, Node, List[Optional[Shape]]], List[Optional[Shape]]]


class ShapeInference:
    _handlers: Dict[str, ShapeHandler] = {}

    @classmethod
    def register_handler(cls, *op_types: str):
        def decorator(func):
            for op_type in op_types:
                cls._handlers[op_type] = func
            return func

        return decorator

    @classmethod
    def infer_node(cls, graph: Graph, node: Node) -> List[Optional[Shape]]:
        """
        Recomputes the output shapes of ``node`` from its current inputs and
        writes them onto the output tensors. Unresolvable outputs get ``None``.
        """
        input_shapes = [t.shape for t in graph.input_tensors(node)]
        handler = cls._handlers.get(node.op_type)

        shapes: List[Optional[Shape]]
        if handler is None:
            # Unknown op: only a single-input op can be assumed shape-preserving
            if len(input_shapes) == 1:
                shapes = [input_shapes[0]]
            else:
                shapes = [None]
        else:
            try:
                shapes = handler(graph, node, input_shapes)
            except UnsupportedPattern as e:
                logger.debug(f"Shape inference failed for {node}: {e}")
                shapes = [None]

        outputs = graph.output_tensors(node)
        for i, tensor in enumerate(outputs):
            tensor.shape = shapes[i] if i < len(shapes) else None
        return [t.shape for t in outputs]


def _require(shape: Optional[Shape], node: Node) -> Shape:
    if shape is None:
        raise UnsupportedPattern(f"{node} has an input of unknown rank")
    return shape


# ==============================================================================
# Op Handlers
# ==============================================================================


@ShapeInference.register_handler(*OpType.ELEMENTWISE_BINARY)
def handle_broadcast(graph, node, input_shapes):
    shapes = [_require(s, node) for s in input_shapes]
    return [broadcast_shapes(*shapes)]


@ShapeInference.register_handler(*OpType.ELEMENTWISE_UNARY, OpType.SOFTMAX)
def handle_unary(graph, node, input_shapes):
    shape = input_shapes[0]
    if node.op_type == OpType.DROPOUT:
        # Optional second output is the mask
        return [shape, shape]
    return [shape]


@ShapeInference.register_handler(OpType.MATMUL)
def handle_matmul(graph, node, input_shapes):
    a = _require(input_shapes[0], node)
    b = _require(input_shapes[1], node)
    if len(a) == 0 or len(b) == 0:
        raise UnsupportedPattern("MatMul of a scalar")

    a_vec = len(a) == 1
    b_vec = len(b) == 1
    if a_vec:
        a = (1,) + tuple(a)
    if b_vec:
        b = tuple(b) + (1,)

    k_a, k_b = a[-1], b[-2]
    if k_a is not None and k_b is not None and k_a != k_b:
        raise UnsupportedPattern(f"MatMul contraction mismatch {a} x {b}")

    batch = broadcast_shapes(a[:-2], b[:-2]) if (len(a) > 2 or len(b) > 2) else ()
    out = tuple(batch)
    if not a_vec:
        out += (a[-2],)
    if not b_vec:
        out += (b[-1],)
    return [out]


@ShapeInference.register_handler(OpType.LAYER_NORM)
def handle_layer_norm(graph, node, input_shapes):
    x = _require(input_shapes[0], node)
    axis = normalize_axis(node.get_attr("axis", -1), len(x))
    stats = tuple(x[:axis]) + (1,) * (len(x) - axis)
    # Optional outputs: mean and inverse std-dev
    return [x, stats, stats]


@ShapeInference.register_handler(OpType.GATHER)
def handle_gather(graph, node, input_shapes):
    data = _require(input_shapes[0], node)
    indices = _require(input_shapes[1], node)
    axis = normalize_axis(node.get_attr("axis", 0), len(data))
    return [tuple(data[:axis]) + tuple(indices) + tuple(data[axis + 1 :])]


@ShapeInference.register_handler(OpType.GATHER_ND)
def handle_gather_nd(graph, node, input_shapes):
    data = _require(input_shapes[0], node)
    indices = _require(input_shapes[1], node)
    batch_dims = node.get_attr("batch_dims", 0)
    if len(indices) <= batch_dims or indices[-1] is None:
        raise UnsupportedPattern(f"{node} has indices of shape {indices}")
    depth = indices[-1]
    if not 1 <= depth <= len(data) - batch_dims:
        raise UnsupportedPattern(f"{node} indexes {depth} dims of {data}")
    return [tuple(indices[:-1]) + tuple(data[batch_dims + depth :])]


@ShapeInference.register_handler(OpType.RESHAPE)
def handle_reshape(graph, node, input_shapes):
    spec = graph.get_initializer(node.inputs[1])
    if spec is None:
        target = input_shapes[1]
        if target is not None and len(target) == 1 and target[0] is not None:
            return [(None,) * target[0]]
        raise UnsupportedPattern(f"{node} has a runtime shape input")
    data = input_shapes[0]
    if not is_static(data):
        raise UnsupportedPattern(f"{node} reshapes a dynamic shape")
    allowzero = bool(node.get_attr("allowzero", 0))
    return [resolve_reshape(data, [int(v) for v in spec.reshape(-1)], allowzero)]


@ShapeInference.register_handler(OpType.UNSQUEEZE)
def handle_unsqueeze(graph, node, input_shapes):
    x = list(_require(input_shapes[0], node))
    axes = node.get_attr("axes", [])
    out_rank = len(x) + len(axes)
    for axis in sorted(normalize_axis(a, out_rank) for a in axes):
        x.insert(axis, 1)
    return [tuple(x)]


@ShapeInference.register_handler(OpType.SQUEEZE)
def handle_squeeze(graph, node, input_shapes):
    x = _require(input_shapes[0], node)
    axes = node.get_attr("axes")
    if axes is None:
        return [tuple(d for d in x if d != 1)]
    drop = {normalize_axis(a, len(x)) for a in axes}
    for axis in drop:
        if x[axis] not in (1, None):
            raise UnsupportedPattern(f"Cannot squeeze dim {axis} of {x}")
    return [tuple(d for i, d in enumerate(x) if i not in drop)]


@ShapeInference.register_handler(OpType.TRANSPOSE)
def handle_transpose(graph, node, input_shapes):
    x = _require(input_shapes[0], node)
    perm = node.get_attr("perm")
    if perm is None:
        perm = list(reversed(range(len(x))))
    if sorted(perm) != list(range(len(x))):
        raise UnsupportedPattern(f"Invalid perm {perm} for rank {len(x)}")
    return [tuple(x[p] for p in perm)]
