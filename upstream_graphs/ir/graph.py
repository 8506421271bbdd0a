import copy
import logging
from collections import Counter, deque
from typing import Dict, List, Optional, Sequence, Union, Any

import numpy as np

from .node import Node, TensorRef
from .dtypes import DType, Shape
from .errors import StructuralError

logger = logging.getLogger(__name__)

TensorLike = Union[TensorRef, str, int]


class Graph:
    """
    Arena of nodes and tensors addressed by integer id.

    Producer and consumer links are kept on the tensors and updated
    incrementally by every mutating method, so ``producer()`` and
    ``consumers()`` are always consistent with the node input lists.
    The topological order is cached and dropped on mutation.
    """

    def __init__(self, name: str = "graph"):
        self.name = name
        self.initializers: Dict[str, np.ndarray] = {}
        self.inputs: List[str] = []
        self.outputs: List[str] = []
        self.version = 0

        self._nodes: Dict[int, Node] = {}
        self._tensors: Dict[int, TensorRef] = {}
        self._tensor_ids: Dict[str, int] = {}
        self._node_ids: Dict[str, int] = {}
        self._next_id = 0
        self._topo_cache: Optional[List[int]] = None

    # --- Bookkeeping ---

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _touch(self):
        self._topo_cache = None
        self.version += 1

    def unique_name(self, prefix: str) -> str:
        count = 0
        candidate = prefix
        while candidate in self._tensor_ids or candidate in self._node_ids:
            count += 1
            candidate = f"{prefix}_{count}"
        return candidate

    # --- Lookup ---

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def tensors(self) -> List[TensorRef]:
        return list(self._tensors.values())

    def node(self, node_id: int) -> Node:
        if node_id not in self._nodes:
            raise StructuralError(f"Unknown node id {node_id}")
        return self._nodes[node_id]

    def has_node(self, node: Union[Node, int]) -> bool:
        node_id = node.id if isinstance(node, Node) else node
        return node_id in self._nodes

    def get_node(self, name: str) -> Node:
        if name not in self._node_ids:
            raise StructuralError(f"Unknown node '{name}'")
        return self._nodes[self._node_ids[name]]

    def has_tensor(self, name: str) -> bool:
        return name in self._tensor_ids

    def has_tensor_id(self, tensor_id: int) -> bool:
        return tensor_id in self._tensors

    def tensor(self, ref: TensorLike) -> TensorRef:
        if isinstance(ref, TensorRef):
            ref = ref.id
        if isinstance(ref, str):
            if ref not in self._tensor_ids:
                raise StructuralError(f"Dangling tensor reference '{ref}'")
            return self._tensors[self._tensor_ids[ref]]
        if ref not in self._tensors:
            raise StructuralError(f"Dangling tensor reference #{ref}")
        return self._tensors[ref]

    def producer(self, ref: TensorLike) -> Optional[Node]:
        tensor = self.tensor(ref)
        if tensor.producer is None:
            return None
        return self._nodes[tensor.producer]

    def consumers(self, ref: TensorLike) -> List[Node]:
        tensor = self.tensor(ref)
        return [self._nodes[nid] for nid in tensor.consumers]

    def input_tensors(self, node: Node) -> List[TensorRef]:
        return [self._tensors[tid] for tid in node.inputs]

    def output_tensors(self, node: Node) -> List[TensorRef]:
        return [self._tensors[tid] for tid in node.outputs]

    def is_graph_input(self, ref: TensorLike) -> bool:
        return self.tensor(ref).name in self.inputs

    def is_graph_output(self, ref: TensorLike) -> bool:
        return self.tensor(ref).name in self.outputs

    def is_initializer(self, ref: TensorLike) -> bool:
        return self.tensor(ref).name in self.initializers

    def get_initializer(self, ref: TensorLike) -> Optional[np.ndarray]:
        return self.initializers.get(self.tensor(ref).name)

    # --- Construction ---

    def _register_tensor(
        self, name: str, dtype: DType, shape: Optional[Shape]
    ) -> TensorRef:
        if name in self._tensor_ids:
            raise StructuralError(f"Tensor '{name}' already exists")
        tensor = TensorRef(
            self._new_id(), name, dtype, tuple(shape) if shape is not None else None
        )
        self._tensors[tensor.id] = tensor
        self._tensor_ids[name] = tensor.id
        self._touch()
        return tensor

    def add_input(
        self, name: str, shape: Optional[Shape], dtype: DType = DType.FP32
    ) -> TensorRef:
        tensor = self._register_tensor(name, dtype, shape)
        self.inputs.append(name)
        return tensor

    def add_initializer(
        self, name: str, value: Any, dtype: Optional[DType] = None
    ) -> TensorRef:
        if dtype is None:
            value = np.asarray(value)
            dtype = DType.from_numpy(value.dtype)
        value = np.asarray(value, dtype=dtype.np_dtype)
        tensor = self._register_tensor(name, dtype, tuple(int(d) for d in value.shape))
        self.initializers[name] = value
        return tensor

    def add_tensor(
        self, name: str, dtype: DType, shape: Optional[Shape] = None
    ) -> TensorRef:
        return self._register_tensor(name, dtype, shape)

    def add_node(
        self,
        op_type: str,
        inputs: Sequence[TensorLike],
        outputs: Sequence[TensorLike],
        attrs: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        dtype: Optional[DType] = None,
    ) -> Node:
        """
        Adds a node. Outputs given as new names are created as tensors of
        ``dtype`` (defaulting to the dtype of the first input). An existing
        output tensor is accepted only if it has no producer yet.
        """
        name = name or self.unique_name(op_type.lower())
        if name in self._node_ids:
            raise StructuralError(f"Node '{name}' already exists")

        input_tensors = [self.tensor(ref) for ref in inputs]
        if dtype is None:
            dtype = input_tensors[0].dtype if input_tensors else DType.FP32

        node = Node(self._new_id(), op_type, name, attrs=dict(attrs or {}))

        output_tensors = []
        for ref in outputs:
            if isinstance(ref, str) and ref not in self._tensor_ids:
                tensor = self._register_tensor(ref, dtype, None)
            else:
                tensor = self.tensor(ref)
            if tensor.producer is not None:
                raise StructuralError(
                    f"Tensor '{tensor.name}' already produced by "
                    f"{self._nodes[tensor.producer]}"
                )
            if tensor.name in self.initializers or tensor.name in self.inputs:
                raise StructuralError(
                    f"Tensor '{tensor.name}' is a graph input or initializer"
                )
            output_tensors.append(tensor)

        self._nodes[node.id] = node
        self._node_ids[name] = node.id
        for tensor in input_tensors:
            node.inputs.append(tensor.id)
            tensor.consumers[node.id] = None
        for tensor in output_tensors:
            node.outputs.append(tensor.id)
            tensor.producer = node.id
        self._touch()
        return node

    def mark_output(self, ref: TensorLike) -> TensorRef:
        tensor = self.tensor(ref)
        if tensor.name not in self.outputs:
            self.outputs.append(tensor.name)
        return tensor

    # --- Mutation ---

    def set_input(self, node: Node, index: int, ref: TensorLike):
        """Rewires a single input slot of ``node`` to another tensor."""
        new = self.tensor(ref)
        old = self._tensors[node.inputs[index]]
        node.inputs[index] = new.id
        if old.id not in node.inputs:
            old.consumers.pop(node.id, None)
        new.consumers[node.id] = None
        self._touch()

    def set_output(self, node: Node, index: int, ref: TensorLike):
        """
        Makes ``node`` produce ``ref`` in output slot ``index``. The previous
        output tensor is dropped and must be unused.
        """
        new = self.tensor(ref)
        if new.producer is not None:
            raise StructuralError(f"Tensor '{new.name}' already has a producer")
        old = self._tensors[node.outputs[index]]
        if old.consumers or old.name in self.outputs:
            raise StructuralError(
                f"Cannot replace output '{old.name}' of {node}: it is still in use"
            )
        old.producer = None
        self._drop_tensor(old)
        node.outputs[index] = new.id
        new.producer = node.id
        self._touch()

    def replace_all_uses(self, old_ref: TensorLike, new_ref: TensorLike) -> int:
        """Redirects every consumer of ``old_ref`` to ``new_ref``."""
        old = self.tensor(old_ref)
        new = self.tensor(new_ref)
        if old.id == new.id:
            return 0
        count = 0
        for node_id in list(old.consumers):
            node = self._nodes[node_id]
            node.inputs = [new.id if tid == old.id else tid for tid in node.inputs]
            new.consumers[node_id] = None
            count += 1
        old.consumers.clear()
        if count:
            self._touch()
        return count

    def remove_node(self, node: Node):
        """
        Removes ``node``. Its output tensors are dropped when unused, otherwise
        they are left without a producer and must be re-produced before the
        graph is validated.
        """
        if node.id not in self._nodes:
            raise StructuralError(f"Node {node} is not part of the graph")
        for tid in set(node.inputs):
            self._tensors[tid].consumers.pop(node.id, None)
        for tid in node.outputs:
            tensor = self._tensors[tid]
            tensor.producer = None
            if not tensor.consumers and tensor.name not in self.outputs:
                self._drop_tensor(tensor)
        del self._nodes[node.id]
        del self._node_ids[node.name]
        self._touch()

    def remove_tensor(self, ref: TensorLike):
        tensor = self.tensor(ref)
        if tensor.producer is not None or tensor.consumers:
            raise StructuralError(f"Tensor '{tensor.name}' is still connected")
        self._drop_tensor(tensor)
        self._touch()

    def _drop_tensor(self, tensor: TensorRef):
        self._tensors.pop(tensor.id, None)
        self._tensor_ids.pop(tensor.name, None)
        self.initializers.pop(tensor.name, None)
        if tensor.name in self.inputs:
            self.inputs.remove(tensor.name)

    def eliminate_dead_nodes(self) -> int:
        """Removes nodes none of whose outputs are consumed or graph outputs."""
        removed = 0
        for node in reversed(self.topological_order()):
            outputs = self.output_tensors(node)
            if any(t.consumers or t.name in self.outputs for t in outputs):
                continue
            self.remove_node(node)
            removed += 1
        for name, value in list(self.initializers.items()):
            tensor = self.tensor(name)
            if not tensor.consumers and name not in self.outputs:
                self._drop_tensor(tensor)
        return removed

    def clone(self) -> "Graph":
        return copy.deepcopy(self)

    # --- Analysis ---

    def topological_order(self) -> List[Node]:
        """
        Returns nodes in a stable topological order (Kahn's algorithm,
        ties broken by insertion order).
        """
        if self._topo_cache is not None:
            return [self._nodes[nid] for nid in self._topo_cache]

        pending = {}
        for node in self._nodes.values():
            pending[node.id] = len(
                {
                    self._tensors[tid].producer
                    for tid in node.inputs
                    if self._tensors[tid].producer is not None
                }
            )

        ready = deque(nid for nid, count in pending.items() if count == 0)
        order: List[int] = []
        while ready:
            nid = ready.popleft()
            order.append(nid)
            successors = {}
            for tid in self._nodes[nid].outputs:
                for consumer in self._tensors[tid].consumers:
                    successors[consumer] = None
            for succ in successors:
                pending[succ] -= 1
                if pending[succ] == 0:
                    ready.append(succ)

        if len(order) != len(self._nodes):
            stuck = [self._nodes[nid].name for nid in pending if nid not in order]
            raise StructuralError(f"Graph contains a cycle through {stuck}")

        self._topo_cache = order
        return [self._nodes[nid] for nid in order]

    def validate(self):
        """Checks the structural invariants, raising StructuralError on failure."""
        for node in self._nodes.values():
            for tid in node.inputs:
                if tid not in self._tensors:
                    raise StructuralError(f"{node} reads dangling tensor #{tid}")
                if node.id not in self._tensors[tid].consumers:
                    raise StructuralError(
                        f"{node} missing from consumers of '{self._tensors[tid].name}'"
                    )
            for tid in node.outputs:
                if tid not in self._tensors:
                    raise StructuralError(f"{node} writes dangling tensor #{tid}")
                if self._tensors[tid].producer != node.id:
                    raise StructuralError(
                        f"Producer of '{self._tensors[tid].name}' is not {node}"
                    )

        for tensor in self._tensors.values():
            if tensor.producer is None:
                if tensor.name not in self.inputs and tensor.name not in self.initializers:
                    raise StructuralError(
                        f"Tensor '{tensor.name}' has no producer and is neither "
                        f"a graph input nor an initializer"
                    )
            elif tensor.producer not in self._nodes:
                raise StructuralError(
                    f"Tensor '{tensor.name}' refers to missing producer #{tensor.producer}"
                )
            for consumer in tensor.consumers:
                if consumer not in self._nodes:
                    raise StructuralError(
                        f"Tensor '{tensor.name}' refers to missing consumer #{consumer}"
                    )
                if tensor.id not in self._nodes[consumer].inputs:
                    raise StructuralError(
                        f"Stale consumer {self._nodes[consumer]} on '{tensor.name}'"
                    )

        for name in self.outputs:
            if name not in self._tensor_ids:
                raise StructuralError(f"Graph output '{name}' does not exist")

        self.topological_order()

    def depends_on(self, ref: TensorLike, node: Node) -> bool:
        """True if computing ``ref`` requires running ``node``."""
        stack = [self.tensor(ref)]
        seen = set()
        while stack:
            tensor = stack.pop()
            if tensor.producer is None or tensor.producer in seen:
                continue
            if tensor.producer == node.id:
                return True
            seen.add(tensor.producer)
            stack.extend(self.input_tensors(self._nodes[tensor.producer]))
        return False

    def op_counts(self) -> Dict[str, int]:
        return dict(Counter(node.op_type for node in self._nodes.values()))

    def summary(self) -> str:
        lines = [f"Graph '{self.name}': {len(self._nodes)} nodes"]
        for node in self.topological_order():
            ins = ", ".join(repr(t) for t in self.input_tensors(node))
            outs = ", ".join(repr(t) for t in self.output_tensors(node))
            lines.append(f"  {node.op_type}({node.name}): {ins} -> {outs}")
        return "\n".join(lines)

    def __repr__(self):
        return f"Graph({self.name!r}, nodes={len(self._nodes)}, tensors={len(self._tensors)})"


class GraphBuilder:
    """Convenience front-end that creates nodes and infers their output shapes."""

    def __init__(self, name: str = "graph"):
        self.graph = Graph(name)
        self._count = 0

    def _next_name(self, op_name):
        self._count += 1
        return f"{op_name}_{self._count}"

    # --- Core Tensors ---

    def input(self, name, shape, dtype=DType.FP32) -> TensorRef:
        return self.graph.add_input(name, shape, dtype)

    def initializer(self, value, name=None, dtype=None) -> TensorRef:
        return self.graph.add_initializer(
            name or self._next_name("const"), value, dtype
        )

    def output(self, tensor: TensorLike) -> TensorRef:
        return self.graph.mark_output(tensor)

    def op(
        self,
        op_type: str,
        inputs: Sequence[TensorLike],
        attrs: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        num_outputs: int = 1,
        dtype: Optional[DType] = None,
    ):
        from ..compiler.shape_inference import ShapeInference

        name = name or self._next_name(op_type.lower())
        outputs = [
            f"{name}_out" if i == 0 else f"{name}_out{i}" for i in range(num_outputs)
        ]
        node = self.graph.add_node(op_type, inputs, outputs, attrs, name, dtype)
        ShapeInference.infer_node(self.graph, node)
        result = self.graph.output_tensors(node)
        return result[0] if num_outputs == 1 else tuple(result)

    # --- Math Ops ---

    def add(self, a, b, name=None):
        return self.op("Add", [a, b], name=name)

    def sub(self, a, b, name=None):
        return self.op("Sub", [a, b], name=name)

    def mul(self, a, b, name=None):
        return self.op("Mul", [a, b], name=name)

    def div(self, a, b, name=None):
        return self.op("Div", [a, b], name=name)

    def matmul(self, a, b, name=None):
        return self.op("MatMul", [a, b], name=name)

    def layer_norm(self, x, scale, bias, axis=-1, epsilon=1e-5, name=None):
        return self.op(
            "LayerNormalization",
            [x, scale, bias],
            attrs={"axis": axis, "epsilon": epsilon},
            name=name,
        )

    def softmax(self, x, axis=-1, name=None):
        return self.op("Softmax", [x], attrs={"axis": axis}, name=name)

    def gelu(self, x, name=None):
        return self.op("Gelu", [x], name=name)

    def relu(self, x, name=None):
        return self.op("Relu", [x], name=name)

    def dropout(self, x, ratio=0.0, name=None):
        return self.op("Dropout", [x], attrs={"ratio": ratio}, name=name)

    def identity(self, x, name=None):
        return self.op("Identity", [x], name=name)

    def cast(self, x, to: DType, name=None):
        return self.op("Cast", [x], attrs={"to": to.value}, name=name, dtype=to)

    # --- Manipulation Ops ---

    def gather(self, data, indices, axis=0, name=None):
        if not isinstance(indices, (TensorRef, str)):
            indices = self.initializer(np.asarray(indices, dtype=np.int64))
        return self.op("Gather", [data, indices], attrs={"axis": axis}, name=name)

    def gather_nd(self, data, indices, batch_dims=0, name=None):
        if not isinstance(indices, (TensorRef, str)):
            indices = self.initializer(np.asarray(indices, dtype=np.int64))
        return self.op(
            "GatherND", [data, indices], attrs={"batch_dims": batch_dims}, name=name
        )

    def reshape(self, x, shape, name=None):
        if not isinstance(shape, (TensorRef, str)):
            shape = self.initializer(np.asarray(shape, dtype=np.int64))
        return self.op("Reshape", [x, shape], name=name)

    def transpose(self, x, perm, name=None):
        return self.op("Transpose", [x], attrs={"perm": list(perm)}, name=name)

    def unsqueeze(self, x, axes, name=None):
        return self.op("Unsqueeze", [x], attrs={"axes": list(axes)}, name=name)

    def squeeze(self, x, axes, name=None):
        return self.op("Squeeze", [x], attrs={"axes": list(axes)}, name=name)

    def build(self) -> Graph:
        self.graph.validate()
        return self.graph
