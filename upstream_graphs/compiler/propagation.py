"""
Upstream Propagation

Moves data-shrinking or layout-only operators (Gather, GatherND, Reshape)
from the output of an expensive producer onto the producer's inputs, so the
producer runs on the reduced data. The engine is generic over the operator being
moved: subclasses describe a frontier node as a descriptor and know how to
materialize that descriptor on a new edge. Whether a descriptor may cross a
given producer is decided by the rules in ``PropagationRegistry``.
"""

import copy
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .. import config
from .. import rules  # noqa: F401  (registers the propagation rules)
from ..ir.graph import Graph
from ..ir.node import Node, TensorRef
from ..ir.dtypes import DType
from ..ir.errors import StructuralError, UnsupportedPattern
from ..ops.op_types import OpType
from .descriptors import SliceDescriptor, GatherNDDescriptor, ReshapeDescriptor
from .registry import PropagationRegistry, OpInfo, Blocked, Propagation
from .shape_inference import ShapeInference

logger = logging.getLogger(__name__)


class UpstreamPropagator(ABC):
    """Worklist engine hoisting every node of ``op_type`` as far upstream as rules allow."""

    op_type: str = ""

    def __init__(self, duplicate_shared: Optional[bool] = None):
        if duplicate_shared is None:
            duplicate_shared = config.DUPLICATE_SHARED_PRODUCERS
        self.duplicate_shared = duplicate_shared

    # --- Subclass hooks ---

    @abstractmethod
    def describe(self, graph: Graph, node: Node) -> Any:
        """Builds the descriptor of a frontier node. Raises UnsupportedPattern if it is not a candidate."""

    @abstractmethod
    def materialize(
        self, graph: Graph, source: TensorRef, descriptor: Any, keep_dims: bool
    ) -> Tuple[Node, TensorRef]:
        """
        Inserts the operator described by ``descriptor`` on ``source``.
        Returns the new frontier node and the tensor the producer should read.
        """

    @abstractmethod
    def finalize(
        self,
        graph: Graph,
        frontier: Node,
        producer: Node,
        descriptor: Any,
        propagation: Propagation,
    ):
        """Removes the old frontier once the producer consumes the reduced inputs."""

    def side_inputs(self, graph: Graph, frontier: Node) -> List[TensorRef]:
        """Tensors besides the data input that the moved operator keeps reading."""
        return []

    # --- Driver ---

    def candidates(self, graph: Graph) -> List[Node]:
        return [n for n in graph.topological_order() if n.op_type == self.op_type]

    def run(self, graph: Graph) -> int:
        """Processes every candidate to a fixed frontier. Returns the number of hoists."""
        worklist = deque(node.id for node in self.candidates(graph))
        visited = set()
        hoisted = 0

        with tqdm(
            total=len(worklist),
            disable=not config.DEBUG_PROPAGATION,
            desc=f"upstream {self.op_type}",
        ) as pbar:
            while worklist:
                node_id = worklist.popleft()
                pbar.update(1)
                if node_id in visited or not graph.has_node(node_id):
                    continue
                visited.add(node_id)

                new_frontiers = self.try_hoist(graph, graph.node(node_id))
                if new_frontiers is None:
                    continue
                hoisted += 1
                for node in new_frontiers:
                    worklist.append(node.id)
                pbar.total += len(new_frontiers)

        if hoisted:
            logger.info(f"Hoisted {hoisted} {self.op_type} node(s) upstream")
        return hoisted

    def try_hoist(self, graph: Graph, frontier: Node) -> Optional[List[Node]]:
        """Moves ``frontier`` above its producer. Returns the new frontier nodes, or None if blocked."""
        try:
            descriptor = self.describe(graph, frontier)
        except UnsupportedPattern as e:
            logger.debug(f"Skipping {frontier}: {e}")
            return None

        data = graph.tensor(frontier.inputs[0])
        producer = graph.producer(data)
        if producer is None:
            logger.debug(f"{frontier} reads '{data.name}' which has no producer")
            return None
        if producer.outputs[0] != data.id:
            logger.debug(f"{frontier} reads a side output of {producer}")
            return None
        for tensor in self.side_inputs(graph, frontier):
            if graph.depends_on(tensor, producer):
                logger.debug(f"'{tensor.name}' is computed from {producer}")
                return None

        info = self.op_info(graph, producer)
        result = PropagationRegistry.rule(producer.op_type, descriptor, info)
        if isinstance(result, Blocked):
            logger.debug(f"{descriptor} blocked at {producer}: {result.reason}")
            return None

        if not self.is_exclusive(graph, producer, frontier):
            if not self.duplicate_shared:
                logger.debug(f"{producer} is shared, not hoisting {frontier}")
                return None
            producer = self.duplicate_for_edge(graph, producer, frontier)

        new_frontiers = self.rewrite(graph, frontier, producer, descriptor, result)
        logger.debug(
            f"Moved {descriptor} above {producer} onto {len(new_frontiers)} input(s)"
        )
        return new_frontiers

    # --- Helpers ---

    @staticmethod
    def op_info(graph: Graph, producer: Node) -> OpInfo:
        constants = {}
        for index, tid in enumerate(producer.inputs):
            value = graph.get_initializer(tid)
            if value is not None:
                constants[index] = value
        outputs = graph.output_tensors(producer)
        return OpInfo(
            op_type=producer.op_type,
            attrs=dict(producer.attrs),
            input_shapes=tuple(t.shape for t in graph.input_tensors(producer)),
            output_shape=outputs[0].shape,
            constants=constants,
        )

    @staticmethod
    def is_exclusive(graph: Graph, producer: Node, frontier: Node) -> bool:
        """True if ``frontier`` is the only reader of anything ``producer`` computes."""
        for index, tensor in enumerate(graph.output_tensors(producer)):
            if graph.is_graph_output(tensor):
                return False
            readers = list(tensor.consumers)
            if index == 0:
                if readers != [frontier.id] or frontier.inputs.count(tensor.id) != 1:
                    return False
            elif readers:
                return False
        return True

    @staticmethod
    def duplicate_for_edge(graph: Graph, producer: Node, frontier: Node) -> Node:
        """Gives ``frontier`` a private copy of ``producer`` (first output only)."""
        source = graph.tensor(producer.outputs[0])
        name = graph.unique_name(f"{producer.name}_dup")
        clone = graph.add_node(
            producer.op_type,
            list(producer.inputs),
            [graph.unique_name(f"{name}_out")],
            copy.deepcopy(producer.attrs),
            name,
            dtype=source.dtype,
        )
        graph.tensor(clone.outputs[0]).shape = source.shape
        graph.set_input(frontier, 0, clone.outputs[0])
        logger.debug(f"Duplicated shared {producer} as {clone}")
        return clone

    @staticmethod
    def drop_unused_constants(graph: Graph, tensor_ids: List[int]):
        for tid in set(tensor_ids):
            if not graph.has_tensor_id(tid):
                continue
            tensor = graph.tensor(tid)
            if graph.is_initializer(tensor) and not tensor.consumers:
                if not graph.is_graph_output(tensor):
                    graph.remove_tensor(tensor)

    def rewrite(
        self,
        graph: Graph,
        frontier: Node,
        producer: Node,
        descriptor: Any,
        propagation: Propagation,
    ) -> List[Node]:
        new_frontiers = []
        for index, branch in propagation.branches:
            source = graph.tensor(producer.inputs[index])
            node, reduced = self.materialize(
                graph, source, branch, propagation.keep_dims
            )
            graph.set_input(producer, index, reduced)
            new_frontiers.append(node)

        replaced = []
        for index, value in propagation.constant_updates.items():
            old = graph.tensor(producer.inputs[index])
            const = graph.add_initializer(
                graph.unique_name(f"{producer.name}_{old.name}"), value, old.dtype
            )
            graph.set_input(producer, index, const)
            replaced.append(old.id)
        self.drop_unused_constants(graph, replaced)

        producer.attrs.update(propagation.attr_updates)
        ShapeInference.infer_node(graph, producer)
        self.finalize(graph, frontier, producer, descriptor, propagation)
        return new_frontiers

    @staticmethod
    def reconnect(graph: Graph, frontier: Node, node: Node, expected) -> None:
        """
        Removes ``frontier`` and makes ``node`` produce the tensor the frontier
        used to produce, checking that its shape is unchanged.
        """
        target = graph.tensor(frontier.outputs[0])
        target_name = target.name
        inputs = list(frontier.inputs)
        graph.remove_node(frontier)

        produced = graph.tensor(node.outputs[0])
        actual = produced.shape
        if expected is not None and actual != expected:
            raise StructuralError(
                f"Rewrite of {frontier} changed '{target_name}' from {expected} to {actual}"
            )
        if graph.has_tensor(target_name):
            graph.set_output(node, 0, target_name)
            graph.tensor(target_name).shape = actual
        UpstreamPropagator.drop_unused_constants(graph, inputs)


class GatherPropagator(UpstreamPropagator):
    """Hoists Gather nodes with scalar or 1-D indices."""

    op_type = OpType.GATHER

    def describe(self, graph: Graph, node: Node) -> SliceDescriptor:
        data = graph.tensor(node.inputs[0])
        indices = graph.tensor(node.inputs[1])
        if data.shape is None:
            raise UnsupportedPattern(f"'{data.name}' has unknown rank")
        const = graph.get_initializer(indices)
        const_indices = (
            tuple(int(v) for v in np.asarray(const).reshape(-1))
            if const is not None
            else None
        )
        return SliceDescriptor.create(
            node.get_attr("axis", 0),
            len(data.shape),
            indices.name,
            indices.shape,
            const_indices,
        )

    def side_inputs(self, graph, frontier):
        return [graph.tensor(frontier.inputs[1])]

    def materialize(self, graph, source, descriptor: SliceDescriptor, keep_dims):
        name = graph.unique_name(f"{source.name}_gather")
        node = graph.add_node(
            OpType.GATHER,
            [source, descriptor.indices],
            [graph.unique_name(f"{name}_out")],
            {"axis": descriptor.axis},
            name,
            dtype=source.dtype,
        )
        ShapeInference.infer_node(graph, node)
        reduced = graph.tensor(node.outputs[0])
        if not (descriptor.is_scalar and keep_dims):
            return node, reduced

        # Restore the sliced axis so the producer keeps its broadcast layout
        name = graph.unique_name(f"{source.name}_unsqueeze")
        unsqueeze = graph.add_node(
            OpType.UNSQUEEZE,
            [reduced],
            [graph.unique_name(f"{name}_out")],
            {"axes": [descriptor.axis]},
            name,
            dtype=source.dtype,
        )
        ShapeInference.infer_node(graph, unsqueeze)
        return node, graph.tensor(unsqueeze.outputs[0])

    def finalize(self, graph, frontier, producer, descriptor: SliceDescriptor, propagation):
        expected = graph.tensor(frontier.outputs[0]).shape
        if not (descriptor.is_scalar and propagation.keep_dims):
            self.reconnect(graph, frontier, producer, expected)
            return

        if self.fold_unsqueeze(graph, frontier, producer, descriptor.axis):
            return

        # Producer output still carries the sliced axis with extent 1
        name = graph.unique_name(f"{producer.name}_squeeze")
        squeeze = graph.add_node(
            OpType.SQUEEZE,
            [producer.outputs[0]],
            [graph.unique_name(f"{name}_out")],
            {"axes": [descriptor.axis]},
            name,
        )
        ShapeInference.infer_node(graph, squeeze)
        self.reconnect(graph, frontier, squeeze, expected)

    @staticmethod
    def fold_unsqueeze(graph: Graph, frontier: Node, producer: Node, axis: int) -> bool:
        """
        When the frontier only feeds an Unsqueeze restoring the same axis
        (left by the previous hoist), the producer output already has that
        layout: wire it straight to the Unsqueeze's readers instead of adding
        a Squeeze.
        """
        sliced = graph.tensor(frontier.outputs[0])
        if graph.is_graph_output(sliced):
            return False
        readers = graph.consumers(sliced)
        if len(readers) != 1 or readers[0].op_type != OpType.UNSQUEEZE:
            return False
        unsqueeze = readers[0]
        if list(unsqueeze.get_attr("axes", [])) != [axis]:
            return False
        restored = graph.tensor(unsqueeze.outputs[0])
        if graph.is_graph_output(restored):
            return False

        reduced = graph.tensor(producer.outputs[0])
        if restored.shape is not None and reduced.shape != restored.shape:
            raise StructuralError(
                f"Rewrite of {frontier} produced {reduced.shape}, "
                f"expected {restored.shape}"
            )
        inputs = list(frontier.inputs)
        graph.replace_all_uses(restored, reduced)
        graph.remove_node(unsqueeze)
        graph.remove_node(frontier)
        UpstreamPropagator.drop_unused_constants(graph, inputs)
        return True


class GatherNDPropagator(UpstreamPropagator):
    """Hoists GatherND nodes that look up entries of the leading dims."""

    op_type = OpType.GATHER_ND

    def describe(self, graph: Graph, node: Node) -> GatherNDDescriptor:
        data = graph.tensor(node.inputs[0])
        indices = graph.tensor(node.inputs[1])
        if data.shape is None:
            raise UnsupportedPattern(f"'{data.name}' has unknown rank")
        return GatherNDDescriptor.create(
            len(data.shape),
            node.get_attr("batch_dims", 0),
            indices.name,
            indices.shape,
        )

    def side_inputs(self, graph, frontier):
        return [graph.tensor(frontier.inputs[1])]

    def materialize(self, graph, source, descriptor: GatherNDDescriptor, keep_dims):
        name = graph.unique_name(f"{source.name}_gathernd")
        node = graph.add_node(
            OpType.GATHER_ND,
            [source, descriptor.indices],
            [graph.unique_name(f"{name}_out")],
            {"batch_dims": descriptor.batch_dims},
            name,
            dtype=source.dtype,
        )
        ShapeInference.infer_node(graph, node)
        return node, graph.tensor(node.outputs[0])

    def finalize(self, graph, frontier, producer, descriptor, propagation):
        expected = graph.tensor(frontier.outputs[0]).shape
        self.reconnect(graph, frontier, producer, expected)


class ReshapePropagator(UpstreamPropagator):
    """Hoists Reshape nodes that only merge or split leading dims."""

    op_type = OpType.RESHAPE

    def describe(self, graph: Graph, node: Node) -> ReshapeDescriptor:
        if node.get_attr("allowzero", 0):
            raise UnsupportedPattern("allowzero=1")
        spec = graph.get_initializer(node.inputs[1])
        if spec is None:
            raise UnsupportedPattern("runtime target shape")
        data = graph.tensor(node.inputs[0])
        return ReshapeDescriptor.create(data.shape, np.asarray(spec).reshape(-1))

    def materialize(self, graph, source, descriptor: ReshapeDescriptor, keep_dims):
        name = graph.unique_name(f"{source.name}_reshape")
        shape = graph.add_initializer(
            graph.unique_name(f"{name}_shape"),
            np.asarray(descriptor.spec, dtype=np.int64),
            DType.INT64,
        )
        node = graph.add_node(
            OpType.RESHAPE,
            [source, shape],
            [graph.unique_name(f"{name}_out")],
            name=name,
            dtype=source.dtype,
        )
        ShapeInference.infer_node(graph, node)
        reduced = graph.tensor(node.outputs[0])
        if reduced.shape is None:
            raise StructuralError(
                f"Reshape of '{source.name}' {source.shape} to {list(descriptor.spec)} "
                f"does not preserve the element count"
            )
        return node, reduced

    def finalize(self, graph, frontier, producer, descriptor, propagation):
        expected = graph.tensor(frontier.outputs[0]).shape
        self.reconnect(graph, frontier, producer, expected)
