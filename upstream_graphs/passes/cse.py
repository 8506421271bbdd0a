import logging
from typing import Any, Dict, Hashable, Tuple

import numpy as np

from ..ir.graph import Graph
from ..ir.node import Node
from ..ops.op_types import OpType
from .base import GraphTransformer, register_transformer

logger = logging.getLogger(__name__)


def _freeze(value: Any) -> Hashable:
    """Hashable form of an attribute value."""
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, np.ndarray):
        return (value.dtype.str, value.shape, value.tobytes())
    return value


@register_transformer
class CommonSubexpressionElimination(GraphTransformer):
    """
    Merges nodes computing the same op on the same inputs with equal attrs.

    Upstream propagation creates one Gather or Reshape per hoisted edge, so
    two frontiers reading the same source end up as identical siblings; this
    folds them back together. Nodes producing graph outputs are kept.
    """

    # Ops whose result differs between two evaluations
    NONDETERMINISTIC_OPS = {
        "RandomNormal",
        "RandomUniform",
        "RandomNormalLike",
        "RandomUniformLike",
        "Multinomial",
    }

    @property
    def name(self) -> str:
        return "cse"

    def _is_pure(self, node: Node) -> bool:
        if node.op_type in self.NONDETERMINISTIC_OPS:
            return False
        if node.op_type == OpType.DROPOUT:
            return node.get_attr("ratio", 0.0) == 0.0
        return True

    @staticmethod
    def _key(node: Node) -> Tuple:
        return (
            node.op_type,
            tuple(node.inputs),
            _freeze(node.attrs),
            len(node.outputs),
        )

    def apply(self, graph: Graph) -> bool:
        seen: Dict[Tuple, Node] = {}
        removed = 0
        # Keys are computed after earlier merges rewired this node's inputs
        for node in graph.topological_order():
            if not self._is_pure(node):
                continue
            key = self._key(node)
            original = seen.get(key)
            if original is None:
                seen[key] = node
                continue
            if any(graph.is_graph_output(t) for t in graph.output_tensors(node)):
                continue
            for duplicate_out, original_out in zip(node.outputs, original.outputs):
                graph.replace_all_uses(duplicate_out, original_out)
            graph.remove_node(node)
            removed += 1
            logger.debug(f"Merged {node} into {original}")

        if removed:
            logger.info(f"Eliminated {removed} redundant node(s)")
        return removed > 0
