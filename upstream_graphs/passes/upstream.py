from typing import Optional

from ..compiler.propagation import (
    GatherPropagator,
    GatherNDPropagator,
    ReshapePropagator,
)
from ..ir.graph import Graph
from .base import GraphTransformer, register_transformer


class _UpstreamTransformer(GraphTransformer):
    propagator_classes = ()

    def __init__(self, duplicate_shared: Optional[bool] = None):
        self.propagators = [cls(duplicate_shared) for cls in self.propagator_classes]

    def apply(self, graph: Graph) -> bool:
        hoisted = 0
        for propagator in self.propagators:
            hoisted += propagator.run(graph)
        return hoisted > 0


@register_transformer
class UpstreamGatherTransformer(_UpstreamTransformer):
    """
    Moves Gather nodes with scalar or 1-D indices above MatMul,
    LayerNormalization, Softmax, Transpose, Reshape and elementwise ops,
    and GatherND lookups of leading dims above MatMul, LayerNormalization,
    Softmax and elementwise ops.
    """

    propagator_classes = (GatherPropagator, GatherNDPropagator)

    @property
    def name(self) -> str:
        return "upstream_gather"


@register_transformer
class UpstreamReshapeTransformer(_UpstreamTransformer):
    """
    Moves Reshape nodes that merge or split leading dims above MatMul,
    LayerNormalization, Softmax and elementwise ops.
    """

    propagator_classes = (ReshapePropagator,)

    @property
    def name(self) -> str:
        return "upstream_reshape"
