# Expose main components for easy access
from .ir import Graph, GraphBuilder, Node, TensorRef, DType
from .ir.errors import StructuralError, UnsupportedPattern
from .ops.op_types import OpType
from .compiler.pass_manager import PassManager, TransformerLevel, Status
from .passes import (
    UpstreamGatherTransformer,
    UpstreamReshapeTransformer,
    CommonSubexpressionElimination,
)
from .backend.reference import evaluate_graph
