from .node import Node, TensorRef
from .graph import Graph, GraphBuilder
from .dtypes import DType, Shape
from .errors import StructuralError, UnsupportedPattern

__all__ = [
    "Node",
    "TensorRef",
    "Graph",
    "GraphBuilder",
    "DType",
    "Shape",
    "StructuralError",
    "UnsupportedPattern",
]
