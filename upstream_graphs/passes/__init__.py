from .base import (
    GraphTransformer,
    register_transformer,
    get_transformer_by_name,
    get_available_transformers,
)
from .upstream import UpstreamGatherTransformer, UpstreamReshapeTransformer
from .cse import CommonSubexpressionElimination

__all__ = [
    "GraphTransformer",
    "register_transformer",
    "get_transformer_by_name",
    "get_available_transformers",
    "UpstreamGatherTransformer",
    "UpstreamReshapeTransformer",
    "CommonSubexpressionElimination",
]
