from .shape_inference import ShapeInference
from .descriptors import (
    SliceDescriptor,
    SliceKind,
    GatherNDDescriptor,
    ReshapeDescriptor,
)
from .registry import PropagationRegistry, OpInfo, Blocked, Propagation
from .propagation import (
    UpstreamPropagator,
    GatherPropagator,
    GatherNDPropagator,
    ReshapePropagator,
)
from .pass_manager import PassManager, TransformerLevel, Status

__all__ = [
    "ShapeInference",
    "SliceDescriptor",
    "SliceKind",
    "GatherNDDescriptor",
    "ReshapeDescriptor",
    "PropagationRegistry",
    "OpInfo",
    "Blocked",
    "Propagation",
    "UpstreamPropagator",
    "GatherPropagator",
    "GatherNDPropagator",
    "ReshapePropagator",
    "PassManager",
    "TransformerLevel",
    "Status",
]
