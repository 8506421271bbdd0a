"""
File: upstream_graphs/compiler/registry.py
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

import numpy as np

from ..ir.dtypes import Shape
from ..ir.errors import UnsupportedPattern

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpInfo:
    """Everything a rule may inspect about the producer being crossed."""

    op_type: str
    attrs: Dict[str, Any]
    input_shapes: Tuple[Optional[Shape], ...]
    output_shape: Optional[Shape]
    constants: Dict[int, np.ndarray] = field(default_factory=dict)

    def get_attr(self, key: str, default: Any = None) -> Any:
        return self.attrs.get(key, default)

    def input_shape(self, index: int) -> Shape:
        shape = self.input_shapes[index] if index < len(self.input_shapes) else None
        if shape is None:
            raise UnsupportedPattern(f"{self.op_type} input {index} has unknown shape")
        return shape

    @property
    def out_shape(self) -> Shape:
        if self.output_shape is None:
            raise UnsupportedPattern(f"{self.op_type} output has unknown shape")
        return self.output_shape


@dataclass(frozen=True)
class Blocked:
    reason: str


@dataclass
class Propagation:
    """
    Result of a successful rule: which inputs receive a remapped descriptor,
    and how the producer itself must be adjusted to consume them.

    keep_dims: scalar slices are materialized with a rank-restoring
        Unsqueeze and the producer output is squeezed afterwards. Rules that
        adjust the producer directly (e.g. Reshape's shape input) clear it.
    """

    branches: List[Tuple[int, Any]] = field(default_factory=list)
    keep_dims: bool = True
    attr_updates: Dict[str, Any] = field(default_factory=dict)
    constant_updates: Dict[int, np.ndarray] = field(default_factory=dict)


RuleResult = Union[Blocked, Propagation]
Rule = Callable[[OpInfo, Any], RuleResult]


class PropagationRegistry:
    # (descriptor type, op type) -> rule
    _rules: Dict[Tuple[type, str], Rule] = {}

    @classmethod
    def register(cls, descriptor_type: Type, *op_types: str):
        """Decorator registering a rule for one or more producer op types."""

        def decorator(func: Rule):
            for op_type in op_types:
                if (descriptor_type, op_type) in cls._rules:
                    logger.warning(
                        f"Rule for {descriptor_type.__name__} through '{op_type}' "
                        f"already registered, overwriting with {func.__name__}"
                    )
                cls._rules[(descriptor_type, op_type)] = func
            return func

        return decorator

    @classmethod
    def rule(cls, op_type: str, descriptor: Any, info: OpInfo) -> RuleResult:
        func = cls._rules.get((type(descriptor), op_type))
        if func is None:
            return Blocked(f"no {type(descriptor).__name__} rule for '{op_type}'")
        try:
            result = func(info, descriptor)
        except UnsupportedPattern as e:
            return Blocked(str(e))
        if isinstance(result, Propagation) and not result.branches:
            return Blocked(f"no input of '{op_type}' carries {descriptor}")
        return result
