from abc import ABC, abstractmethod
from typing import Dict, Type
import logging

from ..ir.graph import Graph

logger = logging.getLogger(__name__)


class GraphTransformer(ABC):
    """
    Base class for graph rewrites run by the PassManager.

    The lifecycle of a transformer is:
    1. apply() - Rewrite the graph in place, returning whether it changed
    2. verify() - Check the graph is still well-formed

    Example:
        >>> @register_transformer
        ... class MyTransformer(GraphTransformer):
        ...     @property
        ...     def name(self):
        ...         return 'my_transformer'
        ...
        ...     def apply(self, graph):
        ...         return False
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name, used for registration and in diagnostics."""

    @abstractmethod
    def apply(self, graph: Graph) -> bool:
        """
        Rewrites ``graph`` in place.

        Returns:
            True if any node was added, removed or rewired.

        Raises:
            StructuralError: if the rewrite broke a graph invariant.
        """

    def verify(self, graph: Graph) -> bool:
        """Raises StructuralError if ``graph`` is malformed."""
        graph.validate()
        return True

    def __repr__(self):
        return f"{self.__class__.__name__}({self.name!r})"


# Transformer registry - maps names to transformer classes
_TRANSFORMER_REGISTRY: Dict[str, Type[GraphTransformer]] = {}


def register_transformer(cls: Type[GraphTransformer]) -> Type[GraphTransformer]:
    """
    Class decorator registering a transformer under its ``name``.

    Raises:
        ValueError: If the class cannot be instantiated without arguments
    """
    try:
        transformer_name = cls().name
    except Exception as e:
        raise ValueError(f"Failed to register transformer {cls.__name__}: {e}") from e

    if transformer_name in _TRANSFORMER_REGISTRY:
        logger.warning(
            f"Transformer '{transformer_name}' already registered, overwriting with {cls.__name__}"
        )
    _TRANSFORMER_REGISTRY[transformer_name] = cls
    logger.debug(f"Registered transformer: '{transformer_name}' ({cls.__name__})")
    return cls


def get_transformer_by_name(name: str) -> GraphTransformer:
    if name not in _TRANSFORMER_REGISTRY:
        available = list(_TRANSFORMER_REGISTRY.keys())
        raise KeyError(
            f"Transformer '{name}' not found.\n"
            f"Available transformers: {available}"
        )
    return _TRANSFORMER_REGISTRY[name]()


def get_available_transformers() -> Dict[str, Type[GraphTransformer]]:
    return _TRANSFORMER_REGISTRY.copy()
