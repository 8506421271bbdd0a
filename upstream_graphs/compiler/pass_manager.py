"""
File: upstream_graphs/compiler/pass_manager.py

Runs the registered transformers of a level over a graph until a full sweep
changes nothing or the iteration cap is hit. The graph is validated after
every sweep; a structural failure aborts the run.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional, Union

from tqdm import tqdm

from .. import config
from ..ir.graph import Graph
from ..ir.errors import StructuralError
from ..passes.base import GraphTransformer, get_transformer_by_name

logger = logging.getLogger(__name__)


class TransformerLevel(IntEnum):
    DEFAULT = 0
    LEVEL1 = 1
    LEVEL2 = 2
    LEVEL3 = 3


@dataclass
class Status:
    ok: bool
    message: str = ""
    iterations: int = 0
    modified: bool = False
    converged: bool = True

    @classmethod
    def error(cls, message: str, iterations: int = 0, modified: bool = False) -> "Status":
        return cls(False, message, iterations, modified, converged=False)

    def __bool__(self):
        return self.ok


class PassManager:
    def __init__(self, max_iterations: int = config.MAX_PASS_ITERATIONS):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self.max_iterations = max_iterations
        self._transformers: Dict[int, List[GraphTransformer]] = {}

    def register(
        self,
        transformer: Union[GraphTransformer, str],
        level: TransformerLevel = TransformerLevel.LEVEL1,
    ) -> GraphTransformer:
        """Adds a transformer (instance or registered name) to ``level``."""
        if isinstance(transformer, str):
            transformer = get_transformer_by_name(transformer)
        registered = self._transformers.setdefault(int(level), [])
        if any(t.name == transformer.name for t in registered):
            raise ValueError(
                f"Transformer '{transformer.name}' already registered at level {level!r}"
            )
        registered.append(transformer)
        return transformer

    def transformers(self, level: TransformerLevel) -> List[GraphTransformer]:
        return list(self._transformers.get(int(level), []))

    def _report(self, message: str, diagnostics: Optional[List[str]]):
        logger.error(message)
        if diagnostics is not None:
            diagnostics.append(message)

    def apply(
        self,
        graph: Graph,
        level: TransformerLevel = TransformerLevel.LEVEL1,
        diagnostics: Optional[List[str]] = None,
    ) -> Status:
        transformers = self.transformers(level)
        if not transformers:
            return Status(True, f"no transformers at level {level!r}")

        try:
            graph.validate()
        except StructuralError as e:
            message = f"Input graph is malformed: {e}"
            self._report(message, diagnostics)
            return Status.error(message)

        modified = False
        for iteration in tqdm(
            range(self.max_iterations),
            disable=not config.DEBUG_PASSES,
            desc=f"passes {level!r}",
        ):
            changed = False
            for transformer in transformers:
                try:
                    if transformer.apply(graph):
                        changed = True
                        logger.debug(
                            f"Iteration {iteration + 1}: '{transformer.name}' modified the graph"
                        )
                    transformer.verify(graph)
                except StructuralError as e:
                    message = f"Transformer '{transformer.name}' broke the graph: {e}"
                    self._report(message, diagnostics)
                    return Status.error(message, iteration + 1, modified=True)

            modified = modified or changed
            if not changed:
                logger.info(
                    f"Level {level!r} converged after {iteration + 1} iteration(s)"
                )
                return Status(True, "converged", iteration + 1, modified, True)

        logger.info(
            f"Level {level!r} stopped at the iteration cap ({self.max_iterations})"
        )
        return Status(True, "iteration cap reached", self.max_iterations, modified, False)
