"""
File: upstream_graphs/backend/reference.py
"""

from typing import Dict, Optional, Sequence

import numpy as np
from tqdm import tqdm

from .. import config
from ..ir.graph import Graph
from .registry import KernelRegistry
from . import kernels  # noqa: F401  (registers the numpy kernels)


def evaluate_graph(
    graph: Graph,
    feeds: Dict[str, np.ndarray],
    outputs: Optional[Sequence[str]] = None,
) -> Dict[str, np.ndarray]:
    """
    Executes ``graph`` node by node with the numpy reference kernels.

    Args:
        graph: Graph to run. It is not modified.
        feeds: Values for every graph input, by name.
        outputs: Tensor names to return; defaults to the graph outputs.

    Returns:
        Dictionary mapping each requested name to its computed value.
    """
    values: Dict[str, np.ndarray] = {
        name: np.asarray(value) for name, value in graph.initializers.items()
    }
    for name in graph.inputs:
        if name not in feeds:
            raise ValueError(f"Missing input data for '{name}'")
        values[name] = np.asarray(feeds[name], dtype=graph.tensor(name).dtype.np_dtype)

    for node in tqdm(
        graph.topological_order(), disable=not config.DEBUG_PASSES, desc="evaluate"
    ):
        kernel = KernelRegistry.get_kernel(node.op_type)
        args = [values[t.name] for t in graph.input_tensors(node)]
        result = kernel(args, node.attrs)
        if not isinstance(result, tuple):
            result = (result,)
        for tensor, value in zip(graph.output_tensors(node), result):
            values[tensor.name] = np.asarray(value)

    requested = list(outputs) if outputs is not None else list(graph.outputs)
    missing = [name for name in requested if name not in values]
    if missing:
        raise KeyError(f"Tensors {missing} were not computed")
    return {name: values[name] for name in requested}
