import numpy as np
import pytest

from upstream_graphs import config
from upstream_graphs.backend.reference import evaluate_graph


def random_feeds(graph, seed=0):
    rng = np.random.default_rng(seed)
    feeds = {}
    for name in graph.inputs:
        tensor = graph.tensor(name)
        if np.issubdtype(tensor.dtype.np_dtype, np.integer):
            feeds[name] = rng.integers(0, 4, size=tensor.shape).astype(
                tensor.dtype.np_dtype
            )
        else:
            feeds[name] = rng.standard_normal(tensor.shape).astype(np.float32)
    return feeds


@pytest.fixture
def check_equivalence():
    """Runs both graphs on the same random feeds and compares every output."""

    def _check(original, optimized, atol=config.DEFAULT_ATOL, rtol=config.DEFAULT_RTOL):
        feeds = random_feeds(original)
        expected = evaluate_graph(original, feeds)
        actual = evaluate_graph(optimized, feeds)
        assert list(actual) == list(expected)
        for name, value in expected.items():
            assert actual[name].shape == value.shape, name
            np.testing.assert_allclose(actual[name], value, rtol=rtol, atol=atol)

    return _check
