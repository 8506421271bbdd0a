# Progress bars for the propagation worklist and the pass manager loop.
DEBUG_PROPAGATION = False
DEBUG_PASSES = False

# Upper bound on full sweeps over the registered transformers of a level.
MAX_PASS_ITERATIONS = 5

# A producer whose output has other readers (or is a graph output) blocks the
# hoist. If True a private copy of the producer is rewritten for the hoisted
# edge instead, leaving the full-size original in place for the other readers.
DUPLICATE_SHARED_PRODUCERS = False

# Equivalence tolerances for comparing graphs before and after rewriting.
DEFAULT_ATOL = 1e-4
DEFAULT_RTOL = 1e-4

# Relaxed tolerances for rewrites that change accumulation order
# (e.g. a Gather moved ahead of a MatMul).
REORDERED_ATOL = 2e-3
REORDERED_RTOL = 2e-3
