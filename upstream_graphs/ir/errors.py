class StructuralError(RuntimeError):
    """
    Raised when the graph violates its structural invariants: a dangling
    tensor reference, a tensor without a producer that is neither a graph
    input nor an initializer, a cycle, or a rewrite whose output shape does
    not match the tensor it replaces.
    """


class UnsupportedPattern(Exception):
    """
    Raised by propagation rules and shape helpers when an operator, attribute
    or shape combination cannot be handled statically. The propagation engine
    treats it as a blocked edge, never as a failure.
    """
