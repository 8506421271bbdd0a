from . import elementwise
from . import nn
from . import manipulation

__all__ = [
    "elementwise",
    "nn",
    "manipulation",
]
