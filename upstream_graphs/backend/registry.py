# upstream_graphs/backend/registry.py
import logging
from typing import Callable, Dict, List, Union, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# (input arrays, node attrs) -> output array, or a tuple for multi-output ops
Kernel = Callable[
    [List[np.ndarray], Dict], Union[np.ndarray, Tuple[np.ndarray, ...]]
]


class KernelRegistry:
    # OpType -> numpy kernel
    _kernels: Dict[str, Kernel] = {}

    @classmethod
    def has_kernel(cls, op_type: str) -> bool:
        return op_type in cls._kernels

    @classmethod
    def register(cls, *op_types: str):
        def decorator(func):
            for op_type in op_types:
                if op_type in cls._kernels:
                    logger.warning(
                        f"Kernel for '{op_type}' already registered, overwriting with {func.__name__}"
                    )
                cls._kernels[op_type] = func
            return func

        return decorator

    @classmethod
    def get_kernel(cls, op_type: str) -> Kernel:
        if op_type not in cls._kernels:
            raise NotImplementedError(f"No reference kernel for '{op_type}'")
        return cls._kernels[op_type]
