from enum import Enum
from typing import Tuple, Optional, Any

import numpy as np


class DType(Enum):
    FP32 = "float32"
    FP16 = "float16"
    INT32 = "int32"
    INT64 = "int64"
    BOOL = "bool"

    @property
    def np_dtype(self) -> Any:
        return np.dtype(self.value)

    @classmethod
    def from_numpy(cls, dtype: Any) -> "DType":
        name = np.dtype(dtype).name
        if name == "float64":
            return cls.FP32
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unsupported numpy dtype: {name}")


Shape = Tuple[Optional[int], ...]


def is_static(shape: Optional[Shape]) -> bool:
    return shape is not None and all(isinstance(d, int) for d in shape)


def format_shape(shape: Optional[Shape]) -> str:
    if shape is None:
        return "*"
    return "[" + ",".join(str(d) if d is not None else "?" for d in shape) + "]"
