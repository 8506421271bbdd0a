from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

from .dtypes import DType, Shape, format_shape


@dataclass(eq=False)
class TensorRef:
    id: int
    name: str
    dtype: DType
    shape: Optional[Shape] = None

    # Node ids. producer is None for graph inputs and initializers.
    producer: Optional[int] = None
    consumers: Dict[int, None] = field(default_factory=dict)

    @property
    def rank(self) -> Optional[int]:
        return None if self.shape is None else len(self.shape)

    def __repr__(self):
        return f"<{self.name} {self.dtype.value}{format_shape(self.shape)}>"


@dataclass(eq=False)
class Node:
    id: int
    op_type: str
    name: str
    inputs: List[int] = field(default_factory=list)
    outputs: List[int] = field(default_factory=list)
    attrs: Dict[str, Any] = field(default_factory=dict)

    def get_attr(self, key: str, default: Any = None) -> Any:
        return self.attrs.get(key, default)

    def __repr__(self):
        attr_keys = list(self.attrs.keys()) if self.attrs else []
        attrs_summary = f" | attrs={attr_keys}" if attr_keys else ""
        return f"{self.op_type}({self.name}#{self.id}{attrs_summary})"
