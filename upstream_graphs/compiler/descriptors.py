"""
File: upstream_graphs/compiler/descriptors.py

Typed views of the operators being hoisted. A descriptor is built from a
frontier node, remapped into the axis space of each producer input by the
propagation rules, and discarded once the attempt is over.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from ..ir.dtypes import Shape, is_static
from ..ir.errors import UnsupportedPattern
from ..ops.shape_utils import (
    normalize_axis,
    resolve_reshape,
    preserved_trailing_dims,
)


class SliceKind(Enum):
    SCALAR = "scalar"  # indices are rank 0: the axis is dropped
    RANGE = "range"  # indices are rank 1: the axis is kept


@dataclass(frozen=True)
class SliceDescriptor:
    axis: int
    kind: SliceKind
    indices: str  # name of the indices tensor (initializer or runtime)
    rank: int  # rank of the tensor being sliced
    const_indices: Optional[Tuple[int, ...]] = None
    length: Optional[int] = None  # extent of the axis after a RANGE slice

    @classmethod
    def create(
        cls,
        axis: int,
        rank: int,
        indices: str,
        indices_shape: Optional[Shape],
        const_indices: Optional[Tuple[int, ...]] = None,
    ) -> "SliceDescriptor":
        if indices_shape is None or len(indices_shape) > 1:
            raise UnsupportedPattern(f"Indices of shape {indices_shape} are not a slice")
        kind = SliceKind.SCALAR if len(indices_shape) == 0 else SliceKind.RANGE
        length = None if kind == SliceKind.SCALAR else indices_shape[0]
        return cls(
            normalize_axis(axis, rank), kind, indices, rank, const_indices, length
        )

    @property
    def is_scalar(self) -> bool:
        return self.kind == SliceKind.SCALAR

    def on_input(self, axis: int, rank: int) -> "SliceDescriptor":
        """The same slice expressed in another tensor's axis space."""
        return replace(self, axis=normalize_axis(axis, rank), rank=rank)

    def sliced_shape(self, shape: Shape) -> Shape:
        """Shape of ``shape`` after the slice is applied."""
        if self.is_scalar:
            return tuple(shape[: self.axis]) + tuple(shape[self.axis + 1 :])
        return (
            tuple(shape[: self.axis]) + (self.length,) + tuple(shape[self.axis + 1 :])
        )

    def __str__(self):
        return f"Slice(axis={self.axis}, {self.kind.value}, indices={self.indices})"


@dataclass(frozen=True)
class GatherNDDescriptor:
    """
    A GatherND picking entries of the leading dims of its input.

    The first ``batch_dims`` dims are matched one to one with the indices,
    the next ``depth`` dims are addressed by the last indices dim, and the
    remaining ``trailing`` dims are copied through.
    """

    batch_dims: int
    depth: int
    indices: str  # name of the indices tensor
    indices_shape: Tuple[Optional[int], ...]
    rank: int  # rank of the tensor being gathered from

    @classmethod
    def create(
        cls,
        rank: int,
        batch_dims: int,
        indices: str,
        indices_shape: Optional[Shape],
    ) -> "GatherNDDescriptor":
        if indices_shape is None or len(indices_shape) <= batch_dims:
            raise UnsupportedPattern(f"Indices of shape {indices_shape} are not a lookup")
        depth = indices_shape[-1]
        if depth is None or not 1 <= depth <= rank - batch_dims:
            raise UnsupportedPattern(
                f"Indices of shape {indices_shape} cannot address rank {rank}"
            )
        return cls(batch_dims, depth, indices, tuple(indices_shape), rank)

    @property
    def indexed(self) -> int:
        """Number of leading dims consumed by the lookup."""
        return self.batch_dims + self.depth

    @property
    def trailing(self) -> int:
        return self.rank - self.indexed

    @property
    def reduced_rank(self) -> int:
        return len(self.indices_shape) - 1 + self.trailing

    def on_input(self, rank: int) -> "GatherNDDescriptor":
        return replace(self, rank=rank)

    def gathered_shape(self, shape: Shape) -> Shape:
        return self.indices_shape[:-1] + tuple(shape[self.indexed :])

    def __str__(self):
        return (
            f"GatherND(batch_dims={self.batch_dims}, depth={self.depth}, "
            f"indices={self.indices})"
        )


@dataclass(frozen=True)
class ReshapeDescriptor:
    """
    A reshape that rewrites only the leading dims of its input.

    ``input_shape[:leading_in]`` is collapsed or split into ``leading_out``
    while the last ``trailing`` dims pass through untouched.
    """

    spec: Tuple[int, ...]
    input_shape: Tuple[int, ...]
    output_shape: Tuple[int, ...]
    leading_in: int
    leading_out: Tuple[int, ...]
    trailing: int

    @classmethod
    def create(cls, input_shape: Optional[Shape], spec) -> "ReshapeDescriptor":
        if not is_static(input_shape):
            raise UnsupportedPattern(f"Reshape input {input_shape} is not static")
        spec = tuple(int(v) for v in spec)
        output_shape = resolve_reshape(input_shape, spec)

        trailing = preserved_trailing_dims(input_shape, output_shape)
        # Keep at least one dim on each side of the split
        trailing = min(trailing, len(input_shape) - 1, len(output_shape) - 1)
        if trailing < 1:
            raise UnsupportedPattern(
                f"Reshape {tuple(input_shape)} -> {output_shape} keeps no trailing dims"
            )
        leading_in = len(input_shape) - trailing
        leading_out = tuple(output_shape[: len(output_shape) - trailing])
        if leading_in == 1 and len(leading_out) == 1:
            raise UnsupportedPattern("Reshape does not change the shape")
        return cls(
            spec, tuple(input_shape), output_shape, leading_in, leading_out, trailing
        )

    @property
    def leading_spec(self) -> Tuple[int, ...]:
        """Dim specs for the leading part; a single merged dim is inferred."""
        if len(self.leading_out) == 1:
            return (-1,)
        return self.leading_out

    def target_for(self, input_shape: Shape) -> Tuple[int, ...]:
        """
        Target spec for an operand of the producer: the shared leading part
        followed by that operand's own trailing dims.
        """
        tail = tuple(input_shape[len(input_shape) - self.trailing :])
        if not is_static(tail):
            raise UnsupportedPattern(f"Operand trailing dims {tail} are not static")
        return self.leading_spec + tail

    def on_input(self, input_shape: Shape) -> "ReshapeDescriptor":
        return ReshapeDescriptor.create(input_shape, self.target_for(input_shape))

    def element_count_matches(self) -> bool:
        return math.prod(self.input_shape) == math.prod(self.output_shape)

    def __str__(self):
        return f"Reshape({list(self.spec)}: {self.input_shape} -> {self.output_shape})"
