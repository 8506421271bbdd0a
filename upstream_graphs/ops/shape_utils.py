import math
from typing import List, Optional, Sequence, Tuple

from ..ir.dtypes import Shape, is_static
from ..ir.errors import UnsupportedPattern


def normalize_axis(axis: int, rank: int) -> int:
    """Maps a possibly negative axis into [0, rank)."""
    if not -rank <= axis < rank:
        raise UnsupportedPattern(f"Axis {axis} out of range for rank {rank}")
    return axis + rank if axis < 0 else axis


def aligned_axis(axis: int, output_rank: int, input_rank: int) -> Optional[int]:
    """
    Position of output ``axis`` in an operand of ``input_rank`` under
    right-aligned (numpy) broadcasting. None if the operand has no such dim.
    """
    position = axis - (output_rank - input_rank)
    return position if position >= 0 else None


def broadcast_shapes(*shapes: Shape) -> Shape:
    """Broadcasts shapes according to numpy rules."""
    out_ndim = max(len(s) for s in shapes)
    result: List[Optional[int]] = [1] * out_ndim
    for shape in shapes:
        padded = (1,) * (out_ndim - len(shape)) + tuple(shape)
        for i, dim in enumerate(padded):
            current = result[i]
            if dim == 1:
                continue
            if current == 1:
                result[i] = dim
            elif current is None or dim is None:
                result[i] = current if dim is None else dim
            elif current != dim:
                raise UnsupportedPattern(f"Incompatible broadcast of {shapes}")
    return tuple(result)


def resolve_reshape(
    input_shape: Shape, spec: Sequence[int], allowzero: bool = False
) -> Tuple[int, ...]:
    """
    Resolves a reshape spec against a static input shape: ``0`` copies the
    input dim at the same position, ``-1`` is inferred from the element count.
    """
    if not is_static(input_shape):
        raise UnsupportedPattern(f"Reshape of dynamic shape {input_shape}")
    total = math.prod(input_shape)

    resolved: List[int] = []
    infer_at = None
    for i, dim in enumerate(spec):
        dim = int(dim)
        if dim == -1:
            if infer_at is not None:
                raise UnsupportedPattern(f"Multiple -1 in reshape spec {list(spec)}")
            infer_at = i
            resolved.append(1)
        elif dim == 0 and not allowzero:
            if i >= len(input_shape):
                raise UnsupportedPattern(f"Spec {list(spec)} copies a missing dim")
            resolved.append(input_shape[i])
        elif dim < 0:
            raise UnsupportedPattern(f"Invalid reshape dim {dim}")
        else:
            resolved.append(dim)

    known = math.prod(resolved)
    if infer_at is not None:
        if known == 0 or total % known != 0:
            raise UnsupportedPattern(
                f"Cannot infer -1 in {list(spec)} for {tuple(input_shape)}"
            )
        resolved[infer_at] = total // known
    elif known != total:
        raise UnsupportedPattern(
            f"Reshape spec {list(spec)} does not match {tuple(input_shape)}"
        )
    return tuple(resolved)


def preserved_trailing_dims(input_shape: Shape, output_shape: Shape) -> int:
    """Number of trailing dims shared verbatim by both shapes."""
    count = 0
    limit = min(len(input_shape), len(output_shape))
    while count < limit and input_shape[-1 - count] == output_shape[-1 - count]:
        count += 1
    return count


def preserved_leading_dims(input_shape: Shape, output_shape: Shape) -> int:
    """Number of leading dims shared verbatim by both shapes."""
    count = 0
    limit = min(len(input_shape), len(output_shape))
    while count < limit and input_shape[count] == output_shape[count]:
        count += 1
    return count
