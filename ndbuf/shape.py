"""Bound and stride arithmetic shared by every array type.

A bound is a tuple of per-axis extents of rank 1, 2 or 3. The matching stride
has one fewer entry than the bound. Axis 0 is always the fastest varying, so
for a rank-3 coordinate ``(c0, c1, c2)`` under stride ``(s0, s1)`` the linear
offset is ``c0 + c1*s0 + c2*s1*s0``.
"""
import numbers
import sys
from typing import Iterator, Tuple

from ndbuf.errors import InvalidShapeError

MAX_RANK = 3


def normalize_bound(bound, rank=None) -> Tuple[int, ...]:
    """Convenience function to normalize the `bound` argument."""

    if bound is None:
        raise TypeError('bound is None')

    # handle 1D convenience form
    if isinstance(bound, numbers.Integral):
        bound = (int(bound),)

    try:
        bound = tuple(int(b) for b in bound)
    except (TypeError, ValueError) as e:
        raise InvalidShapeError(bound, 'extents must be integers') from e

    if not 1 <= len(bound) <= MAX_RANK:
        raise InvalidShapeError(bound, f'rank must be between 1 and {MAX_RANK}')
    if rank is not None and len(bound) != rank:
        raise InvalidShapeError(bound, f'expected rank {rank}')
    if any(b < 0 for b in bound):
        raise InvalidShapeError(bound, 'extents must be non-negative')

    return bound


def least_stride(bound: Tuple[int, ...]) -> Tuple[int, ...]:
    """Stride under which `bound` is exactly contiguous."""
    return tuple(bound[:-1])


def bound_len(bound: Tuple[int, ...]) -> int:
    """Number of elements covered by `bound`.

    Raises
    ------
    InvalidShapeError
        If the element count is not addressable on this platform.
    """
    n = 1
    for b in bound:
        n *= b
    if n > sys.maxsize:
        raise InvalidShapeError(bound, 'element count overflows the address space')
    return n


def bound_nbytes(bound: Tuple[int, ...], itemsize: int) -> int:
    """Number of bytes needed to store `bound` with elements of `itemsize`
    bytes. Raises `InvalidShapeError` when that is not addressable."""
    nbytes = bound_len(bound) * itemsize
    if nbytes > sys.maxsize:
        raise InvalidShapeError(bound, f'byte size overflows the address space for itemsize {itemsize}')
    return nbytes


def offset(index: Tuple[int, ...], stride: Tuple[int, ...]) -> int:
    """Linear offset of coordinate `index` under `stride`."""
    off = index[0]
    step = 1
    for c, s in zip(index[1:], stride):
        step *= s
        off += c * step
    return off


def is_packed(bound: Tuple[int, ...], stride: Tuple[int, ...]) -> bool:
    return tuple(stride) == least_stride(bound)


def iter_indices(bound: Tuple[int, ...]) -> Iterator[Tuple[int, ...]]:
    """Iterate over every coordinate within `bound` in major order, i.e. with
    axis 0 varying fastest, so that least-stride offsets come out as
    ``0, 1, 2, ...``."""

    if any(b == 0 for b in bound):
        return
    idx = [0] * len(bound)
    while True:
        yield tuple(idx)
        for axis, b in enumerate(bound):
            idx[axis] += 1
            if idx[axis] < b:
                break
            idx[axis] = 0
        else:
            return


def span(bound: Tuple[int, ...], stride: Tuple[int, ...]) -> int:
    """Number of buffer elements between the first and one past the last
    element addressed by a window of `bound` laid out with `stride`."""
    if any(b == 0 for b in bound):
        return 0
    return offset(tuple(b - 1 for b in bound), stride) + 1
