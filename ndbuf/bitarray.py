"""Bit-packed boolean volumes.

A :class:`BitArray3D` stores one bit per element in 64-bit words. Element
``i`` in least-stride order lives in bit ``i % 64`` of word ``i // 64``; bits
past the last element of the final word are unspecified and never read.
Packing trades element addressability for an 8x reduction in memory, so the
only operations offered are conversions to and from byte arrays.
"""
import numbers
from typing import Tuple

import numpy as np

from ndbuf.config import config
from ndbuf.core import Array3D, ArrayViewMut
from ndbuf.dtypes import BIT_TAG
from ndbuf.errors import err_bound_mismatch, err_contract, err_not_packed
from ndbuf.serial import Header, Serializable, header_size
from ndbuf.shape import bound_len, is_packed, least_stride, normalize_bound

WORD_BITS = 64


def raw_len(n: int) -> int:
    """Number of words needed to hold `n` bits."""
    return (n + WORD_BITS - 1) // WORD_BITS


def _pack(bits: np.ndarray, nwords: int) -> np.ndarray:
    padded = np.zeros(nwords * WORD_BITS, dtype=bool)
    padded[:bits.shape[0]] = bits
    packed = np.packbits(padded, bitorder='little')
    return packed.view('<u8').astype(np.uint64)


def _unpack(words: np.ndarray, n: int) -> np.ndarray:
    raw = words.astype('<u8').view(np.uint8)
    return np.unpackbits(raw, count=n, bitorder='little')


def _normalize_nonzero_value(value) -> int:
    if value is None:
        value = config.get('bitpack.nonzero_value')
    if not isinstance(value, numbers.Integral) or not 0 <= value <= 255:
        raise ValueError(f'nonzero_value must be an integer in [0, 255], found {value!r}')
    return int(value)


class BitArray3D(Serializable):
    """Rank-3 boolean array packed into 64-bit words."""

    rank = 3

    def __init__(self, words: np.ndarray, bound: Tuple[int, ...]):
        # N.B., expect len(words) == raw_len(bound_len(bound))
        self._words = words
        self._bound = bound

    @classmethod
    def allocate_uninitialized(cls, bound):
        bound = normalize_bound(bound, cls.rank)
        return cls(np.empty(raw_len(bound_len(bound)), dtype=np.uint64), bound)

    @classmethod
    def zeros(cls, bound):
        bound = normalize_bound(bound, cls.rank)
        return cls(np.zeros(raw_len(bound_len(bound)), dtype=np.uint64), bound)

    @classmethod
    def from_dense(cls, array: Array3D):
        """Pack a tightly packed ``uint8`` array; nonzero bytes become set
        bits."""
        if not isinstance(array, Array3D):
            raise TypeError(f'expected Array3D, found {type(array).__name__}')
        if array.dtype != np.uint8:
            err_contract('expected uint8 elements, found %s', array.dtype)
        if not is_packed(array.bound, array.stride):
            err_not_packed(array.bound, array.stride)
        out = cls.allocate_uninitialized(array.bound)
        out._words[:] = _pack(array.as_slice() != 0, out.raw_len)
        return out

    @property
    def bound(self) -> Tuple[int, ...]:
        return self._bound

    @property
    def stride(self) -> Tuple[int, ...]:
        return least_stride(self._bound)

    @property
    def raw_len(self) -> int:
        return self._words.shape[0]

    @property
    def words(self) -> np.ndarray:
        out = self._words.view()
        out.flags.writeable = False
        return out

    def __len__(self):
        return bound_len(self._bound)

    def _bits(self) -> np.ndarray:
        return _unpack(self._words, len(self))

    def count_nonzero(self) -> int:
        return int(np.count_nonzero(self._bits()))

    def _expand_into(self, nonzero_value: int, out: np.ndarray):
        out[...] = np.where(self._bits().astype(bool), nonzero_value, 0)

    def to_dense(self, nonzero_value=None) -> Array3D:
        """Unpack into a new ``uint8`` array. Set bits become `nonzero_value`
        (``bitpack.nonzero_value`` from the config by default), clear bits
        become 0."""
        nonzero_value = _normalize_nonzero_value(nonzero_value)
        out = Array3D.allocate_uninitialized(self._bound, 'u1')
        self._expand_into(nonzero_value, out.as_mut_slice())
        return out

    def write_into(self, nonzero_value, target: ArrayViewMut):
        """Unpack into caller-supplied storage. `target` must be a ``uint8``
        view with this array's bound and stride."""
        nonzero_value = _normalize_nonzero_value(nonzero_value)
        if not isinstance(target, ArrayViewMut):
            raise TypeError(f'expected ArrayViewMut, found {type(target).__name__}')
        if target.bound != self._bound:
            err_bound_mismatch(self._bound, target.bound)
        if target.stride != self.stride:
            err_contract('target stride %r does not match %r', target.stride, self.stride)
        if target.dtype != np.uint8:
            err_contract('expected uint8 target, found %s', target.dtype)
        self._expand_into(nonzero_value, target.as_slice())

    def __eq__(self, other):
        return (
            isinstance(other, BitArray3D) and
            self._bound == other._bound and
            np.array_equal(self._bits(), other._bits())
        )

    __hash__ = None

    def __repr__(self):
        t = type(self)
        return f'<{t.__module__}.{t.__name__} {self._bound} words={self.raw_len}>'

    # serialization

    @classmethod
    def serial_size(cls, bound) -> int:
        bound = normalize_bound(bound, cls.rank)
        return header_size(cls.rank) + 8 * raw_len(bound_len(bound))

    @classmethod
    def deserialize(cls, reader):
        """Read one bit-packed ND record from `reader`. See
        :meth:`ndbuf.core.NDArray.deserialize` for the errors raised."""
        return cls._deserialize(reader, BIT_TAG)

    @classmethod
    def _allocate_for(cls, header: Header):
        return cls.allocate_uninitialized(header.bound)

    def _serial_tag(self) -> int:
        return BIT_TAG

    def _payload(self) -> np.ndarray:
        return self._words.view(np.uint8)

    def _payload_mut(self) -> np.ndarray:
        return self._words.view(np.uint8)
