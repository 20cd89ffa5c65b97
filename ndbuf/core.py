import weakref
from typing import Tuple

import numpy as np

from ndbuf.config import config
from ndbuf.dtypes import ElementType, element_type_for_tag, normalize_element_type
from ndbuf.errors import (BorrowError, BoundsCheckError, ContractViolation,
                          ElementTypeMismatchError, InvalidShapeError, UnsupportedElementTypeError,
                          err_bound_mismatch, err_contract, err_not_packed)
from ndbuf.serial import Header, Serializable, header_size
from ndbuf.shape import bound_len, bound_nbytes, is_packed, least_stride, normalize_bound, offset, span

__all__ = ["NDArray", "Array2D", "Array3D", "ArrayView", "ArrayViewMut"]


class _Borrow:
    """A single shared or exclusive borrow of an array's buffer. Shared by a
    view and every sub-view cut from it."""

    __slots__ = ('state', 'exclusive', 'active')

    def __init__(self, state, exclusive):
        self.state = state
        self.exclusive = exclusive
        self.active = True

    def release(self):
        if not self.active:
            return
        self.active = False
        if self.state is None:
            return
        if self.exclusive:
            self.state.exclusive = False
        else:
            self.state.shared -= 1


class _BorrowState:
    """Runtime single-writer/multiple-reader bookkeeping for one buffer."""

    __slots__ = ('shared', 'exclusive')

    def __init__(self):
        self.shared = 0
        self.exclusive = False

    def acquire(self, exclusive: bool) -> _Borrow:
        if not config.get('borrow.check'):
            return _Borrow(None, exclusive)
        self.check_readable()
        if exclusive:
            self.check_writable()
            self.exclusive = True
        else:
            self.shared += 1
        return _Borrow(self, exclusive)

    def check_readable(self):
        if self.exclusive and config.get('borrow.check'):
            raise BorrowError('array is mutably borrowed')

    def check_writable(self):
        if not config.get('borrow.check'):
            return
        self.check_readable()
        if self.shared:
            raise BorrowError(f'array is borrowed by {self.shared} live view(s)')


def _normalize_coord(coord, rank, what):
    try:
        return normalize_bound(coord, rank)
    except InvalidShapeError as e:
        raise ContractViolation(f'invalid {what} coordinate: {e}') from e


class ArrayView:
    """Shared, read-only window onto the buffer of an owning array.

    Views are obtained from :meth:`NDArray.as_view` or cut from another view
    with :meth:`view`; they are not instantiated directly. A view is live until
    :meth:`release` is called, the ``with`` block it was entered in ends, or it
    is garbage collected. Sub-views share the borrow of the view they were cut
    from.
    """

    _writeable = False

    def __init__(self, data: np.ndarray, base: int, bound: Tuple[int, ...],
                 stride: Tuple[int, ...], element_type: ElementType, borrow: _Borrow,
                 parent=None):
        self._data = data
        self._base = base
        self._bound = bound
        self._stride = stride
        self._element_type = element_type
        self._borrow = borrow
        # keeps the root view, and so the borrow, alive
        self._parent = parent
        if parent is None:
            weakref.finalize(self, borrow.release)

    @property
    def bound(self) -> Tuple[int, ...]:
        return self._bound

    @property
    def stride(self) -> Tuple[int, ...]:
        return self._stride

    @property
    def rank(self) -> int:
        return len(self._bound)

    @property
    def dtype(self) -> np.dtype:
        return self._element_type.dtype

    @property
    def element_type(self) -> ElementType:
        return self._element_type

    @property
    def is_packed(self) -> bool:
        return is_packed(self._bound, self._stride)

    @property
    def is_live(self) -> bool:
        return self._borrow.active

    def __len__(self):
        return bound_len(self._bound)

    def release(self):
        """End the borrow this view belongs to. Every view sharing the borrow
        becomes unusable."""
        self._borrow.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()

    def _check_live(self):
        if not self._borrow.active:
            raise BorrowError('view used after its borrow was released')

    def _element_offset(self, index) -> int:
        if not isinstance(index, tuple):
            index = (index,)
        if len(index) != self.rank:
            raise IndexError(f'expected {self.rank} indices, got {len(index)}')
        coord = []
        for c, dim_len in zip(index, self._bound):
            c = int(c)
            # handle wraparound
            if c < 0:
                c = dim_len + c
            if c >= dim_len or c < 0:
                raise BoundsCheckError(dim_len)
            coord.append(c)
        return self._base + offset(tuple(coord), self._stride)

    def __getitem__(self, index):
        self._check_live()
        return self._data[self._element_offset(index)]

    def as_slice(self) -> np.ndarray:
        """Flat NumPy view of the elements of a tightly packed view."""
        self._check_live()
        if not self.is_packed:
            err_not_packed(self._bound, self._stride)
        out = self._data[self._base:self._base + len(self)]
        if not self._writeable:
            out = out.view()
            out.flags.writeable = False
        return out

    def to_numpy(self) -> np.ndarray:
        """NumPy view with ``shape == bound``. Axis 0 is the fastest varying
        axis, so the result is Fortran-ordered when the view is packed."""
        self._check_live()
        itemsize = self.dtype.itemsize
        strides = [itemsize]
        for s in self._stride:
            strides.append(strides[-1] * s)
        return np.lib.stride_tricks.as_strided(self._data[self._base:], shape=self._bound,
                                               strides=tuple(strides),
                                               writeable=self._writeable)

    def _subview(self, lo, hi, cls):
        self._check_live()
        if not self.is_packed:
            err_contract('sub-viewing a strided view is unsupported; bound %r, stride %r',
                         self._bound, self._stride)
        lo = _normalize_coord(lo, self.rank, 'lower')
        hi = _normalize_coord(hi, self.rank, 'upper')
        if not all(l <= h <= b for l, h, b in zip(lo, hi, self._bound)):
            err_contract('sub-view [%r, %r) is not within bound %r', lo, hi, self._bound)
        bound = tuple(h - l for l, h in zip(lo, hi))
        base = self._base + offset(lo, self._stride)
        extent = span(bound, self._stride)
        if extent and base + extent > self._data.shape[0]:
            err_contract('sub-view [%r, %r) addresses past the end of the buffer', lo, hi)
        return cls(self._data, base, bound, self._stride, self._element_type, self._borrow,
                   parent=self)

    def view(self, lo, hi) -> 'ArrayView':
        """Shared sub-view covering ``[lo, hi)`` on every axis. The stride is
        kept; only the visible window and base offset change."""
        return self._subview(lo, hi, ArrayView)

    def __repr__(self):
        t = type(self)
        return f'<{t.__module__}.{t.__name__} {self._bound} {self.dtype} stride={self._stride}>'


class ArrayViewMut(ArrayView):
    """Exclusive, writable window onto the buffer of an owning array."""

    _writeable = True

    def __setitem__(self, index, value):
        self._check_live()
        self._data[self._element_offset(index)] = value

    def view_mut(self, lo, hi) -> 'ArrayViewMut':
        """Writable sub-view covering ``[lo, hi)`` on every axis.

        The parent must be tightly packed and ``lo <= hi <= bound`` must hold on
        every axis. Writes through the sub-view are visible through the parent.
        """
        return self._subview(lo, hi, ArrayViewMut)

    def copy_from(self, src: ArrayView):
        """Bulk copy every element of `src` into this view.

        Both views must have the same bound and dtype, this view must be
        tightly packed and both must share the same stride. Strided copies are
        not supported.
        """
        self._check_live()
        src._check_live()
        if src.bound != self._bound:
            err_bound_mismatch(self._bound, src.bound)
        if src.dtype != self.dtype:
            err_contract('dtype mismatch; expected %s, found %s', self.dtype, src.dtype)
        if not (self.is_packed and src.stride == self._stride):
            err_contract('strided copy is unsupported; destination stride %r, source stride %r',
                         self._stride, src.stride)
        np.copyto(self.as_slice(), src.as_slice())

    def fill(self, value):
        """Write `value` into every element of the window. Works on strided
        sub-views too."""
        self.to_numpy()[...] = value


class NDArray(Serializable):
    """Owning, tightly packed dense array of rank :attr:`rank`.

    The buffer is a flat, contiguous, native byte order NumPy array of
    ``bound_len(bound)`` elements, laid out with axis 0 varying fastest.
    Element access goes through views (:meth:`as_view`, :meth:`as_view_mut`)
    or directly through the flat buffer (:meth:`as_slice`,
    :meth:`as_mut_slice`).
    """

    rank = None

    def __init__(self, data: np.ndarray, bound: Tuple[int, ...], element_type: ElementType):
        # N.B., expect data flat, contiguous and of exactly bound_len(bound) elements
        self._data = data
        self._bound = bound
        self._stride = least_stride(bound)
        self._element_type = element_type
        self._borrows = _BorrowState()

    @classmethod
    def allocate_uninitialized(cls, bound, dtype='f4'):
        """Allocate an array without initializing its elements.

        The contents are arbitrary until written. Only use this when the whole
        buffer is about to be filled, as deserialization does; prefer
        :meth:`zeros` otherwise.
        """
        bound = normalize_bound(bound, cls.rank)
        element_type = normalize_element_type(dtype)
        bound_nbytes(bound, element_type.itemsize)
        return cls(np.empty(bound_len(bound), dtype=element_type.dtype), bound, element_type)

    @classmethod
    def zeros(cls, bound, dtype='f4'):
        bound = normalize_bound(bound, cls.rank)
        element_type = normalize_element_type(dtype)
        bound_nbytes(bound, element_type.itemsize)
        return cls(np.zeros(bound_len(bound), dtype=element_type.dtype), bound, element_type)

    @classmethod
    def from_data(cls, data, bound, dtype=None):
        """Create an array from a flat sequence of elements in least-stride
        order. The data are copied."""
        bound = normalize_bound(bound, cls.rank)
        if dtype is None:
            data = np.asarray(data)
            dtype = data.dtype
        element_type = normalize_element_type(dtype)
        data = np.array(data, dtype=element_type.dtype, order='C', copy=True)
        if data.ndim != 1:
            err_contract('expected flat data, found %d dimensions', data.ndim)
        if data.shape[0] != bound_len(bound):
            err_contract('data length %d does not match bound %r', data.shape[0], bound)
        return cls(data, bound, element_type)

    @property
    def bound(self) -> Tuple[int, ...]:
        return self._bound

    @property
    def stride(self) -> Tuple[int, ...]:
        return self._stride

    @property
    def dtype(self) -> np.dtype:
        return self._element_type.dtype

    @property
    def element_type(self) -> ElementType:
        return self._element_type

    @property
    def nbytes(self) -> int:
        return self._data.nbytes

    def __len__(self):
        return bound_len(self._bound)

    def as_view(self) -> ArrayView:
        borrow = self._borrows.acquire(exclusive=False)
        return ArrayView(self._data, 0, self._bound, self._stride, self._element_type, borrow)

    def as_view_mut(self) -> ArrayViewMut:
        borrow = self._borrows.acquire(exclusive=True)
        return ArrayViewMut(self._data, 0, self._bound, self._stride, self._element_type, borrow)

    def as_slice(self) -> np.ndarray:
        self._borrows.check_readable()
        out = self._data.view()
        out.flags.writeable = False
        return out

    def as_mut_slice(self) -> np.ndarray:
        """Writable flat view of the whole buffer. Must not be held on to while
        views of this array are in use."""
        self._borrows.check_writable()
        return self._data

    def copy(self):
        self._borrows.check_readable()
        return type(self)(self._data.copy(), self._bound, self._element_type)

    def __eq__(self, other):
        return (
            isinstance(other, type(self)) and
            self._bound == other._bound and
            self.dtype == other.dtype and
            np.array_equal(self._data, other._data)
        )

    __hash__ = None

    def __repr__(self):
        t = type(self)
        return f'<{t.__module__}.{t.__name__} {self._bound} {self.dtype}>'

    # serialization

    @classmethod
    def serial_size(cls, bound, dtype='f4') -> int:
        """Exact number of bytes :meth:`serialize` writes for an array of
        `bound` and `dtype`."""
        bound = normalize_bound(bound, cls.rank)
        return header_size(cls.rank) + bound_nbytes(bound, normalize_element_type(dtype).itemsize)

    @classmethod
    def deserialize(cls, reader, dtype=None):
        """Read one ND record from `reader`.

        Parameters
        ----------
        reader : file-like
            Binary stream supporting ``readinto`` or ``read``.
        dtype : string or dtype, optional
            Expected element type. If given the record's element type tag must
            match it; if omitted any registered dense element type is accepted.

        Raises
        ------
        MalformedInputError
            If the header does not describe an array of this type or the
            payload is truncated. Raised before the payload is allocated when
            the header is at fault.
        IoFailure
            If reading from `reader` fails.
        """
        tag = None if dtype is None else normalize_element_type(dtype).tag
        return cls._deserialize(reader, tag)

    @classmethod
    def _allocate_for(cls, header: Header):
        try:
            element_type = element_type_for_tag(header.tag)
        except UnsupportedElementTypeError:
            raise ElementTypeMismatchError('a dense element type', header.tag) from None
        return cls.allocate_uninitialized(header.bound, element_type)

    def _check_serializable(self):
        if not is_packed(self._bound, self._stride):
            err_not_packed(self._bound, self._stride)
        self._borrows.check_readable()

    def _serial_tag(self) -> int:
        return self._element_type.tag

    def _payload(self) -> np.ndarray:
        return self._data.view(np.uint8)

    def _payload_mut(self) -> np.ndarray:
        return self._data.view(np.uint8)


class Array2D(NDArray):
    """Owning dense array of rank 2."""

    rank = 2


class Array3D(NDArray):
    """Owning dense array of rank 3."""

    rank = 3
