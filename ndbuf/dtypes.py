"""Element types that can be stored in dense arrays and tagged on the wire."""
import inspect
from typing import Dict, NamedTuple

import numpy as np

from ndbuf.errors import UnsupportedElementTypeError

BIT_TAG = 255


class ElementType(NamedTuple):
    """A serial tag paired with a fixed-width, native byte order dtype."""

    tag: int
    dtype: np.dtype

    @property
    def itemsize(self) -> int:
        return self.dtype.itemsize

    def __repr__(self):
        return f"ElementType(tag={self.tag}, dtype={self.dtype})"


_by_tag: Dict[int, ElementType] = {}
_by_dtype: Dict[np.dtype, ElementType] = {}


def _to_native(dtype) -> np.dtype:
    if inspect.isclass(dtype) and not issubclass(dtype, np.generic):
        dtype = dtype.__name__
    dtype = np.dtype(dtype)
    return dtype.newbyteorder('=')


def register_element_type(dtype, tag: int) -> ElementType:
    """Declare `dtype` storable in dense arrays under serial `tag`.

    Parameters
    ----------
    dtype : string, type or dtype
        Fixed-width NumPy dtype. Stored in native byte order.
    tag : int
        Element type tag written into serialized headers. Must fit a byte and
        must not be the tag reserved for bit-packed arrays.
    """
    dtype = _to_native(dtype)
    tag = int(tag)
    if not 0 <= tag < BIT_TAG:
        raise ValueError(f'element type tag must be in [0, {BIT_TAG}), found {tag}')
    if dtype.hasobject or dtype.itemsize == 0 or dtype.kind in 'SUV':
        raise ValueError(f'dtype {dtype} does not have a fixed numeric width')

    et = ElementType(tag, dtype)
    if _by_tag.get(tag, et) != et or _by_dtype.get(dtype, et) != et:
        raise ValueError(f'conflicting registration for tag {tag} and dtype {dtype}')
    _by_tag[tag] = et
    _by_dtype[dtype] = et
    return et


def normalize_element_type(dtype) -> ElementType:
    if isinstance(dtype, ElementType):
        return dtype
    try:
        native = _to_native(dtype)
    except TypeError as e:
        raise UnsupportedElementTypeError(dtype) from e
    try:
        return _by_dtype[native]
    except KeyError:
        raise UnsupportedElementTypeError(dtype) from None


def element_type_for_tag(tag: int) -> ElementType:
    try:
        return _by_tag[tag]
    except KeyError:
        raise UnsupportedElementTypeError(f'tag {tag}') from None


UINT8 = register_element_type('u1', 0)
FLOAT32 = register_element_type('f4', 1)
