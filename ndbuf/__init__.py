# flake8: noqa
from ndbuf.bitarray import BitArray3D
from ndbuf.config import config
from ndbuf.convenience import load, save
from ndbuf.core import Array2D, Array3D, ArrayView, ArrayViewMut, NDArray
from ndbuf.dtypes import (BIT_TAG, FLOAT32, UINT8, ElementType, normalize_element_type,
                          register_element_type)
from ndbuf.errors import (BorrowError, BoundsCheckError, ContractViolation, InvalidShapeError,
                          IoFailure, MalformedInputError)
from ndbuf.serial import read_header
from ndbuf.shape import bound_len, iter_indices, least_stride, offset
from ndbuf.version import version as __version__
