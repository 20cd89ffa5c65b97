"""Convenience functions for storing and loading single arrays as files."""
import logging
import os
import uuid

from ndbuf.bitarray import BitArray3D
from ndbuf.core import Array2D, Array3D
from ndbuf.dtypes import BIT_TAG
from ndbuf.errors import MalformedInputError
from ndbuf.serial import read_header

__all__ = ["save", "load"]

logger = logging.getLogger(__name__)


def save(path, array):
    """Write `array` to the file at `path` as a single ND record.

    The record is written to a temporary file in the same directory which is
    then moved into place, so readers never observe a partially written file.

    Parameters
    ----------
    path : str or path-like
        Destination file.
    array : Array2D, Array3D or BitArray3D
        Array to store.

    Examples
    --------
    >>> import ndbuf
    >>> a = ndbuf.Array2D.zeros((3, 4))
    >>> ndbuf.save('data/example.nd', a)
    >>> ndbuf.load('data/example.nd') == a
    True
    """
    file_path = os.fspath(path)
    dir_path, file_name = os.path.split(os.path.abspath(file_path))

    # note we're not using tempfile.NamedTemporaryFile to avoid restrictive file permissions
    temp_path = os.path.join(dir_path, file_name + "." + uuid.uuid4().hex + ".partial")
    try:
        with open(temp_path, mode="wb") as f:
            n = array.serialize(f)
        os.replace(temp_path, file_path)
    finally:
        # clean up if temp file still exists for whatever reason
        if os.path.exists(temp_path):
            os.remove(temp_path)
    logger.debug('saved %r to %s (%d bytes)', array, file_path, n)


def _array_class_for(header):
    if header.tag == BIT_TAG:
        if header.rank == BitArray3D.rank:
            return BitArray3D
    elif header.rank == Array2D.rank:
        return Array2D
    elif header.rank == Array3D.rank:
        return Array3D
    raise MalformedInputError(
        f'no array type for rank {header.rank} with element type tag {header.tag}'
    )


def load(path):
    """Load the array stored in the file at `path`.

    The array type is chosen from the record header: a bit-packed record loads
    as :class:`BitArray3D`, dense records load as :class:`Array2D` or
    :class:`Array3D` according to their rank.

    Raises
    ------
    MalformedInputError
        If the file does not hold a valid ND record.
    """
    file_path = os.fspath(path)
    with open(file_path, mode="rb") as f:
        cls = _array_class_for(read_header(f))
        f.seek(0)
        array = cls.deserialize(f)
    logger.debug('loaded %r from %s', array, file_path)
    return array
