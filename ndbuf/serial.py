"""The ND record format.

A record is a fixed header followed by a raw payload::

    offset  size     field
    0       2        magic, b'ND'
    2       1        format version, 0
    3       1        element type tag (255 for bit-packed arrays)
    4       4        rank, little-endian uint32
    8       8*rank   extents, little-endian uint64, axis 0 first
    8+8*rank         payload, tightly packed, native byte order

The payload of a dense array is its element buffer; the payload of a
bit-packed array is its 64-bit word buffer.
"""
import io
import logging
import struct
from typing import NamedTuple, Tuple

import numpy as np
from numcodecs.compat import ensure_bytes, ensure_contiguous_ndarray

from ndbuf.config import config, parse_read_size
from ndbuf.errors import (BadMagicError, ElementTypeMismatchError, InvalidShapeError, IoFailure,
                          MalformedInputError, RankMismatchError, TruncatedInputError,
                          UnsupportedVersionError)
from ndbuf.shape import MAX_RANK, bound_len, normalize_bound

logger = logging.getLogger(__name__)

MAGIC = b'ND'
FORMAT_VERSION = 0

_PREFIX = struct.Struct('<2sBBI')


class Header(NamedTuple):
    version: int
    tag: int
    rank: int
    bound: Tuple[int, ...]


def header_size(rank: int) -> int:
    return _PREFIX.size + 8 * rank


def encode_header(tag: int, bound: Tuple[int, ...]) -> bytes:
    rank = len(bound)
    return _PREFIX.pack(MAGIC, FORMAT_VERSION, tag, rank) + struct.pack(f'<{rank}Q', *bound)


def read_exact(reader, buf) -> int:
    """Fill `buf` from `reader`, retrying partial reads until `buf` is full or
    the stream reports end of data. Returns the number of bytes read.

    Raises
    ------
    IoFailure
        If the reader raises an ``OSError``.
    """
    view = memoryview(buf).cast('B')
    nbytes = len(view)
    read_size = parse_read_size(config.get('io.read_size'))
    readinto = getattr(reader, 'readinto', None)

    pos = 0
    try:
        while pos < nbytes:
            end = nbytes if read_size is None else min(nbytes, pos + read_size)
            if readinto is not None:
                n = readinto(view[pos:end])
            else:
                chunk = reader.read(end - pos)
                n = len(chunk) if chunk else 0
                view[pos:pos + n] = chunk
            if not n:
                break
            pos += n
    except OSError as e:
        raise IoFailure(f'failed to read from {reader!r} after {pos} bytes') from e
    return pos


def _read_fully(reader, nbytes: int) -> bytearray:
    buf = bytearray(nbytes)
    n = read_exact(reader, buf)
    if n != nbytes:
        raise TruncatedInputError(nbytes, n)
    return buf


def write_all(writer, data) -> int:
    """Write every byte of `data` to `writer`, looping over partial writes.

    A write that makes no progress, returning 0 or None as a non-blocking raw
    stream does when it would block, raises `IoFailure`.
    """
    view = memoryview(ensure_contiguous_ndarray(data).view('u1'))
    nbytes = len(view)
    while view:
        try:
            n = writer.write(view)
        except OSError as e:
            raise IoFailure(f'failed to write to {writer!r}') from e
        if not n:
            raise IoFailure(
                f'no progress writing to {writer!r} after {nbytes - len(view)} of {nbytes} bytes'
            )
        view = view[n:]
    return nbytes


def read_header(reader, tag=None, rank=None) -> Header:
    """Read and validate a record header.

    Parameters
    ----------
    reader : file-like
        Stream positioned at the start of a record.
    tag : int, optional
        Expected element type tag. Checked before the extents are read.
    rank : int, optional
        Expected rank. Checked before the extents are read.

    Returns
    -------
    Header
    """
    magic, version, found_tag, found_rank = _PREFIX.unpack(_read_fully(reader, _PREFIX.size))
    if magic != MAGIC:
        raise BadMagicError(magic)
    if version != FORMAT_VERSION:
        raise UnsupportedVersionError(version)
    if tag is not None and found_tag != tag:
        raise ElementTypeMismatchError(tag, found_tag)
    if rank is not None and found_rank != rank:
        raise RankMismatchError(rank, found_rank)
    if not 1 <= found_rank <= MAX_RANK:
        raise MalformedInputError(f'unsupported rank: {found_rank}')

    extents = struct.unpack(f'<{found_rank}Q', _read_fully(reader, 8 * found_rank))
    try:
        bound = normalize_bound(extents)
        bound_len(bound)
    except InvalidShapeError as e:
        raise MalformedInputError(f'invalid extents in header: {extents!r}') from e
    return Header(version, found_tag, found_rank, bound)


class Serializable:
    """Mixin implementing the ND record format for a concrete array type.

    Subclasses provide a ``rank`` class attribute, a ``bound`` property and the
    ``_serial_tag``, ``_payload``, ``_payload_mut``, ``_check_serializable`` and
    ``_allocate_for`` hooks.
    """

    rank = None

    def _serial_tag(self) -> int:
        raise NotImplementedError

    def _payload(self) -> np.ndarray:
        raise NotImplementedError

    def _payload_mut(self) -> np.ndarray:
        raise NotImplementedError

    def _check_serializable(self):
        pass

    @classmethod
    def _allocate_for(cls, header: Header):
        raise NotImplementedError

    def serialize(self, writer) -> int:
        """Write this array as one ND record. Returns the number of bytes
        written."""
        self._check_serializable()
        payload = self._payload()
        n = write_all(writer, encode_header(self._serial_tag(), self.bound))
        n += write_all(writer, payload)
        logger.debug('serialized %s %r: %d bytes', type(self).__name__, self.bound, n)
        return n

    @classmethod
    def _deserialize(cls, reader, tag):
        header = read_header(reader, tag=tag, rank=cls.rank)
        try:
            arr = cls._allocate_for(header)
        except InvalidShapeError as e:
            raise MalformedInputError(f'header extents {header.bound!r} are not allocatable') from e
        payload = arr._payload_mut()
        n = read_exact(reader, payload)
        if n != payload.nbytes:
            raise TruncatedInputError(payload.nbytes, n)
        logger.debug('deserialized %s %r: %d payload bytes', cls.__name__, header.bound, n)
        return arr

    def to_bytes(self) -> bytes:
        buf = io.BytesIO()
        self.serialize(buf)
        return buf.getvalue()

    @classmethod
    def from_bytes(cls, data, **kwargs):
        return cls.deserialize(io.BytesIO(ensure_bytes(data)), **kwargs)
