import io
import struct
import sys

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from ndbuf.bitarray import BitArray3D
from ndbuf.config import config
from ndbuf.core import Array2D, Array3D
from ndbuf.errors import (BadMagicError, ContractViolation, ElementTypeMismatchError,
                          InvalidShapeError, IoFailure, MalformedInputError, RankMismatchError,
                          TruncatedInputError, UnsupportedVersionError)
from ndbuf.serial import Header, encode_header, header_size, read_exact, read_header, write_all


def test_header_size():
    assert 24 == header_size(2)
    assert 32 == header_size(3)


def test_encode_header_layout():
    h = encode_header(1, (3, 4))
    assert 24 == len(h)
    assert b'ND\x00\x01' == h[:4]
    assert 0x0000444e | (1 << 24) == struct.unpack('<I', h[:4])[0]
    assert 2 == struct.unpack('<I', h[4:8])[0]
    assert (3, 4) == struct.unpack('<2Q', h[8:])


def test_serialized_layout_float32():
    a = Array2D.zeros((3, 4), dtype='f4')
    with a.as_view_mut() as v:
        v[1, 2] = 7.0
    data = a.to_bytes()
    assert Array2D.serial_size((3, 4), 'f4') == len(data)
    assert 24 + 48 == len(data)
    assert b'N' == data[0:1]
    assert b'D' == data[1:2]
    assert 0 == data[2]
    assert 1 == data[3]
    payload = np.frombuffer(data[24:], dtype='f4')
    assert 7.0 == payload[7]
    assert 1 == np.count_nonzero(payload)


def test_serialized_layout_bitarray():
    bits = BitArray3D.zeros((10, 10, 1))
    data = bits.to_bytes()
    assert BitArray3D.serial_size((10, 10, 1)) == len(data)
    assert 32 + 16 == len(data)
    assert b'ND\x00\xff' == data[:4]
    assert 3 == struct.unpack('<I', data[4:8])[0]
    assert (10, 10, 1) == struct.unpack('<3Q', data[8:32])


@pytest.mark.parametrize('cls,bound', [
    (Array2D, (3, 4)),
    (Array2D, (1, 1)),
    (Array2D, (0, 5)),
    (Array3D, (2, 3, 4)),
    (Array3D, (7, 1, 9)),
])
@pytest.mark.parametrize('dtype', ['u1', 'f4'])
def test_round_trip(cls, bound, dtype):
    n = int(np.prod(bound))
    a = cls.from_data(np.arange(n).astype(dtype), bound)
    buf = io.BytesIO()
    written = a.serialize(buf)
    assert cls.serial_size(bound, dtype) == written == len(buf.getvalue())
    buf.seek(0)
    b = cls.deserialize(buf, dtype=dtype)
    assert a == b
    assert buf.read() == b''


def test_round_trip_infers_dtype():
    a = Array3D.from_data(np.linspace(0, 1, 24, dtype='f4'), (2, 3, 4))
    b = Array3D.from_bytes(a.to_bytes())
    assert np.dtype('f4') == b.dtype
    assert a == b


@pytest.mark.parametrize('bound', [(1, 1, 1), (2, 2, 2), (64, 1, 1), (5, 7, 3), (0, 3, 3)])
def test_bitarray_round_trip(bound):
    rng = np.random.default_rng(0)
    n = int(np.prod(bound))
    dense = Array3D.from_data((rng.random(n) < 0.5).astype('u1'), bound)
    bits = BitArray3D.from_dense(dense)
    data = bits.to_bytes()
    assert BitArray3D.serial_size(bound) == len(data)
    out = BitArray3D.from_bytes(data)
    assert bits == out
    assert dense == out.to_dense(1)


def test_multiple_records_in_one_stream():
    a = Array2D.from_data(np.arange(6, dtype='f4'), (2, 3))
    b = Array3D.from_data(np.arange(8, dtype='u1'), (2, 2, 2))
    c = BitArray3D.from_dense(b)
    buf = io.BytesIO()
    a.serialize(buf)
    b.serialize(buf)
    c.serialize(buf)
    buf.seek(0)
    assert a == Array2D.deserialize(buf)
    assert b == Array3D.deserialize(buf)
    assert c == BitArray3D.deserialize(buf)


def test_partial_reads(trickle_reader):
    a = Array3D.from_data(np.arange(60, dtype='f4'), (3, 4, 5))
    assert a == Array3D.deserialize(trickle_reader(a.to_bytes(), step=7))


def test_read_size_config():
    a = Array2D.from_data(np.arange(100, dtype='f4'), (10, 10))

    class CountingReader(io.BytesIO):
        calls = 0

        def readinto(self, b):
            CountingReader.calls += 1
            return super().readinto(b)

    with config.set({'io.read_size': 16}):
        b = Array2D.deserialize(CountingReader(a.to_bytes()))
    assert a == b
    assert CountingReader.calls >= 400 // 16


def test_reader_without_readinto():

    class ReadOnly:
        def __init__(self, data):
            self._buf = io.BytesIO(data)

        def read(self, n):
            return self._buf.read(min(n, 5))

    a = Array2D.from_data(np.arange(12, dtype='u1'), (3, 4))
    assert a == Array2D.deserialize(ReadOnly(a.to_bytes()))


class TestMalformedInput:

    def record(self):
        return bytearray(Array3D.from_data(np.arange(24, dtype='u1'), (2, 3, 4)).to_bytes())

    def test_bad_magic(self):
        data = self.record()
        data[1] = ord('X')
        with pytest.raises(BadMagicError):
            Array3D.from_bytes(data)

    def test_bad_version(self):
        data = self.record()
        data[2] = 1
        with pytest.raises(UnsupportedVersionError):
            Array3D.from_bytes(data)

    def test_element_type_mismatch(self):
        data = self.record()
        with pytest.raises(ElementTypeMismatchError):
            Array3D.from_bytes(data, dtype='f4')
        with pytest.raises(ElementTypeMismatchError):
            BitArray3D.from_bytes(data)

    def test_bit_record_is_not_dense(self):
        data = BitArray3D.zeros((2, 2, 2)).to_bytes()
        with pytest.raises(ElementTypeMismatchError):
            Array3D.from_bytes(data)
        with pytest.raises(ElementTypeMismatchError):
            Array3D.from_bytes(data, dtype='u1')

    def test_unknown_tag(self):
        data = self.record()
        data[3] = 200
        with pytest.raises(ElementTypeMismatchError):
            Array3D.from_bytes(data)

    def test_rank_mismatch(self):
        with pytest.raises(RankMismatchError):
            Array2D.from_bytes(self.record())
        data = Array2D.zeros((2, 2)).to_bytes()
        with pytest.raises(RankMismatchError):
            Array3D.from_bytes(data)

    def test_truncated_header(self):
        with pytest.raises(TruncatedInputError):
            Array3D.from_bytes(self.record()[:20])
        with pytest.raises(TruncatedInputError):
            Array3D.from_bytes(b'')

    def test_truncated_payload(self):
        with pytest.raises(TruncatedInputError):
            Array3D.from_bytes(self.record()[:-1])
        data = BitArray3D.zeros((10, 10, 10)).to_bytes()
        with pytest.raises(TruncatedInputError):
            BitArray3D.from_bytes(data[:-3])

    def test_errors_are_malformed_input(self):
        data = self.record()
        data[0] = 0
        with pytest.raises(MalformedInputError):
            Array3D.from_bytes(data)
        with pytest.raises(ValueError):
            Array3D.from_bytes(data)

    def test_huge_extents_fail_before_allocation(self):
        data = encode_header(0, (2 ** 40, 2 ** 40, 2 ** 40))
        with pytest.raises(MalformedInputError):
            Array3D.from_bytes(data)

    def test_extents_overflowing_byte_size_fail_before_allocation(self):
        # element count fits in the address space, float32 byte size does not
        data = encode_header(1, (2 ** 31, 2 ** 31, 1))
        with pytest.raises(MalformedInputError) as excinfo:
            Array3D.from_bytes(data)
        assert isinstance(excinfo.value.__cause__, InvalidShapeError)
        with pytest.raises(MalformedInputError):
            Array3D.deserialize(io.BytesIO(data), dtype='f4')

    def test_huge_but_valid_extents_fail_on_payload(self):
        # header passes, payload is missing; the read loop stops at end of stream
        data = encode_header(0, (1024, 1024, 16))
        with pytest.raises(TruncatedInputError):
            Array3D.from_bytes(data)

    def test_io_failure(self, failing_reader):
        with pytest.raises(IoFailure) as excinfo:
            Array3D.deserialize(failing_reader(self.record()[:40]))
        assert isinstance(excinfo.value.__cause__, OSError)


def test_read_header():
    data = Array2D.zeros((3, 4), dtype='u1').to_bytes()
    assert Header(0, 0, 2, (3, 4)) == read_header(io.BytesIO(data))
    assert Header(0, 0, 2, (3, 4)) == read_header(io.BytesIO(data), tag=0, rank=2)


def test_read_header_unsupported_rank():
    data = bytearray(encode_header(0, (1, 1, 1)))
    data[4] = 4
    with pytest.raises(MalformedInputError):
        read_header(io.BytesIO(bytes(data) + bytes(8)))


def test_read_exact_stops_at_eof():
    buf = bytearray(10)
    assert 4 == read_exact(io.BytesIO(b'abcd'), buf)
    assert b'abcd' == bytes(buf[:4])


def test_write_all_partial_writes():

    class TrickleWriter:
        def __init__(self):
            self.chunks = []

        def write(self, b):
            chunk = bytes(b[:3])
            self.chunks.append(chunk)
            return len(chunk)

    w = TrickleWriter()
    assert 10 == write_all(w, b'0123456789')
    assert b'0123456789' == b''.join(w.chunks)
    assert 4 == len(w.chunks)


def test_write_failure():

    class BrokenWriter:
        def write(self, b):
            raise OSError('disk full')

    with pytest.raises(IoFailure):
        Array2D.zeros((2, 2)).serialize(BrokenWriter())


def test_payload_is_native_order():
    a = Array2D.from_data(np.array([1.5, -2.0, 3.25, 0.0], dtype='f4'), (2, 2))
    payload = a.to_bytes()[24:]
    assert np.array([1.5, -2.0, 3.25, 0.0], dtype='=f4').tobytes() == payload
    if sys.byteorder == 'little':
        assert struct.pack('<4f', 1.5, -2.0, 3.25, 0.0) == payload


def test_from_bytes_accepts_buffers():
    a = Array2D.from_data(np.arange(4, dtype='u1'), (2, 2))
    data = a.to_bytes()
    assert a == Array2D.from_bytes(memoryview(data))
    assert a == Array2D.from_bytes(np.frombuffer(data, dtype='u1'))
    assert_array_equal(a.as_slice(), Array2D.from_bytes(bytearray(data)).as_slice())


def test_write_all_stalled_writer():

    class StalledWriter:
        def __init__(self):
            self.calls = 0

        def write(self, b):
            self.calls += 1
            if self.calls > 1:
                return 0
            return 4

    w = StalledWriter()
    with pytest.raises(IoFailure) as excinfo:
        write_all(w, b'0123456789')
    assert 'after 4 of 10 bytes' in str(excinfo.value)
    assert 2 == w.calls


def test_write_all_non_blocking_raw_writer():

    class WouldBlockWriter(io.RawIOBase):
        def writable(self):
            return True

        def write(self, b):
            # non-blocking raw streams return None when no bytes could be written
            return None

    with pytest.raises(IoFailure):
        write_all(WouldBlockWriter(), b'0123456789')
    with pytest.raises(IoFailure):
        Array2D.zeros((2, 2)).serialize(WouldBlockWriter())


def test_write_all_empty_data_does_not_write():

    class StalledWriter:
        def write(self, b):
            return 0

    assert 0 == write_all(StalledWriter(), b'')
