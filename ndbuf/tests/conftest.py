import io
from pathlib import Path

import pytest

from ndbuf.config import config


@pytest.fixture(autouse=True)
def reset_config():
    config.reset()
    yield
    config.reset()


class TrickleReader(io.RawIOBase):
    """Raw stream that hands out at most `step` bytes per read call."""

    def __init__(self, data, step=3):
        self._buf = io.BytesIO(data)
        self.step = step

    def readable(self):
        return True

    def readinto(self, b):
        chunk = self._buf.read(min(len(b), self.step))
        b[:len(chunk)] = chunk
        return len(chunk)


class FailingReader:
    """Stream that returns `data` and then fails."""

    def __init__(self, data):
        self._buf = io.BytesIO(data)

    def read(self, n):
        chunk = self._buf.read(n)
        if not chunk:
            raise OSError('device went away')
        return chunk


@pytest.fixture
def trickle_reader():
    return TrickleReader


@pytest.fixture
def failing_reader():
    return FailingReader


@pytest.fixture(params=[str, Path])
def path_type(request):
    return request.param
