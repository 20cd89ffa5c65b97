"""
The config module holds the runtime configuration of ndbuf and is based on the Donfig python
library.

Values can be set programmatically or through environment variables. For example the default
value written for set bits by :meth:`ndbuf.bitarray.BitArray3D.to_dense` can be changed with

    ```python
    from ndbuf.config import config

    config.set({"bitpack.nonzero_value": 255})
    ```

or, equivalently, by exporting ``NDBUF_BITPACK__NONZERO_VALUE=255``. The double underscore
``__`` is used to indicate nested access.

For more information, see the Donfig documentation at https://github.com/pytroll/donfig.
"""
from donfig import Config as DConfig


class BadConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


class Config(DConfig):
    """The Config will collect configuration from config files and environment variables

    Example environment variables:
    Grabs environment variables of the form "NDBUF_FOO__BAR_BAZ=123" and
    turns these into config variables of the form ``{"foo": {"bar-baz": 123}}``
    It transforms the key and value in the following way:

    -  Lower-cases the key text
    -  Treats ``__`` (double-underscore) as nested access
    -  Calls ``ast.literal_eval`` on the value

    """

    def reset(self) -> None:
        self.clear()
        self.refresh()


# The default configuration for ndbuf
config = Config(
    "ndbuf",
    defaults=[
        {
            "borrow": {"check": True},
            "bitpack": {"nonzero_value": 1},
            "io": {"read_size": None},
        }
    ],
)


def parse_read_size(data) -> "int | None":
    if data is None:
        return None
    if isinstance(data, int) and not isinstance(data, bool) and data > 0:
        return data
    raise BadConfigError(f"Expected a positive int or None for io.read_size, got {data!r}")
