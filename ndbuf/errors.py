class _BaseNdError(ValueError):
    _msg = ""

    def __init__(self, *args):
        super().__init__(self._msg.format(*args))


class InvalidShapeError(_BaseNdError):
    _msg = "invalid bound {0!r}: {1}"


class UnsupportedElementTypeError(_BaseNdError):
    _msg = "unsupported element type {0!r}; register it with register_element_type()"


class ContractViolation(AssertionError):
    pass


class BorrowError(RuntimeError):
    pass


class BoundsCheckError(IndexError):
    def __init__(self, dim_len):
        super().__init__(f"index out of bounds for dimension with length {dim_len}")


class MalformedInputError(ValueError):
    pass


class _BaseMalformedInputError(MalformedInputError):
    _msg = ""

    def __init__(self, *args):
        super().__init__(self._msg.format(*args))


class BadMagicError(_BaseMalformedInputError):
    _msg = "bad magic bytes; expected b'ND', found {0!r}"


class UnsupportedVersionError(_BaseMalformedInputError):
    _msg = "unsupported format version: {0}"


class ElementTypeMismatchError(_BaseMalformedInputError):
    _msg = "element type tag mismatch; expected {0}, found {1}"


class RankMismatchError(_BaseMalformedInputError):
    _msg = "rank mismatch; expected {0}, found {1}"


class TruncatedInputError(_BaseMalformedInputError):
    _msg = "truncated input; expected {0} bytes, read {1}"


class IoFailure(OSError):
    pass


def err_contract(msg, *args):
    raise ContractViolation(msg % args if args else msg)


def err_bound_mismatch(expected, actual):
    raise ContractViolation(f"bound mismatch; expected {expected!r}, found {actual!r}")


def err_not_packed(bound, stride):
    raise ContractViolation(
        f"operation requires a tightly packed layout; bound {bound!r} has stride {stride!r}"
    )
