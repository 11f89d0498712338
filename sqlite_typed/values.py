"""Tagged value model shared by parameter binding and column extraction.

All supported host types are declared here. ``Value.of`` turns a host object
into a tagged value for binding, ``Value.from_column`` tags what the driver
returned, and ``Value.convert`` turns a tagged value into the requested host
type. Adding a type means touching ``Value.of`` and ``_CONVERTERS`` only.

Host types:
    None, bool, int, float, str, bytes/bytearray/memoryview, datetime,
    the width-checked integer kinds below, and Optional[...] of any of them.
"""
from __future__ import annotations
import math, types
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Tuple, Union, get_args, get_origin

from .errors import TypeMismatchError, ValueTooLargeError

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_UNION_TYPES = (Union, getattr(types, "UnionType", Union))
_BUFFER_TYPES = (bytes, bytearray, memoryview)


class ValueKind(Enum):
    NULL = "null"
    INTEGER = "integer"
    REAL = "real"
    BOOLEAN = "boolean"
    TEXT = "text"
    BLOB = "blob"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class IntKind:
    """Fixed-width integer target, e.g. ``stmt.get(0, UInt8)``."""
    name: str
    bits: int
    signed: bool

    @property
    def min(self) -> int:
        return -(2 ** (self.bits - 1)) if self.signed else 0

    @property
    def max(self) -> int:
        return 2 ** (self.bits - 1) - 1 if self.signed else 2 ** self.bits - 1

    def check(self, value: int) -> int:
        if not self.min <= value <= self.max:
            raise TypeMismatchError(f"value {value} out of range for {self.name}")
        return value

    def __call__(self, value: int) -> int:
        return self.check(int(value))

    def __repr__(self) -> str:
        return self.name


Int8 = IntKind("int8", 8, True)
Int16 = IntKind("int16", 16, True)
Int32 = IntKind("int32", 32, True)
Int64 = IntKind("int64", 64, True)
UInt8 = IntKind("uint8", 8, False)
UInt16 = IntKind("uint16", 16, False)
UInt32 = IntKind("uint32", 32, False)
UInt64 = IntKind("uint64", 64, False)


def unwrap_optional(type_: Any) -> Tuple[Any, bool]:
    """Return (inner type, is_optional) for Optional[T] / T | None."""
    if get_origin(type_) in _UNION_TYPES:
        args = [a for a in get_args(type_) if a is not type(None)]
        if len(args) != 1:
            raise TypeMismatchError(f"unsupported union type: {type_!r}")
        return args[0], True
    return type_, False


def to_epoch_seconds(value: datetime) -> int:
    """Whole seconds since the Unix epoch; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return math.floor((value - EPOCH).total_seconds())


def from_epoch_seconds(seconds: int) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise TypeMismatchError(f"{seconds} seconds is outside the datetime range") from e


@dataclass(frozen=True)
class Value:
    kind: ValueKind
    payload: Any = None

    # --- Host -> Value --------------------------------------------------------------
    @classmethod
    def of(cls, obj: Any, type_: Any = None) -> "Value":
        if isinstance(obj, Value):
            return obj
        if type_ is not None:
            inner, optional = unwrap_optional(type_)
            if obj is None:
                if not optional:
                    raise TypeMismatchError(f"None given for non-optional {inner!r}")
                return NULL
            return cls._of_declared(obj, inner)
        if obj is None:
            return NULL
        if isinstance(obj, bool):
            return cls(ValueKind.BOOLEAN, obj)
        if isinstance(obj, int):
            return cls(ValueKind.INTEGER, _check_int64(obj))
        if isinstance(obj, float):
            return cls(ValueKind.REAL, obj)
        if isinstance(obj, str):
            return cls(ValueKind.TEXT, obj)
        if isinstance(obj, _BUFFER_TYPES):
            return cls(ValueKind.BLOB, bytes(obj))
        if isinstance(obj, datetime):
            return cls(ValueKind.TIMESTAMP, to_epoch_seconds(obj))
        raise TypeMismatchError(f"cannot bind value of type {type(obj).__name__}")

    @classmethod
    def _of_declared(cls, obj: Any, type_: Any) -> "Value":
        if isinstance(type_, IntKind):
            if isinstance(obj, bool) or not isinstance(obj, int):
                raise TypeMismatchError(f"{type(obj).__name__} given for {type_.name}")
            return cls(ValueKind.INTEGER, _check_int64(type_.check(obj)))
        if type_ is float and isinstance(obj, int) and not isinstance(obj, bool):
            return cls(ValueKind.REAL, float(obj))
        if type_ is str and isinstance(obj, _BUFFER_TYPES):
            return cls(ValueKind.TEXT, _decode(bytes(obj)))
        value = cls.of(obj)
        expected = _DECLARED_KINDS.get(type_)
        if expected is None:
            raise TypeMismatchError(f"unsupported bind type: {type_!r}")
        if value.kind is not expected:
            raise TypeMismatchError(f"{type(obj).__name__} given for {getattr(type_, '__name__', type_)}")
        return value

    # --- Driver <-> Value -----------------------------------------------------------
    @classmethod
    def from_column(cls, raw: Any) -> "Value":
        if raw is None:
            return NULL
        if isinstance(raw, int):
            return cls(ValueKind.INTEGER, raw)
        if isinstance(raw, float):
            return cls(ValueKind.REAL, raw)
        if isinstance(raw, str):
            return cls(ValueKind.TEXT, raw)
        return cls(ValueKind.BLOB, bytes(raw))

    def to_param(self) -> Any:
        if self.kind is ValueKind.BOOLEAN:
            return 1 if self.payload else 0
        return self.payload

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL

    # --- Value -> Host --------------------------------------------------------------
    def convert(self, type_: Any) -> Any:
        if type_ is Value:
            return self
        inner, optional = unwrap_optional(type_)
        if self.is_null:
            return None if optional else zero_value(inner)
        if isinstance(inner, IntKind):
            return inner.check(_to_int(self))
        converter = _CONVERTERS.get(inner)
        if converter is None:
            raise TypeMismatchError(f"unsupported column type: {type_!r}")
        return converter(self)


NULL = Value(ValueKind.NULL)

_DECLARED_KINDS = {
    int: ValueKind.INTEGER,
    float: ValueKind.REAL,
    bool: ValueKind.BOOLEAN,
    str: ValueKind.TEXT,
    bytes: ValueKind.BLOB,
    datetime: ValueKind.TIMESTAMP,
}


def _check_int64(value: int) -> int:
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueTooLargeError(f"integer {value} does not fit in 64-bit signed storage")
    return value


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise TypeMismatchError(f"value is not valid UTF-8: {e}") from e


def _parse_number(text: str) -> Union[int, float]:
    stripped = text.strip()
    try:
        return int(stripped)
    except ValueError:
        pass
    try:
        return float(stripped)
    except ValueError:
        raise TypeMismatchError(f"text {text!r} is not numeric") from None


def _to_int(value: Value) -> int:
    payload = value.payload
    if value.kind is ValueKind.TEXT:
        payload = _parse_number(payload)
    elif value.kind is ValueKind.BLOB:
        raise TypeMismatchError("blob cannot be read as integer")
    if isinstance(payload, float):
        if not payload.is_integer():
            raise TypeMismatchError(f"real {payload} is not integral")
        payload = int(payload)
    return int(payload)


def _to_float(value: Value) -> float:
    if value.kind is ValueKind.TEXT:
        return float(_parse_number(value.payload))
    if value.kind is ValueKind.BLOB:
        raise TypeMismatchError("blob cannot be read as real")
    return float(value.payload)


def _to_bool(value: Value) -> bool:
    if value.kind is ValueKind.BLOB:
        raise TypeMismatchError("blob cannot be read as boolean")
    return _to_float(value) != 0


def _to_str(value: Value) -> str:
    if value.kind is ValueKind.BLOB:
        return _decode(value.payload)
    if value.kind is ValueKind.BOOLEAN:
        return "1" if value.payload else "0"
    return str(value.payload)


def _to_bytes(value: Value) -> bytes:
    if value.kind is ValueKind.BLOB:
        return bytes(value.payload)
    return _to_str(value).encode("utf-8")


def _to_datetime(value: Value) -> datetime:
    if value.kind is ValueKind.REAL:
        try:
            seconds = math.floor(value.payload)
        except (OverflowError, ValueError) as e:
            raise TypeMismatchError(f"real {value.payload} is not a timestamp") from e
        return from_epoch_seconds(seconds)
    return from_epoch_seconds(_to_int(value))


_CONVERTERS: Dict[Any, Callable[[Value], Any]] = {
    int: _to_int,
    float: _to_float,
    bool: _to_bool,
    str: _to_str,
    bytes: _to_bytes,
    datetime: _to_datetime,
}

_ZEROS: Dict[Any, Any] = {
    int: 0,
    float: 0.0,
    bool: False,
    str: "",
    bytes: b"",
    datetime: EPOCH,
}


def zero_value(type_: Any) -> Any:
    """What a NULL column reads as when the caller did not ask for Optional."""
    if isinstance(type_, IntKind):
        return 0
    if type_ not in _ZEROS:
        raise TypeMismatchError(f"unsupported column type: {type_!r}")
    return _ZEROS[type_]


def byte_length(value: Value) -> int:
    """Storage length the backend limit applies to (UTF-8 for text)."""
    if value.kind is ValueKind.TEXT:
        return len(value.payload.encode("utf-8"))
    if value.kind is ValueKind.BLOB:
        return len(value.payload)
    return 0
