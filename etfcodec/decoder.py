"""Deserialisation of values from the binary wire layout."""

from __future__ import annotations

import dataclasses
import struct
from dataclasses import MISSING
from typing import Any, Callable, NoReturn, TypeVar

import lz4.block

from .config import MAGIC_NUMBER, Config, EtfError
from .schema import (
    Kind,
    TypeSpec,
    describe,
    field_types,
    struct_fields,
    type_name,
    zero_value,
)

_T = TypeVar("_T")

_SKIP_STRING_LIMIT = 10000
_INT64_MAX = (1 << 63) - 1
_UINT64 = 1 << 64


class Decoder:
    """Reads values of known types from an encoded payload."""

    def __init__(self, data: bytes, config: Config | None = None) -> None:
        self.config = config if config is not None else Config()
        self.depth = 0
        self._data = bytes(data)
        self._pos = 0

    @property
    def position(self) -> int:
        """Offset of the next byte to be read."""
        return self._pos

    @property
    def remaining(self) -> int:
        """Number of bytes not yet read."""
        return len(self._data) - self._pos

    # Low-level reads

    def _read(self, size: int) -> bytes:
        if size > self.remaining:
            self._pos = len(self._data)
            raise EtfError("unexpected end of data")
        chunk = self._data[self._pos : self._pos + size]
        self._pos += size
        return chunk

    def _unpack(self, fmt: str) -> Any:
        layout = self.config.endian + fmt
        return struct.unpack(layout, self._read(struct.calcsize(layout)))[0]

    def _read_string(self) -> str:
        length = self._unpack("I")
        raw = self._read(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EtfError(f"invalid string data: {exc}") from exc

    def read_type_name(self) -> str:
        """Read a length-prefixed type name."""
        return self._read_string()

    # Error correction

    def _correct(self, exc: EtfError) -> NoReturn:
        """Skip a few bytes to resynchronise, then re-raise ``exc``."""
        config = self.config
        if (
            config.enable_error_correction
            and self.depth <= config.max_depth // 2
            and self.remaining >= 4
        ):
            self._pos += max(0, min(config.error_correction_retries, self.remaining))
        raise exc

    def _guard(self, step: Callable[..., _T], *args: Any) -> _T:
        try:
            return step(*args)
        except EtfError as exc:
            self._correct(exc)

    # Values

    def decode_value(self, tp: Any) -> Any:
        """Read one value laid out as type ``tp`` and return it."""
        if self.depth >= self.config.max_depth:
            raise EtfError("maximum recursion depth exceeded")
        self.depth += 1
        try:
            return self._decode(describe(tp))
        finally:
            self.depth -= 1

    def _decode(self, spec: TypeSpec) -> Any:
        kind = spec.kind
        if kind is Kind.STRUCT:
            return self._decode_struct(spec.cls)
        if kind is Kind.POINTER:
            if self._unpack("B") == 0:
                return None
            return self.decode_value(spec.elem)
        if kind is Kind.SLICE:
            length = self._unpack("I")
            return spec.sequence(self.decode_value(spec.elem) for _ in range(length))
        if kind is Kind.ARRAY:
            length = self._unpack("I")
            if length != spec.length:
                raise EtfError("array length mismatch")
            return tuple(self.decode_value(spec.elem) for _ in range(length))
        if kind is Kind.MAP:
            return self._decode_map(spec.key, spec.elem)
        if kind is Kind.INTERFACE:
            # Values of unknown type are read back as strings.
            return self._read_string()
        return self._decode_primitive(kind)

    def _decode_primitive(self, kind: Kind) -> Any:
        if kind is Kind.BOOL:
            return self._unpack("B") != 0
        if kind is Kind.INT:
            return self._unpack("q")
        if kind is Kind.UINT:
            return self._unpack("Q")
        if kind is Kind.FLOAT:
            return self._unpack("d")
        if kind is Kind.STRING:
            return self._read_string()
        raise EtfError("unsupported field type: " + kind.value)

    def _decode_map(self, key_tp: Any, elem: Any) -> dict[Any, Any]:
        length = self._unpack("I")
        result: dict[Any, Any] = {}
        for _ in range(length):
            try:
                key = self.decode_value(key_tp)
            except EtfError as exc:
                raise EtfError(f"failed to decode map key: {exc}") from exc
            try:
                item = self.decode_value(elem)
            except EtfError as exc:
                raise EtfError(f"failed to decode map value: {exc}") from exc
            try:
                result[key] = item
            except TypeError as exc:
                raise EtfError(f"failed to decode map key: {exc}") from exc
        return result

    def _decode_struct(self, cls: type) -> Any:
        config = self.config
        count = self._unpack("I")
        fields = {info.name: info for info in struct_fields(cls, config.tag_name)}
        values: dict[str, Any] = {}

        for _ in range(count):
            name = self._guard(self._read_string)
            source_type = ""
            if config.include_field_type_info:
                source_type = self._guard(self._read_string)
            if config.include_field_versions:
                self._guard(self._unpack, "I")

            info = fields.get(name)
            if info is None or info.skipped:
                self._guard(self.skip_value)
                continue

            if (
                config.include_field_type_info
                and config.strict_type_checking
                and source_type
            ):
                expected = type_name(info.type)
                if expected != source_type:
                    mismatch = EtfError(
                        f"field {name} type mismatch: "
                        f"expected {expected}, got {source_type}"
                    )
                    if not config.enable_error_correction:
                        raise mismatch
                    try:
                        values[name] = self._convert(info.type, source_type)
                    except EtfError:
                        raise mismatch from None
                    continue

            try:
                values[name] = self.decode_value(info.type)
            except EtfError as exc:
                if config.enable_error_correction:
                    self._correct(exc)
                raise EtfError(f"failed to decode field {name}: {exc}") from exc

        if config.include_checksum:
            # The checksum is read to keep the stream aligned; it is not verified.
            self._guard(self._unpack, "I")

        return self._build(cls, values)

    @staticmethod
    def _build(cls: type, values: dict[str, Any]) -> Any:
        hints = field_types(cls)
        kwargs: dict[str, Any] = {}
        late: dict[str, Any] = {}
        for field in dataclasses.fields(cls):
            if field.name in values:
                value = values[field.name]
            elif field.default is not MISSING or field.default_factory is not MISSING:
                continue
            else:
                value = zero_value(hints.get(field.name, field.type))
            (kwargs if field.init else late)[field.name] = value
        try:
            instance = cls(**kwargs)
        except (TypeError, ValueError) as exc:
            raise EtfError(f"cannot build {cls.__name__}: {exc}") from exc
        for name, value in late.items():
            object.__setattr__(instance, name, value)
        return instance

    # Type conversion

    def _convert(self, tp: Any, source_type: str) -> Any:
        target = describe(tp).kind
        if source_type == "int":
            return _convert_value(self._unpack("q"), Kind.INT, target)
        if source_type == "uint":
            return _convert_value(self._unpack("Q"), Kind.UINT, target)
        if source_type == "float64":
            return _convert_value(self._unpack("d"), Kind.FLOAT, target)
        if source_type == "string":
            return _convert_value(self._read_string(), Kind.STRING, target)
        raise EtfError("unsupported type conversion")

    # Skipping

    def skip_value(self) -> None:
        """Discard a value of unknown type by a best-effort guess at its size."""
        if self.remaining == 0:
            return
        start = self._pos
        length = self._unpack("I")
        if length <= self.remaining and length < _SKIP_STRING_LIMIT:
            self._pos += length
            return
        self._pos = start
        self._pos += min(8, self.remaining)


def _convert_value(value: Any, source: Kind, target: Kind) -> Any:
    if source is Kind.INT:
        if target is Kind.INT:
            return value
        if target is Kind.UINT:
            if value < 0:
                raise EtfError("cannot convert negative int to uint")
            return value
        if target is Kind.FLOAT:
            return float(value)
        if target is Kind.STRING:
            return str(value)
        raise EtfError("incompatible type conversion")
    if source is Kind.UINT:
        if target is Kind.UINT:
            return value
        if target is Kind.INT:
            return value - _UINT64 if value > _INT64_MAX else value
        if target is Kind.FLOAT:
            return float(value)
        if target is Kind.STRING:
            return str(value)
        raise EtfError("incompatible type conversion")
    if source is Kind.FLOAT:
        if target is Kind.FLOAT:
            return value
        if target in (Kind.INT, Kind.UINT):
            if target is Kind.UINT and value < 0:
                raise EtfError("cannot convert negative float to uint")
            try:
                return int(value)
            except (OverflowError, ValueError) as exc:
                raise EtfError(f"cannot convert {value!r} to an integer") from exc
        if target is Kind.STRING:
            return f"{value:f}"
        raise EtfError("incompatible type conversion")
    if source is Kind.STRING:
        if target is Kind.STRING:
            return value
        raise EtfError("string can only be converted to string")
    raise EtfError("unsupported value type for conversion")


def unframe(data: bytes, config: Config) -> bytes:
    """Check the header of an encoded document and return its payload."""
    data = bytes(data)
    if len(data) < 8:
        raise EtfError("invalid data: too short")
    magic, original_size = struct.unpack_from(config.endian + "II", data)
    if magic != MAGIC_NUMBER:
        raise EtfError(
            f"invalid magic number: expected 0x{MAGIC_NUMBER:X}, got 0x{magic:X}"
        )
    body = data[8:]
    if not body:
        raise EtfError("no data after size header")
    if len(body) == original_size:
        return body
    if body[0] != 1:
        raise EtfError("invalid compression flag")
    if original_size == 0:
        return b""
    try:
        payload = lz4.block.decompress(body[1:], uncompressed_size=original_size)
    except (lz4.block.LZ4BlockError, ValueError) as exc:
        raise EtfError(f"decompression failed: {exc}") from exc
    if len(payload) < original_size:
        payload += bytes(original_size - len(payload))
    return payload