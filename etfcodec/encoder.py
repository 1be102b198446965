"""Serialisation of values into the binary wire layout."""

from __future__ import annotations

import struct
import zlib
from typing import Any

import lz4.block

from .config import MAGIC_NUMBER, CompressionLevel, Config, EtfError
from .schema import (
    Kind,
    describe,
    struct_fields,
    type_name,
    value_type,
)


class Encoder:
    """Writes values of known types into an in-memory buffer."""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config if config is not None else Config()
        self.depth = 0
        self._buf = bytearray()

    def getvalue(self) -> bytes:
        """The bytes written so far."""
        return bytes(self._buf)

    def encode_value(self, value: Any, tp: Any) -> None:
        """Append ``value``, laid out as type ``tp``."""
        if self.depth >= self.config.max_depth:
            raise EtfError("maximum recursion depth exceeded")
        self.depth += 1
        try:
            self._encode(value, tp)
        finally:
            self.depth -= 1

    def _pack(self, fmt: str, value: Any) -> None:
        try:
            self._buf += struct.pack(self.config.endian + fmt, value)
        except struct.error as exc:
            raise EtfError(f"cannot encode {value!r}: {exc}") from exc

    def _write_text(self, text: str) -> None:
        data = text.encode("utf-8")
        self._pack("I", len(data))
        self._buf += data

    def _encode(self, value: Any, tp: Any) -> None:
        spec = describe(tp)
        if spec.kind is Kind.INTERFACE:
            if value is None:
                self._pack("B", 0)
                return
            spec = describe(value_type(value))

        kind = spec.kind
        if kind is Kind.STRUCT:
            self._encode_struct(value, spec.cls)
        elif kind is Kind.POINTER:
            self._encode_pointer(value, spec.elem)
        elif kind in (Kind.SLICE, Kind.ARRAY):
            self._encode_sequence(value, spec.elem)
        elif kind is Kind.MAP:
            self._encode_map(value, spec.key, spec.elem)
        else:
            self._encode_primitive(value, kind)

    def _encode_struct(self, value: Any, cls: type) -> None:
        if not isinstance(value, cls):
            raise EtfError(
                f"expected {cls.__name__}, got {type(value).__name__}"
            )
        config = self.config
        fields = [
            info
            for info in struct_fields(cls, config.tag_name)
            if not info.skipped
        ]
        if config.sort_fields:
            fields.sort(key=lambda info: info.name)

        self._pack("I", len(fields))
        data_start = len(self._buf)

        for info in fields:
            self._write_text(info.name)
            if config.include_field_type_info:
                self._write_text(type_name(info.type))
            if config.include_field_versions:
                self._pack("I", info.version)
            try:
                self.encode_value(getattr(value, info.name), info.type)
            except EtfError as exc:
                raise EtfError(
                    f"failed to encode field {info.name}: {exc}"
                ) from exc

        if config.include_checksum:
            checksum = zlib.crc32(bytes(self._buf[data_start:])) & 0xFFFFFFFF
            self._pack("I", checksum)

    def _encode_pointer(self, value: Any, elem: Any) -> None:
        if value is None:
            if self.config.skip_nil_pointers:
                self._pack("B", 0)
                return
            raise EtfError("cannot encode nil pointer")
        self._pack("B", 1)
        self.encode_value(value, elem)

    def _encode_sequence(self, value: Any, elem: Any) -> None:
        items = () if value is None else value
        if isinstance(items, (str, bytes, dict)):
            raise EtfError(f"expected a sequence, got {type(value).__name__}")
        try:
            items = list(items)
        except TypeError as exc:
            raise EtfError(
                f"expected a sequence, got {type(value).__name__}"
            ) from exc
        self._pack("I", len(items))
        for item in items:
            self.encode_value(item, elem)

    def _encode_map(self, value: Any, key_tp: Any, elem: Any) -> None:
        mapping = {} if value is None else value
        if not isinstance(mapping, dict):
            raise EtfError(f"expected a mapping, got {type(value).__name__}")
        self._pack("I", len(mapping))
        for key, item in mapping.items():
            try:
                self.encode_value(key, key_tp)
            except EtfError as exc:
                raise EtfError(f"failed to encode map key: {exc}") from exc
            try:
                self.encode_value(item, elem)
            except EtfError as exc:
                raise EtfError(f"failed to encode map value: {exc}") from exc

    def _encode_primitive(self, value: Any, kind: Kind) -> None:
        if kind is Kind.BOOL:
            if not isinstance(value, bool):
                raise EtfError(f"expected bool, got {type(value).__name__}")
            self._pack("B", 1 if value else 0)
        elif kind is Kind.INT:
            if not isinstance(value, int) or isinstance(value, bool):
                raise EtfError(f"expected int, got {type(value).__name__}")
            self._pack("q", value)
        elif kind is Kind.UINT:
            if not isinstance(value, int) or isinstance(value, bool):
                raise EtfError(f"expected uint, got {type(value).__name__}")
            self._pack("Q", value)
        elif kind is Kind.FLOAT:
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise EtfError(f"expected float, got {type(value).__name__}")
            self._pack("d", float(value))
        elif kind is Kind.STRING:
            if not isinstance(value, str):
                raise EtfError(f"expected string, got {type(value).__name__}")
            self._write_text(value)
        else:
            raise EtfError("unsupported field type: " + kind.value)


def frame(payload: bytes, config: Config) -> bytes:
    """Wrap an encoded payload with the magic number, size and compression."""
    endian = config.endian
    header = struct.pack(endian + "II", MAGIC_NUMBER, len(payload))
    level = config.compression_level
    if level == CompressionLevel.NONE:
        return header + payload
    if level in (CompressionLevel.FAST, CompressionLevel.HIGH):
        compressed = lz4.block.compress(payload, store_size=False)
        return header + struct.pack(endian + "B", 1) + compressed
    raise EtfError("invalid compression level")