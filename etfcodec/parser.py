"""High-level encoding and decoding of records into framed documents."""

from __future__ import annotations

import dataclasses
import struct
from typing import Any

from .config import Config, EtfError, default_config
from .decoder import Decoder, unframe
from .encoder import Encoder, frame
from .schema import FieldInfo, Kind, describe, struct_fields, struct_name, type_name


def _record_type(data: Any, nil_message: str, kind_message: str) -> type:
    if data is None:
        raise EtfError(nil_message)
    if not dataclasses.is_dataclass(data) or isinstance(data, type):
        raise EtfError(kind_message)
    return type(data)


class Parser:
    """Encodes records to framed, optionally compressed bytes and back."""

    def __init__(self, config: Config | None = None) -> None:
        self._config = config if config is not None else default_config()
        self._depth = 0

    @property
    def config(self) -> Config:
        """A copy of the configuration in use."""
        return self._config.copy()

    def _visible_fields(self, cls: type) -> list[FieldInfo]:
        return [
            info
            for info in struct_fields(cls, self._config.tag_name)
            if not info.skipped
        ]

    def _type_prefix(self, name: str) -> bytes:
        raw = name.encode("utf-8")
        return struct.pack(self._config.endian + "I", len(raw)) + raw

    def encode(self, data: Any) -> bytes:
        """Encode a record instance into a framed document."""
        cls = _record_type(
            data, "cannot encode nil pointer", "can only encode structs"
        )
        config = self._config
        prefix = b""
        if config.include_type_info:
            prefix = self._type_prefix(struct_name(cls))
        encoder = Encoder(config)
        encoder.encode_value(data, cls)
        return frame(prefix + encoder.getvalue(), config)

    def decode(self, data: bytes, cls: Any) -> Any:
        """Decode a framed document into a new value of type ``cls``."""
        config = self._config
        payload = unframe(data, config)
        decoder = Decoder(payload, config)
        if config.include_type_info:
            stored = decoder.read_type_name()
            if config.strict_type_checking and cls is not None:
                expected = type_name(cls)
                if expected != stored:
                    raise EtfError(
                        f"type mismatch: expected {expected}, got {stored}"
                    )
        if cls is None:
            raise EtfError("decode target must be a type")
        return decoder.decode_value(cls)

    def validate_struct(self, data: Any) -> None:
        """Raise :class:`EtfError` if ``data`` cannot be encoded and decoded."""
        cls = _record_type(
            data, "cannot validate nil pointer", "can only validate structs"
        )
        self._validate(data, cls, 0)

    def _validate(self, value: Any, tp: Any, depth: int) -> None:
        if depth >= self._config.max_depth:
            raise EtfError("maximum recursion depth exceeded during validation")
        spec = describe(tp)
        kind = spec.kind
        if kind is Kind.STRUCT:
            if not isinstance(value, spec.cls):
                raise EtfError(
                    f"expected {spec.cls.__name__}, got {type(value).__name__}"
                )
            for info in self._visible_fields(spec.cls):
                self._validate(getattr(value, info.name), info.type, depth + 1)
        elif kind is Kind.POINTER:
            if value is not None:
                self._validate(value, spec.elem, depth + 1)
        elif kind in (Kind.SLICE, Kind.ARRAY):
            for item in value or ():
                self._validate(item, spec.elem, depth + 1)
        elif kind is Kind.MAP:
            for key, item in (value or {}).items():
                self._validate(key, spec.key, depth + 1)
                self._validate(item, spec.elem, depth + 1)
        elif kind is Kind.INTERFACE:
            raise EtfError("unsupported type: " + kind.value)

    def estimate_size(self, data: Any) -> int:
        """Estimate the encoded size of a record, before compression."""
        cls = _record_type(
            data,
            "cannot estimate size of nil pointer",
            "can only estimate size of structs",
        )
        size = 0
        if self._config.include_type_info:
            size += 4 + len(struct_name(cls).encode("utf-8"))
        size += self._estimate(data, cls, 0)
        # Magic number, size prefix and compression flag.
        return size + 12

    def _estimate(self, value: Any, tp: Any, depth: int) -> int:
        config = self._config
        if depth >= config.max_depth:
            raise EtfError(
                "maximum recursion depth exceeded during size estimation"
            )
        spec = describe(tp)
        kind = spec.kind
        if kind is Kind.STRUCT:
            size = 4
            for info in self._visible_fields(spec.cls):
                size += 4 + len(info.name.encode("utf-8"))
                if config.include_field_type_info:
                    size += 4 + len(type_name(info.type).encode("utf-8"))
                if config.include_field_versions:
                    size += 4
                size += self._estimate(getattr(value, info.name), info.type, depth + 1)
            if config.include_checksum:
                size += 4
            return size
        if kind is Kind.POINTER:
            if value is None:
                return 1
            return 1 + self._estimate(value, spec.elem, depth + 1)
        if kind in (Kind.SLICE, Kind.ARRAY):
            return 4 + sum(
                self._estimate(item, spec.elem, depth + 1) for item in value or ()
            )
        if kind is Kind.MAP:
            return 4 + sum(
                self._estimate(key, spec.key, depth + 1)
                + self._estimate(item, spec.elem, depth + 1)
                for key, item in (value or {}).items()
            )
        if kind is Kind.BOOL:
            return 1
        if kind in (Kind.INT, Kind.UINT, Kind.FLOAT):
            return 8
        if kind is Kind.STRING:
            if not isinstance(value, str):
                raise EtfError(f"expected string, got {type(value).__name__}")
            return 4 + len(value.encode("utf-8"))
        raise EtfError("unsupported type for size estimation: " + kind.value)

    def clone(self) -> "Parser":
        """A new parser with an independent copy of this configuration."""
        return Parser(self._config.copy())

    def stats(self) -> dict[str, Any]:
        """A summary of the parser's configuration and state."""
        config = self._config
        return {
            "max_depth": config.max_depth,
            "current_depth": self._depth,
            "compression_level": int(config.compression_level),
            "include_type_info": config.include_type_info,
            "include_field_info": config.include_field_type_info,
            "error_correction": config.enable_error_correction,
            "checksum_enabled": config.include_checksum,
            "sort_fields": config.sort_fields,
            "skip_nil_pointers": config.skip_nil_pointers,
            "strict_type_checking": config.strict_type_checking,
            "include_field_versions": config.include_field_versions,
            "tag_name": config.tag_name,
        }