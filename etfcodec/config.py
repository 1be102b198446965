"""Codec configuration, compression levels and the error type."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import IntEnum

MAGIC_NUMBER = 0x0C9E0EC0
"""Four-byte marker that starts every encoded document."""

_BYTE_ORDERS = {"little": "<", "big": ">"}


class EtfError(Exception):
    """Raised when data cannot be encoded, decoded, validated or sized."""


class CompressionLevel(IntEnum):
    """How the encoded payload is compressed."""

    NONE = 0
    FAST = 1
    HIGH = 2


@dataclass
class Config:
    """Options that control how values are laid out on the wire."""

    compression_level: CompressionLevel = CompressionLevel.FAST
    include_type_info: bool = True
    include_field_type_info: bool = True
    sort_fields: bool = False
    max_depth: int = 100
    skip_nil_pointers: bool = True
    tag_name: str = "etf"
    strict_type_checking: bool = False
    byte_order: str = "little"
    include_checksum: bool = True
    enable_error_correction: bool = True
    error_correction_retries: int = 3
    include_field_versions: bool = False

    def __post_init__(self) -> None:
        if self.byte_order is None:
            self.byte_order = "little"
        if self.byte_order not in _BYTE_ORDERS:
            raise ValueError(
                f"byte_order must be 'little' or 'big', not {self.byte_order!r}"
            )
        try:
            self.compression_level = CompressionLevel(self.compression_level)
        except ValueError:
            # An unknown level is kept as given and rejected when encoding.
            pass

    @property
    def endian(self) -> str:
        """The struct module prefix for the configured byte order."""
        return _BYTE_ORDERS[self.byte_order]

    def copy(self) -> "Config":
        """Return an independent copy of this configuration."""
        return dataclasses.replace(self)


def default_config() -> Config:
    """Return the default configuration."""
    return Config()