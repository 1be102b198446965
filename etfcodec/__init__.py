"""Binary encoding of dataclass records into the .etf format, with optional LZ4 compression."""

__version__ = "0.1.0"