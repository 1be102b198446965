# etfcodec

`etfcodec` turns typed Python records (dataclasses) into a compact binary
`.etf` layout and reads them back. It is meant for keeping application state
and session data.

An encoded document begins with the magic number `0x0C9E0EC0` and the length
of the body before compression, both as 4-byte integers in the configured
byte order. With compression on, a flag byte `1` follows and then the body as
an LZ4 block. Without compression the body follows the header directly.

## Installation

```
pip install etfcodec
```

The only runtime dependency is `lz4`.

## Quick start

```python
from dataclasses import dataclass, field
from typing import Optional

from etfcodec.parser import Parser


@dataclass
class Address:
    street: str = ""
    city: str = ""
    zipcode: int = 0


@dataclass
class Person:
    name: str = ""
    age: int = 0
    active: bool = False
    height: float = 0.0
    address: Optional[Address] = None
    tags: list[str] = field(default_factory=list)
    scores: dict[str, int] = field(default_factory=dict)


parser = Parser()
person = Person(
    name="John Doe",
    age=30,
    active=True,
    height=5.9,
    address=Address("123 Main St", "Anytown", 12345),
    tags=["developer"],
    scores={"math": 95},
)

blob = parser.encode(person)
restored = parser.decode(blob, Person)
assert restored == person

with open("state.etf", "wb") as fh:
    fh.write(blob)
```

`Parser.encode` takes a dataclass instance and returns `bytes`.
`Parser.decode(data, cls)` returns a new instance of `cls`.

## Supported field types

- `bool` (1 byte), `int` (signed 64-bit), `float` (64-bit) and `str`
  (4-byte length prefix, UTF-8)
- `etfcodec.schema.Uint`, an `int` stored as an unsigned 64-bit value
- nested dataclasses
- `Optional[X]` / `X | None`, written with a one-byte presence marker
- `list[X]` and `tuple[X, ...]` (4-byte length prefix)
- fixed-length tuples of one element type, such as `tuple[int, int, int]`;
  decoding fails if the stored length differs
- `dict[K, V]` (4-byte length prefix)

String annotations (for example under `from __future__ import annotations`)
are resolved against the defining module and class.

A field of type `Any` or `object` is encoded from the type of its runtime
value (`None` as a single zero byte), but is always decoded back as a string.

Fields whose names start with an underscore are left out. A field can also be
left out through its metadata, keyed by the configured tag name:

```python
from dataclasses import dataclass, field

@dataclass
class Session:
    user: str = ""
    cache: dict[str, str] = field(default_factory=dict, metadata={"etf": "-"})
```

With `include_field_versions` on, each field is written with a version
number: 1, or the code of the first character of the metadata entry
`"<tag_name>_version"`.

## Configuration

`etfcodec.config.default_config()` returns a `Config` with these defaults:

| option | default |
| --- | --- |
| `compression_level` | `CompressionLevel.FAST` |
| `include_type_info` | `True` (record name written before the body) |
| `include_field_type_info` | `True` (type name written with every field) |
| `sort_fields` | `False` (write fields in name order) |
| `max_depth` | `100` |
| `skip_nil_pointers` | `True` (write `None` optionals; otherwise they are an error) |
| `tag_name` | `"etf"` |
| `strict_type_checking` | `False` |
| `byte_order` | `"little"` (or `"big"`) |
| `include_checksum` | `True` (CRC32 after every record) |
| `enable_error_correction` | `True` |
| `error_correction_retries` | `3` |
| `include_field_versions` | `False` |

```python
from etfcodec.config import CompressionLevel, default_config
from etfcodec.parser import Parser

config = default_config()
config.compression_level = CompressionLevel.NONE
parser = Parser(config)
```

Encoder and decoder have to use the same settings: apart from the header and
the compression flag, the layout carries no record of which options were on.

`CompressionLevel.FAST` and `CompressionLevel.HIGH` both produce the same
LZ4 block output.

With `strict_type_checking` on, the stored record name must match the target
class, and each stored field type name must match the field's type. On a
field mismatch with error correction on, a stored `int`, `uint`, `float64` or
`string` value is converted to the target type where that makes sense.

`Config.copy()` returns an independent copy. `Parser.config` returns a copy
of the parser's configuration, and `Parser.clone()` returns a new parser with
its own copy, so changing one does not affect the other.

## Other helpers

- `parser.validate_struct(obj)` walks a record and raises if a field has a
  type the format cannot handle (including `Any`) or a nested record is of
  the wrong class.
- `parser.estimate_size(obj)` estimates the encoded size before compression,
  header included, which is useful for sizing buffers.
- `parser.stats()` returns a dict with the keys `max_depth`,
  `current_depth`, `compression_level`, `include_type_info`,
  `include_field_info`, `error_correction`, `checksum_enabled`,
  `sort_fields`, `skip_nil_pointers`, `strict_type_checking`,
  `include_field_versions` and `tag_name`.

The lower-level pieces are also available: `etfcodec.encoder.Encoder` and
`frame()`, `etfcodec.decoder.Decoder` and `unframe()`, and the type helpers
in `etfcodec.schema`.

## Errors

Every failure raises `etfcodec.config.EtfError`: input that is too short, a
wrong magic number, an invalid compression flag, a failed decompression,
values of the wrong or an unsupported type, nesting deeper than `max_depth`,
and type mismatches under strict type checking.

## Limits

- Checksums are written and read past when decoding, but not verified.
- Error correction does not recover data: on a read error it skips a few
  bytes and then raises the error anyway.
- Fields the target class does not know are skipped by a guess at their
  size (a short length-prefixed run, or else 8 bytes). This works for
  strings and numbers, not reliably for nested or container values.
- There is no command-line tool and no file handling of its own; reading and
  writing `.etf` files is left to the caller, as in the example above.