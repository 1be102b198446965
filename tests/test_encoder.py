import dataclasses
import struct
import zlib
from dataclasses import dataclass, field
from typing import Any, Optional

import lz4.block
import pytest

from etfcodec.config import MAGIC_NUMBER, CompressionLevel, Config, EtfError
from etfcodec.encoder import Encoder, frame
from etfcodec.schema import Uint


@dataclass
class Address:
    street: str
    city: str


@dataclass
class Person:
    name: str
    age: int
    address: Optional[Address] = None


@dataclass
class Tagged:
    keep: str
    drop: str = field(default="x", metadata={"etf": "-"})


@dataclass
class Unsorted:
    zeta: int
    alpha: int


@dataclass
class Versioned:
    value: int = field(default=0, metadata={"etf_version": "2"})


class _Reader:
    def __init__(self, data, endian="<"):
        self.data = data
        self.pos = 0
        self.endian = endian

    def read(self, fmt):
        fmt = self.endian + fmt
        size = struct.calcsize(fmt)
        (value,) = struct.unpack_from(fmt, self.data, self.pos)
        self.pos += size
        return value

    def text(self):
        length = self.read("I")
        out = self.data[self.pos:self.pos + length].decode("utf-8")
        self.pos += length
        return out


def _encode(value, tp, **options):
    enc = Encoder(Config(**options))
    enc.encode_value(value, tp)
    return enc.getvalue()


def test_bool_true_is_single_one_byte():
    assert _encode(True, bool) == b"\x01"


def test_bool_false_is_single_zero_byte():
    assert _encode(False, bool) == b"\x00"


def test_int_is_little_endian_int64():
    out = _encode(-5, int)
    assert len(out) == 8
    assert struct.unpack("<q", out)[0] == -5


def test_int_big_endian():
    out = _encode(258, int, byte_order="big")
    assert struct.unpack(">q", out)[0] == 258


def test_uint_roundtrip_and_negative_rejected():
    out = _encode(2**63 + 7, Uint)
    assert struct.unpack("<Q", out)[0] == 2**63 + 7
    with pytest.raises(EtfError):
        _encode(-1, Uint)


def test_float_is_float64():
    out = _encode(5.9, float)
    assert struct.unpack("<d", out)[0] == 5.9


def test_string_has_length_prefix():
    out = _encode("héllo", str)
    reader = _Reader(out)
    assert reader.text() == "héllo"
    assert reader.pos == len(out)


def test_wrong_primitive_type_raises():
    with pytest.raises(EtfError):
        _encode("30", int)


def test_nil_pointer_marker():
    assert _encode(None, Optional[int]) == b"\x00"


def test_nil_pointer_rejected_without_skip():
    with pytest.raises(EtfError, match="cannot encode nil pointer"):
        _encode(None, Optional[int], skip_nil_pointers=False)


def test_non_nil_pointer_writes_marker_then_value():
    out = _encode(7, Optional[int])
    assert out[0] == 1
    assert struct.unpack("<q", out[1:])[0] == 7


def test_slice_count_then_items():
    out = _encode(["a", "bc"], list[str])
    reader = _Reader(out)
    assert reader.read("I") == 2
    assert [reader.text(), reader.text()] == ["a", "bc"]
    assert reader.pos == len(out)


def test_none_slice_encodes_as_empty():
    out = _encode(None, list[int])
    assert struct.unpack("<I", out)[0] == 0


def test_map_entries_in_order():
    out = _encode({"math": 95, "science": 87}, dict[str, int])
    reader = _Reader(out)
    assert reader.read("I") == 2
    pairs = [(reader.text(), reader.read("q")) for _ in range(2)]
    assert pairs == [("math", 95), ("science", 87)]


def test_interface_none_and_value():
    assert _encode(None, Any) == b"\x00"
    reader = _Reader(_encode("abc", Any))
    assert reader.text() == "abc"


def test_interface_unsupported_value_raises():
    with pytest.raises(EtfError):
        _encode({1, 2}, Any)


def test_struct_layout_with_checksum():
    person = Person(name="John", age=30, address=Address("Main St", "City"))
    out = _encode(person, Person)
    reader = _Reader(out)
    assert reader.read("I") == 3
    start = reader.pos
    assert reader.text() == "name"
    assert reader.text() == "string"
    assert reader.text() == "John"
    assert reader.text() == "age"
    assert reader.text() == "int"
    assert reader.read("q") == 30
    assert reader.text() == "address"
    assert reader.text() == "*Address"
    assert reader.read("B") == 1
    assert reader.read("I") == 2
    assert reader.text() == "street"
    reader.text()
    assert reader.text() == "Main St"
    assert reader.text() == "city"
    reader.text()
    assert reader.text() == "City"
    inner_checksum_pos = reader.pos
    reader.read("I")
    outer = reader.read("I")
    assert reader.pos == len(out)
    assert outer == zlib.crc32(out[start:inner_checksum_pos + 4])


def test_struct_without_type_info_or_checksum():
    out = _encode(
        Address("a", "b"),
        Address,
        include_field_type_info=False,
        include_checksum=False,
    )
    reader = _Reader(out)
    assert reader.read("I") == 2
    assert [reader.text() for _ in range(4)] == ["street", "a", "city", "b"]
    assert reader.pos == len(out)


def test_skipped_field_not_written():
    out = _encode(Tagged(keep="k"), Tagged, include_field_type_info=False,
                  include_checksum=False)
    reader = _Reader(out)
    assert reader.read("I") == 1
    assert reader.text() == "keep"
    assert reader.text() == "k"
    assert reader.pos == len(out)


def test_sort_fields_orders_by_name():
    out = _encode(Unsorted(zeta=1, alpha=2), Unsorted, sort_fields=True,
                  include_field_type_info=False, include_checksum=False)
    reader = _Reader(out)
    reader.read("I")
    first = reader.text()
    first_value = reader.read("q")
    assert (first, first_value) == ("alpha", 2)
    assert reader.text() == "zeta"


def test_field_version_uses_first_tag_character():
    out = _encode(Versioned(3), Versioned, include_field_versions=True,
                  include_field_type_info=False, include_checksum=False)
    reader = _Reader(out)
    reader.read("I")
    assert reader.text() == "value"
    assert reader.read("I") == ord("2")
    assert reader.read("q") == 3


def test_struct_type_mismatch_raises():
    with pytest.raises(EtfError):
        _encode(Address("a", "b"), Person)


def test_field_error_is_wrapped():
    bad = Person(name="x", age="old")
    with pytest.raises(EtfError, match="failed to encode field age"):
        _encode(bad, Person)


def test_max_depth_exceeded():
    with pytest.raises(EtfError, match="maximum recursion depth exceeded"):
        _encode(Address("a", "b"), Address, max_depth=1)
    enc = Encoder(Config(max_depth=2))
    enc.encode_value(Address("a", "b"), Address)
    assert enc.depth == 0


def test_frame_uncompressed():
    payload = b"payload bytes"
    out = frame(payload, Config(compression_level=CompressionLevel.NONE))
    assert out[:4] == bytes([0xC0, 0x0E, 0x9E, 0x0C])
    magic, size = struct.unpack("<II", out[:8])
    assert magic == MAGIC_NUMBER
    assert size == len(payload)
    assert out[8:] == payload


@pytest.mark.parametrize("level", [CompressionLevel.FAST, CompressionLevel.HIGH])
def test_frame_compressed_roundtrip(level):
    payload = b"abcabcabcabc" * 20
    out = frame(payload, Config(compression_level=level))
    magic, size, flag = struct.unpack("<IIB", out[:9])
    assert (magic, size, flag) == (MAGIC_NUMBER, len(payload), 1)
    restored = lz4.block.decompress(out[9:], uncompressed_size=size)
    assert restored == payload


def test_frame_big_endian_magic():
    out = frame(b"x", Config(compression_level=CompressionLevel.NONE,
                             byte_order="big"))
    assert struct.unpack(">I", out[:4])[0] == MAGIC_NUMBER


def test_frame_invalid_level():
    config = Config(compression_level=7)
    with pytest.raises(EtfError, match="invalid compression level"):
        frame(b"x", config)


def test_config_is_not_mutated_by_encoding():
    config = Config(sort_fields=True)
    before = dataclasses.asdict(config)
    enc = Encoder(config)
    enc.encode_value(Unsorted(1, 2), Unsorted)
    assert dataclasses.asdict(config) == before