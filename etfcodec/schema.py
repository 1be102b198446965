"""Type introspection for dataclass-based records and their field types."""

from __future__ import annotations

import ast
import dataclasses
import inspect
import types
import typing
from dataclasses import MISSING, dataclass
from enum import Enum
from typing import Any, NewType, Union

from .config import EtfError

Uint = NewType("Uint", int)
"""Marks an integer field that is stored as an unsigned 64-bit value."""


class Kind(Enum):
    """The shape of a type as the wire format sees it."""

    STRUCT = "struct"
    POINTER = "ptr"
    SLICE = "slice"
    ARRAY = "array"
    MAP = "map"
    INTERFACE = "interface"
    BOOL = "bool"
    INT = "int"
    UINT = "uint"
    FLOAT = "float64"
    STRING = "string"


PRIMITIVE_KINDS = frozenset(
    {Kind.BOOL, Kind.INT, Kind.UINT, Kind.FLOAT, Kind.STRING}
)


@dataclass(frozen=True)
class TypeSpec:
    """A resolved description of a field type."""

    kind: Kind
    elem: Any = None
    key: Any = None
    length: int | None = None
    cls: type | None = None
    sequence: type = list


@dataclass(frozen=True)
class FieldInfo:
    """One public field of a record type."""

    name: str
    type: Any
    tag: str = ""
    version: int = 1

    @property
    def skipped(self) -> bool:
        """True when the field's tag excludes it from encoding."""
        return self.tag == "-"


_PRIMITIVES = {
    bool: Kind.BOOL,
    Uint: Kind.UINT,
    int: Kind.INT,
    float: Kind.FLOAT,
    str: Kind.STRING,
}


def is_struct_type(tp: Any) -> bool:
    """Whether ``tp`` is a record (dataclass) type."""
    return isinstance(tp, type) and dataclasses.is_dataclass(tp)


def _is_union(origin: Any) -> bool:
    return origin is Union or origin is types.UnionType


def describe(tp: Any) -> TypeSpec:
    """Resolve a type annotation into a :class:`TypeSpec`."""
    if tp is Any or tp is object:
        return TypeSpec(Kind.INTERFACE)
    for primitive, kind in _PRIMITIVES.items():
        if tp is primitive:
            return TypeSpec(kind)
    if is_struct_type(tp):
        return TypeSpec(Kind.STRUCT, cls=tp)

    origin = typing.get_origin(tp)
    args = typing.get_args(tp)

    if origin is typing.Annotated:
        return describe(args[0])
    if _is_union(origin):
        rest = [arg for arg in args if arg is not type(None)]
        if len(rest) == 1 and len(rest) != len(args):
            return TypeSpec(Kind.POINTER, elem=rest[0])
        raise EtfError(f"unsupported type: {tp!r}")
    if tp is list or origin is list:
        return TypeSpec(Kind.SLICE, elem=args[0] if args else Any)
    if tp is tuple:
        return TypeSpec(Kind.SLICE, elem=Any, sequence=tuple)
    if origin is tuple:
        if len(args) == 2 and args[1] is Ellipsis:
            return TypeSpec(Kind.SLICE, elem=args[0], sequence=tuple)
        if args and args != ((),) and all(arg == args[0] for arg in args):
            return TypeSpec(
                Kind.ARRAY, elem=args[0], length=len(args), sequence=tuple
            )
        raise EtfError(f"unsupported type: {tp!r}")
    if tp is dict:
        return TypeSpec(Kind.MAP, key=Any, elem=Any)
    if origin is dict:
        return TypeSpec(Kind.MAP, key=args[0], elem=args[1])
    raise EtfError(f"unsupported type: {tp!r}")


def struct_name(cls: type) -> str:
    """The name a record type is written under."""
    return cls.__name__


def type_name(tp: Any) -> str:
    """A textual name for a field type, as stored in field type information."""
    spec = describe(tp)
    kind = spec.kind
    if kind is Kind.STRUCT:
        return struct_name(spec.cls)
    if kind is Kind.POINTER:
        return "*" + type_name(spec.elem)
    if kind is Kind.SLICE:
        return "[]" + type_name(spec.elem)
    if kind is Kind.ARRAY:
        return f"[{spec.length}]" + type_name(spec.elem)
    if kind is Kind.MAP:
        return f"map[{type_name(spec.key)}]{type_name(spec.elem)}"
    if kind is Kind.INTERFACE:
        return "interface {}"
    return kind.value


class _Unresolved(Exception):
    pass


_BUILTIN_NAMES: dict[str, Any] = {
    "bool": bool,
    "int": int,
    "float": float,
    "str": str,
    "list": list,
    "tuple": tuple,
    "dict": dict,
    "object": object,
}

_TYPING_NAMES: dict[str, Any] = {
    "Any": Any,
    "Optional": typing.Optional,
    "Union": Union,
    "List": typing.List,
    "Dict": typing.Dict,
    "Tuple": typing.Tuple,
    "Annotated": typing.Annotated,
}

_KNOWN_NAMES: dict[str, Any] = {
    **_BUILTIN_NAMES,
    **_TYPING_NAMES,
    "typing": typing,
    "Uint": Uint,
}


def _lookup(name: str, namespace: typing.Mapping[str, Any]) -> Any:
    if name in namespace:
        return namespace[name]
    if name in _KNOWN_NAMES:
        return _KNOWN_NAMES[name]
    raise _Unresolved(name)


def _attribute(base: Any, attr: str) -> Any:
    if base is typing:
        if attr in _TYPING_NAMES:
            return _TYPING_NAMES[attr]
        raise _Unresolved(attr)
    if isinstance(base, types.ModuleType):
        members = vars(base)
        if attr in members:
            return members[attr]
        raise _Unresolved(attr)
    if isinstance(base, type):
        for klass in base.__mro__:
            members = vars(klass)
            if attr in members:
                return members[attr]
    raise _Unresolved(attr)


def _resolve_node(node: ast.AST, namespace: typing.Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Expression):
        return _resolve_node(node.body, namespace)
    if isinstance(node, ast.Constant):
        if node.value is None:
            return type(None)
        if node.value is Ellipsis:
            return Ellipsis
        if isinstance(node.value, str):
            return _resolve_text(node.value, namespace)
        raise _Unresolved(repr(node.value))
    if isinstance(node, ast.Name):
        return _lookup(node.id, namespace)
    if isinstance(node, ast.Attribute):
        return _attribute(_resolve_node(node.value, namespace), node.attr)
    if isinstance(node, ast.Subscript):
        base = _resolve_node(node.value, namespace)
        index = node.slice
        if isinstance(index, ast.Tuple):
            args: Any = tuple(_resolve_node(elt, namespace) for elt in index.elts)
        else:
            args = _resolve_node(index, namespace)
        try:
            return base[args]
        except TypeError as exc:
            raise _Unresolved(str(exc)) from exc
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
        left = _resolve_node(node.left, namespace)
        right = _resolve_node(node.right, namespace)
        try:
            return Union[left, right]
        except TypeError as exc:
            raise _Unresolved(str(exc)) from exc
    if isinstance(node, ast.List):
        return [_resolve_node(elt, namespace) for elt in node.elts]
    raise _Unresolved(type(node).__name__)


def _resolve_text(text: str, namespace: typing.Mapping[str, Any]) -> Any:
    try:
        tree = ast.parse(text.strip(), mode="eval")
    except SyntaxError as exc:
        raise _Unresolved(text) from exc
    return _resolve_node(tree, namespace)


def _class_namespace(owner: type) -> dict[str, Any]:
    namespace: dict[str, Any] = {}
    for klass in reversed(owner.__mro__):
        namespace.update(vars(klass))
    namespace[owner.__name__] = owner
    return namespace


def _annotation_namespace(cls: type, name: str) -> dict[str, Any]:
    """Names visible to the annotation of field ``name``: module, then class."""
    owner = cls
    for klass in cls.__mro__:
        if name in vars(klass).get("__annotations__", {}):
            owner = klass
            break
    namespace: dict[str, Any] = {}
    module = inspect.getmodule(owner)
    if module is not None:
        namespace.update(vars(module))
    namespace.update(_class_namespace(owner))
    namespace[cls.__name__] = cls
    return namespace


def field_types(cls: type) -> dict[str, Any]:
    """The field types of a record type, with textual annotations resolved.

    Annotations that cannot be resolved are returned as written.
    """
    result: dict[str, Any] = {}
    for field in dataclasses.fields(cls):
        tp = field.type
        if isinstance(tp, str):
            try:
                tp = _resolve_text(tp, _annotation_namespace(cls, field.name))
            except _Unresolved:
                pass
        result[field.name] = tp
    return result


def _field_version(metadata: typing.Mapping[str, Any], tag_name: str) -> int:
    tag = metadata.get(tag_name + "_version")
    if tag is None:
        return 1
    text = str(tag)
    return ord(text[0]) if text else 1


def struct_fields(cls: type, tag_name: str) -> tuple[FieldInfo, ...]:
    """The public fields of a record type, in declaration order."""
    if not is_struct_type(cls):
        raise EtfError(f"not a struct type: {cls!r}")
    hints = field_types(cls)
    return tuple(
        FieldInfo(
            name=field.name,
            type=hints.get(field.name, field.type),
            tag=str(field.metadata.get(tag_name, "")),
            version=_field_version(field.metadata, tag_name),
        )
        for field in dataclasses.fields(cls)
        if not field.name.startswith("_")
    )


def value_type(value: Any) -> Any:
    """The concrete type to encode a runtime value as.

    ``None`` has no concrete type and maps to ``Any``.
    """
    if value is None:
        return Any
    if isinstance(value, bool):
        return bool
    if isinstance(value, int):
        return int
    if isinstance(value, float):
        return float
    if isinstance(value, str):
        return str
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return type(value)
    if isinstance(value, list):
        return list[Any]
    if isinstance(value, tuple):
        return tuple[Any, ...]
    if isinstance(value, dict):
        return dict[Any, Any]
    raise EtfError("unsupported field type: " + type(value).__name__)


def zero_value(tp: Any) -> Any:
    """The empty value of a type: what a missing field decodes to."""
    spec = describe(tp)
    kind = spec.kind
    if kind is Kind.STRUCT:
        return _zero_struct(spec.cls)
    if kind in (Kind.POINTER, Kind.INTERFACE):
        return None
    if kind is Kind.SLICE:
        return spec.sequence()
    if kind is Kind.ARRAY:
        return tuple(zero_value(spec.elem) for _ in range(spec.length))
    if kind is Kind.MAP:
        return {}
    if kind is Kind.BOOL:
        return False
    if kind is Kind.FLOAT:
        return 0.0
    if kind is Kind.STRING:
        return ""
    return 0


def _zero_struct(cls: type) -> Any:
    hints = field_types(cls)
    kwargs = {
        field.name: zero_value(hints.get(field.name, field.type))
        for field in dataclasses.fields(cls)
        if field.init
        and field.default is MISSING
        and field.default_factory is MISSING
    }
    return cls(**kwargs)