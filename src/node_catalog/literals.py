"""Typed literal values read from a TypeScript syntax tree.

``extract_literal`` turns an expression node into one of a closed set of
value variants. Anything it cannot read statically (identifiers, calls,
member access, template substitutions, ...) becomes ``Unsupported`` so callers
can tell "key absent" apart from "key present with a dynamic value".
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Union


@dataclass(frozen=True)
class StringValue:
    value: str


@dataclass(frozen=True)
class NumberValue:
    value: int | float


@dataclass(frozen=True)
class BooleanValue:
    value: bool


@dataclass(frozen=True)
class NullValue:
    pass


@dataclass(frozen=True)
class ArrayValue:
    items: tuple[LiteralValue, ...]


@dataclass(frozen=True)
class ObjectValue:
    entries: tuple[tuple[str, LiteralValue], ...]

    def get(self, key: str) -> LiteralValue | None:
        for k, v in self.entries:
            if k == key:
                return v
        return None

    def keys(self) -> list[str]:
        return [k for k, _ in self.entries]


@dataclass(frozen=True)
class Unsupported:
    kind: str
    text: str = ""


LiteralValue = Union[
    StringValue, NumberValue, BooleanValue, NullValue, ArrayValue, ObjectValue, Unsupported
]

# Expression wrappers that do not change the runtime value
_TRANSPARENT = {
    "parenthesized_expression",
    "as_expression",
    "satisfies_expression",
    "non_null_expression",
}

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}
_ESCAPE_RE = re.compile(r"\\(u\{[0-9a-fA-F]+\}|u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|\r\n|[\s\S])")


def node_text(node) -> str:
    return node.text.decode("utf-8", errors="replace")


def _named(node) -> list:
    return [c for c in node.named_children if c.type != "comment"]


def _unescape(body: str) -> str:
    def repl(match: re.Match) -> str:
        seq = match.group(1)
        if seq[0] == "u" and len(seq) > 1:
            return chr(int(seq[1:].strip("{}"), 16))
        if seq[0] == "x" and len(seq) == 3:
            return chr(int(seq[1:], 16))
        if seq in ("\n", "\r\n"):
            return ""  # line continuation
        return _ESCAPES.get(seq, seq)

    return _ESCAPE_RE.sub(repl, body)


def _string(node) -> LiteralValue:
    return StringValue(_unescape(node_text(node)[1:-1]))


def _template_string(node) -> LiteralValue:
    if any(c.type == "template_substitution" for c in node.named_children):
        return Unsupported("template_substitution", node_text(node))
    return StringValue(_unescape(node_text(node)[1:-1]))


def _parse_number(text: str) -> int | float | None:
    text = text.replace("_", "")
    if text.endswith("n"):  # BigInt literal
        text = text[:-1]
    try:
        if text.lower().startswith(("0x", "0o", "0b")):
            return int(text, 0)
        if any(ch in text for ch in ".eE"):
            return float(text)
        return int(text)
    except ValueError:
        return None


def _number(node) -> LiteralValue:
    value = _parse_number(node_text(node))
    if value is None:
        return Unsupported("number", node_text(node))
    return NumberValue(value)


def _unary(node) -> LiteralValue:
    operator = node.child_by_field_name("operator")
    argument = node.child_by_field_name("argument")
    if operator is None or argument is None or operator.type not in ("-", "+"):
        return Unsupported(node.type, node_text(node))
    inner = extract_literal(argument)
    if not isinstance(inner, NumberValue):
        return Unsupported(node.type, node_text(node))
    return NumberValue(-inner.value if operator.type == "-" else inner.value)


def _array(node) -> LiteralValue:
    return ArrayValue(tuple(extract_literal(child) for child in _named(node)))


def property_key(node) -> str | None:
    """Static key of an object member, or None for computed keys."""
    if node.type in ("property_identifier", "identifier", "private_property_identifier"):
        return node_text(node)
    if node.type == "string":
        return _unescape(node_text(node)[1:-1])
    if node.type == "number":
        return node_text(node)
    return None


def _object(node) -> LiteralValue:
    entries: list[tuple[str, LiteralValue]] = []
    for child in _named(node):
        if child.type == "pair":
            key_node = child.child_by_field_name("key")
            value_node = child.child_by_field_name("value")
            key = property_key(key_node) if key_node is not None else None
            if key is None or value_node is None:
                continue
            entries.append((key, extract_literal(value_node)))
        elif child.type == "shorthand_property_identifier":
            entries.append((node_text(child), Unsupported("identifier", node_text(child))))
        # spread_element, method_definition: nothing static to read
    return ObjectValue(tuple(entries))


_HANDLERS: dict[str, Callable[[Any], LiteralValue]] = {
    "string": _string,
    "template_string": _template_string,
    "number": _number,
    "true": lambda node: BooleanValue(True),
    "false": lambda node: BooleanValue(False),
    "null": lambda node: NullValue(),
    "undefined": lambda node: NullValue(),
    "unary_expression": _unary,
    "array": _array,
    "object": _object,
}


def extract_literal(node) -> LiteralValue:
    """Read a tree-sitter expression node as a literal value."""
    while node.type in _TRANSPARENT:
        inner = _named(node)
        if not inner:
            return Unsupported(node.type, node_text(node))
        node = inner[0]
    handler = _HANDLERS.get(node.type)
    if handler is None:
        return Unsupported(node.type, node_text(node))
    return handler(node)


def to_python(value: LiteralValue) -> Any:
    """Convert a literal to plain Python data.

    Unsupported values become None inside arrays and are dropped from objects.
    """
    if isinstance(value, (StringValue, NumberValue, BooleanValue)):
        return value.value
    if isinstance(value, ArrayValue):
        return [to_python(item) for item in value.items]
    if isinstance(value, ObjectValue):
        return {
            key: to_python(item)
            for key, item in value.entries
            if not isinstance(item, Unsupported)
        }
    return None


__all__ = [
    "ArrayValue",
    "BooleanValue",
    "LiteralValue",
    "NullValue",
    "NumberValue",
    "ObjectValue",
    "StringValue",
    "Unsupported",
    "extract_literal",
    "node_text",
    "property_key",
    "to_python",
]
