"""Lox Extension: string helpers.

Natives:
- len(s)        -> number of characters in a string
- upper(s)      -> upper-cased copy
- lower(s)      -> lower-cased copy
- str(v)        -> printed form of any value
- num(s)        -> number parsed from a string, nil if it does not parse

Also counts lines written by print; the count is kept on the interpreter as
``text_print_count``.
"""

from __future__ import annotations

from typing import List

from extensions import ExtensionAPI
from interpreter import NIL, TYPE_NUM, TYPE_STR, LoxTypeError, Value


LOX_EXTENSION_NAME = "text"
LOX_EXTENSION_API_VERSION = 1
LOX_EXTENSION_VERSION = "0.1.0"


def _expect_string(name: str, value: Value) -> str:
    if value.type != TYPE_STR:
        raise LoxTypeError(f"{name} expects a string argument.")
    return value.value


def _len(_interpreter, args: List[Value]) -> Value:
    return Value(TYPE_NUM, float(len(_expect_string("len", args[0]))))


def _upper(_interpreter, args: List[Value]) -> Value:
    return Value(TYPE_STR, _expect_string("upper", args[0]).upper())


def _lower(_interpreter, args: List[Value]) -> Value:
    return Value(TYPE_STR, _expect_string("lower", args[0]).lower())


def _str(interpreter, args: List[Value]) -> Value:
    return Value(TYPE_STR, interpreter.stringify(args[0]))


def _num(_interpreter, args: List[Value]) -> Value:
    text = _expect_string("num", args[0]).strip()
    try:
        return Value(TYPE_NUM, float(text))
    except ValueError:
        return NIL


def _count_print(interpreter, _text: str) -> None:
    interpreter.text_print_count = getattr(interpreter, "text_print_count", 0) + 1


def lox_register(ext: ExtensionAPI) -> None:
    ext.register_native("len", 1, _len, doc="len(s) -> number of characters")
    ext.register_native("upper", 1, _upper, doc="upper(s) -> string")
    ext.register_native("lower", 1, _lower, doc="lower(s) -> string")
    ext.register_native("str", 1, _str, doc="str(v) -> printed form of v")
    ext.register_native("num", 1, _num, doc="num(s) -> number or nil")
    ext.on_event("on_print", _count_print)
