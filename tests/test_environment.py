import pytest

from interpreter import (
    NIL,
    TYPE_NUM,
    UNINITIALIZED,
    Environment,
    UndefinedVariableError,
    UninitializedVariableError,
    Value,
)


def num(n):
    return Value(TYPE_NUM, float(n))


def test_define_and_get_through_parents():
    outer = Environment()
    outer.define("a", num(1))
    inner = Environment(parent=outer)
    assert inner.get("a") == num(1)


def test_define_overwrites_in_same_frame():
    env = Environment()
    env.define("a", num(1))
    env.define("a", num(2))
    assert env.get("a") == num(2)


def test_assign_updates_nearest_binding_only():
    outer = Environment()
    outer.define("a", num(1))
    middle = Environment(parent=outer)
    middle.define("a", num(2))
    inner = Environment(parent=middle)
    inner.assign("a", num(3))
    assert middle.values["a"] == num(3)
    assert outer.values["a"] == num(1)


def test_assign_never_creates_a_binding():
    env = Environment()
    with pytest.raises(UndefinedVariableError, match="Undefined variable 'missing'."):
        env.assign("missing", num(1))
    assert "missing" not in env.values


def test_get_undefined():
    with pytest.raises(UndefinedVariableError):
        Environment(parent=Environment()).get("nope")


def test_uninitialized_differs_from_nil():
    env = Environment()
    env.define("x", UNINITIALIZED)
    env.define("y", NIL)
    with pytest.raises(UninitializedVariableError, match="Uninitialized variable 'x'."):
        env.get("x")
    assert env.get("y") is NIL
    env.assign("x", num(5))
    assert env.get("x") == num(5)


def test_distance_access():
    root = Environment()
    root.define("a", num(1))
    child = Environment(parent=root)
    grandchild = Environment(parent=child)
    assert grandchild.ancestor(2) is root
    assert grandchild.get_at(2, "a") == num(1)
    grandchild.assign_at(2, "a", num(9))
    assert root.values["a"] == num(9)
    with pytest.raises(UninitializedVariableError):
        root.define("b", UNINITIALIZED)
        grandchild.get_at(2, "b")


def test_snapshot_renders_values():
    env = Environment()
    env.define("a", num(1.5))
    assert env.snapshot() == {"a": "NUM:1.5"}
