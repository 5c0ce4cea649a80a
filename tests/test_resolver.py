import pytest

from conftest import execute, parse
from interpreter import Interpreter
from parser import Variable
from resolver import LoxResolveError, Resolver


def _resolve(source):
    interpreter = Interpreter()
    statements = parse(source)
    Resolver(interpreter).resolve(statements)
    return interpreter, statements


def _resolve_errors(source):
    with pytest.raises(LoxResolveError) as excinfo:
        _resolve(source)
    return [str(d) for d in excinfo.value.diagnostics]


def test_records_distances_and_globals():
    interpreter, statements = _resolve("var g = 1;\n{ var a = 2; { print a; print g; } }")
    inner = statements[1].statements[1]
    read_a = inner.statements[0].expression
    read_g = inner.statements[1].expression
    assert isinstance(read_a, Variable)
    assert interpreter.locals[read_a] == 1
    assert interpreter.locals[read_g] is None


def test_function_parameters_share_the_body_frame():
    interpreter, statements = _resolve("fun f(a) { var b = a; return b; }")
    body = statements[0].body
    assert interpreter.locals[body[0].initializer] == 0
    assert interpreter.locals[body[1].value] == 0


def test_this_resolves_to_the_bound_method_frame():
    interpreter, statements = _resolve("class A { m() { return this; } }")
    this_expr = statements[0].methods[0].body[0].value
    assert interpreter.locals[this_expr] == 1


@pytest.mark.parametrize(
    "source, message",
    [
        ("{ var a = a; }", "[line 1] Error at 'a': Can't read local variable in its own initializer."),
        ("{ var a = 1; var a = 2; }", "[line 1] Error at 'a': Already a variable with this name in this scope."),
        ("return 1;", "[line 1] Error at 'return': Can't return from top-level code."),
        ("print this;", "[line 1] Error at 'this': Can't use 'this' outside of a class."),
        ("fun f() { super.m(); }", "[line 1] Error at 'super': Can't use 'super' outside of a class."),
        ("class A { m() { super.m(); } }", "[line 1] Error at 'super': Can't use 'super' in a class with no superclass."),
        ("class A < A {}", "[line 1] Error at 'A': A class can't inherit from itself."),
    ],
)
def test_static_errors(source, message):
    assert _resolve_errors(source) == [message]


def test_global_redeclaration_is_allowed():
    result = execute("var a = 1; var a = 2; print a;")
    assert result.output == ["2"]


def test_closure_binding_is_fixed_at_resolution():
    source = """
var a = "global";
{
  fun show() { print a; }
  show();
  var a = "block";
  show();
}
"""
    result = execute(source)
    assert result.output == ["global", "global"]
