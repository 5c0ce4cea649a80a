import pytest

from conftest import execute
from interpreter import Interpreter, LoxFatalError


def test_fields_and_methods(run):
    source = """
class Point {
  init(x, y) { this.x = x; this.y = y; }
  sum() { return this.x + this.y; }
}
var p = Point(1, 2);
print p.sum();
p.x = 10;
print p.sum();
"""
    assert run(source).output == ["3", "12"]


def test_fields_shadow_methods(run):
    source = """
class A { m() { return "method"; } }
var a = A();
a.m = "field";
print a.m;
"""
    assert run(source).output == ["field"]


def test_bound_method_keeps_its_receiver(run):
    source = """
class Person {
  init(name) { this.name = name; }
  greet() { print "hi " + this.name; }
}
var greet = Person("ann").greet;
greet();
"""
    assert run(source).output == ["hi ann"]


def test_each_property_read_binds_a_fresh_method(run):
    source = """
class A { m() {} }
var a = A();
print a.m == a.m;
var m = a.m;
print m == m;
"""
    assert run(source).output == ["false", "true"]


def test_instances_compare_by_identity(run):
    source = "class A {} var a = A(); var b = a; print a == b; print a == A();"
    assert run(source).output == ["true", "false"]


def test_inheritance_and_super(run):
    source = """
class A {
  method() { print "A method"; }
}
class B < A {
  method() { print "B method"; }
  test() { super.method(); }
}
class C < B {}
C().test();
"""
    assert run(source).output == ["A method"]


def test_inherited_methods_are_found(run):
    source = """
class A { hello() { return "hello from A"; } }
class B < A {}
print B().hello();
"""
    assert run(source).output == ["hello from A"]


def test_inherited_initializer_sets_arity(run):
    source = """
class A { init(a, b) { this.total = a + b; } }
class B < A {}
print B(1, 2).total;
B(1);
"""
    result = run(source)
    assert result.output == ["3"]
    assert result.fault.kind == "ArityError"
    assert result.fault.message == "Expected 2 arguments but got 1."


def test_class_without_init_takes_no_arguments(run):
    fault = run("class A {} A(1);").fault
    assert fault.kind == "ArityError"
    assert fault.message == "Expected 0 arguments but got 1."


def test_construction_yields_the_instance_even_with_early_return(run):
    source = """
class A {
  init() { this.v = 1; return; }
}
print A().v;
"""
    assert run(source).output == ["1"]


def test_direct_init_call_returns_its_own_result(run):
    source = """
class A { init() { this.v = 1; } }
var a = A();
print a.init();
"""
    assert run(source).output == ["nil"]


def test_super_init_chain(run):
    source = """
class Base { init(n) { this.n = n; } }
class Derived < Base {
  init(n) { super.init(n * 2); }
}
print Derived(4).n;
"""
    assert run(source).output == ["8"]


def test_superclass_must_be_a_class(run):
    result = run('var NotAClass = "no"; class B < NotAClass {}')
    assert result.fault.kind == "TypeError"
    assert result.fault.message == "Superclass must be a class."


def test_undefined_property(run):
    fault = run("class A {} print A().missing;").fault
    assert fault.kind == "UndefinedProperty"
    assert fault.message == "Undefined property 'missing'."
    assert fault.lexeme == "missing"


def test_undefined_super_method(run):
    source = """
class A {}
class B < A { m() { return super.nothing(); } }
B().m();
"""
    fault = run(source).fault
    assert fault.kind == "UndefinedProperty"
    assert fault.message == "Undefined property 'nothing'."


def test_property_access_on_non_instance(run):
    assert run('print "s".length;').fault.message == "Only instances have properties."
    assert run("var n = 1; n.x = 2;").fault.message == "Only instances have fields."


def test_unbounded_recursion_is_fatal():
    with pytest.raises(LoxFatalError, match="Stack overflow."):
        execute("fun f() { f(); } f();")


def test_stack_overflow_leaves_a_clean_call_stack():
    interpreter = Interpreter(output_sink=lambda text: None)
    with pytest.raises(LoxFatalError):
        execute("fun f() { f(); } f();", interpreter=interpreter)
    assert interpreter.call_stack == [interpreter.global_frame]
    assert set(interpreter.logger.frame_last_entry) == {interpreter.global_frame.frame_id}
    assert execute("print 1;", interpreter=interpreter).output == ["1"]


def test_own_method_shadows_inherited_one(run):
    source = """
class A { method() { print "A method"; } }
class B < A { method() { print "B method"; } }
B().method();
A().method();
"""
    assert run(source).output == ["B method", "A method"]


def test_superclass_method_dispatches_on_the_receiver(run):
    source = """
class Shape {
  describe() { print "I am " + this.name(); }
  name() { return "a shape"; }
}
class Circle < Shape {
  name() { return "a circle"; }
}
Shape().describe();
Circle().describe();
"""
    assert run(source).output == ["I am a shape", "I am a circle"]


def test_super_call_runs_parent_body_on_same_receiver(run):
    source = """
class A {
  m() { print "A.m sees " + this.tag; }
}
class B < A {
  m() { print "B.m"; super.m(); }
}
var b = B();
b.tag = "b";
b.m();
"""
    assert run(source).output == ["B.m", "A.m sees b"]
