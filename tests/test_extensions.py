from pathlib import Path

import pytest

from conftest import execute
from extensions import (
    ExtensionAPI,
    LoxExtensionError,
    RuntimeServices,
    extension_paths,
    load_runtime_services,
)
from interpreter import Interpreter

TEXT_EXTENSION = Path(__file__).resolve().parent.parent / "ext" / "text.py"


def _services(register):
    services = RuntimeServices()
    register(ExtensionAPI(services, "test"))
    return services


def test_text_extension_natives():
    services = load_runtime_services([str(TEXT_EXTENSION)])
    assert services.loaded == {"text": "0.1.0"}
    source = 'print len("abc"); print upper("ab"); print lower("CD"); print str(1.5) + "!"; print num("4") + 1; print num("x");'
    result = execute(source, services=services)
    assert result.output == ["3", "AB", "cd", "1.5!", "5", "nil"]
    assert result.interpreter.text_print_count == 6


def test_native_argument_type_error():
    services = load_runtime_services([str(TEXT_EXTENSION)])
    fault = execute("print len(1);", services=services).fault
    assert fault.kind == "TypeError"
    assert fault.message == "len expects a string argument."
    assert fault.line == 1


def test_native_arity_is_checked():
    services = load_runtime_services([str(TEXT_EXTENSION)])
    fault = execute('len("a", "b");', services=services).fault
    assert fault.kind == "ArityError"


def test_loxx_pointer_file_resolves_relative_entries(tmp_path):
    (tmp_path / "exts").mkdir()
    pointer = tmp_path / "bundle.loxx"
    pointer.write_text("# bundled extensions\nexts/strings.py  # strings\n\n", encoding="utf-8")
    assert extension_paths([str(pointer)]) == [(tmp_path / "exts" / "strings.py").resolve()]


def test_loading_the_same_extension_twice_is_rejected():
    with pytest.raises(LoxExtensionError, match="loaded twice"):
        load_runtime_services([str(TEXT_EXTENSION), str(TEXT_EXTENSION)])


def test_extension_without_register_is_rejected(tmp_path):
    module = tmp_path / "broken.py"
    module.write_text("LOX_EXTENSION_NAME = 'broken'\n", encoding="utf-8")
    with pytest.raises(LoxExtensionError, match="must define callable lox_register"):
        load_runtime_services([str(module)])


def test_extension_that_fails_to_import_is_reported(tmp_path):
    module = tmp_path / "crashes.py"
    module.write_text("raise ValueError('no')\n", encoding="utf-8")
    with pytest.raises(LoxExtensionError, match="Failed to load extension"):
        load_runtime_services([str(module)])


def test_api_version_mismatch(tmp_path):
    module = tmp_path / "future.py"
    module.write_text("LOX_EXTENSION_API_VERSION = 99\ndef lox_register(ext):\n    pass\n", encoding="utf-8")
    with pytest.raises(LoxExtensionError, match="targets API 99"):
        load_runtime_services([str(module)])


def test_duplicate_native_registration_names_the_owner():
    def register(ext):
        ext.register_native("twice", 0, lambda interp, args: None)
        ext.register_native("twice", 0, lambda interp, args: None)

    with pytest.raises(LoxExtensionError, match="already registered by extension 'test'"):
        _services(register)


@pytest.mark.parametrize("name", ["class", "two words", "", "naïve"])
def test_native_names_must_be_lox_identifiers(name):
    with pytest.raises(LoxExtensionError, match="not a Lox identifier"):
        _services(lambda ext: ext.register_native(name, 0, lambda interp, args: None))


def test_native_arity_is_bounded_like_calls():
    with pytest.raises(LoxExtensionError, match="between 0 and 255"):
        _services(lambda ext: ext.register_native("wide", 256, lambda interp, args: None))


def test_native_cannot_shadow_clock():
    services = _services(lambda ext: ext.register_native("clock", 0, lambda interp, args: 0))
    with pytest.raises(LoxExtensionError, match="conflicts"):
        Interpreter(services=services)


def test_unknown_event_is_rejected():
    with pytest.raises(LoxExtensionError, match="Unknown event 'on_exit'"):
        _services(lambda ext: ext.on_event("on_exit", lambda interp: None))


def test_host_exception_in_native_becomes_fault():
    def register(ext):
        @ext.native("boom", 0)
        def _boom(interp, args):
            raise ValueError("bad")

    fault = execute("boom();", services=_services(register)).fault
    assert fault.kind == "RuntimeError"
    assert fault.rule == "EXT"
    assert "bad" in fault.message


def test_call_and_print_events():
    events = []

    def register(ext):
        ext.on_event("before_call", lambda interp, name, args, env, loc: events.append(("call", name, len(args))))
        ext.on_event("after_call", lambda interp, name, result, env, loc: events.append(("return", name, interp.stringify(result))))
        ext.on_event("on_print", lambda interp, text: events.append(("print", text)))

    execute("fun add(a, b) { return a + b; } print add(1, 2);", services=_services(register))
    assert events == [("call", "add", 2), ("return", "add", "3"), ("print", "3")]


def test_program_events_bracket_a_run():
    events = []

    def register(ext):
        ext.on_event("program_start", lambda interp, statements, env: events.append(("start", len(statements))))
        ext.on_event("program_end", lambda interp, status: events.append(("end", status)))

    execute("print 1; print 2;", services=_services(register))
    assert events == [("start", 2), ("end", 0)]


def test_on_error_event_receives_fault():
    faults = []
    services = _services(lambda ext: ext.on_event("on_error", lambda interp, fault: faults.append(fault)))
    result = execute("print nil + 1;", services=services)
    assert faults == [result.fault]


def test_failing_hook_becomes_fault():
    def register(ext):
        @ext.on_event("on_print")
        def _fail(interp, text):
            raise RuntimeError("hook exploded")

    result = execute('print "x";', services=_services(register))
    assert result.output == ["x"]
    assert result.fault.rule == "EXT"
    assert "hook exploded" in result.fault.message


def test_step_rules_run_every_n_steps():
    seen = []
    execute(
        "print 1; print 2; print 3; print 4;",
        services=_services(lambda ext: ext.every_n_steps(2, lambda interp, ctx: seen.append(ctx.step_index))),
    )
    assert seen == [2, 4]


def test_step_rule_interval_must_be_positive():
    with pytest.raises(LoxExtensionError, match="at least 1"):
        _services(lambda ext: ext.every_n_steps(0, lambda interp, ctx: None))
