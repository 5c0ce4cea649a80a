from __future__ import annotations
import json
import math
import sys
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

import numpy as np

from extensions import LoxExtensionError, RuntimeServices, StepContext
from lexer import LoxError, Token
from parser import (
    Assign,
    Binary,
    Block,
    Call,
    ClassDef,
    Expression,
    ExpressionStatement,
    FuncDef,
    Get,
    Grouping,
    IfStatement,
    Literal,
    Logical,
    PrintStatement,
    ReturnStatement,
    Set,
    SourceLocation,
    Statement,
    Super,
    This,
    Unary,
    VarDecl,
    Variable,
    WhileStatement,
)


TYPE_NIL = "NIL"
TYPE_BOOL = "BOOL"
TYPE_NUM = "NUM"
TYPE_STR = "STR"
TYPE_FUN = "FUN"
TYPE_CLASS = "CLASS"
TYPE_INSTANCE = "INSTANCE"
TYPE_UNINITIALIZED = "UNINITIALIZED"

CALLABLE_TYPES = (TYPE_FUN, TYPE_CLASS)


@dataclass(frozen=True)
class Value:
    type: str
    value: Any


NIL = Value(TYPE_NIL, None)
TRUE = Value(TYPE_BOOL, True)
FALSE = Value(TYPE_BOOL, False)
# Stored by ``var x;``. Distinct from NIL so that an explicit nil stays readable.
UNINITIALIZED = Value(TYPE_UNINITIALIZED, None)


def bool_value(flag: bool) -> Value:
    return TRUE if flag else FALSE


def to_value(raw: Any) -> Value:
    """Wrap a plain Python value returned by a native function."""
    if isinstance(raw, Value):
        return raw
    if raw is None:
        return NIL
    if isinstance(raw, bool):
        return bool_value(raw)
    if isinstance(raw, (int, float)):
        return Value(TYPE_NUM, float(raw))
    if isinstance(raw, str):
        return Value(TYPE_STR, raw)
    raise LoxRuntimeError(f"Cannot convert host value of type {type(raw).__name__}", rule="EXT")


INTEGRAL_PRINT_LIMIT = 1e21


def format_number(number: float) -> str:
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    if number == 0:
        return "-0" if math.copysign(1.0, number) < 0 else "0"
    # repr() switches to exponent form at 1e16; integral values stay plain up to 1e21.
    if number.is_integer() and abs(number) < INTEGRAL_PRINT_LIMIT:
        return str(int(number))
    text = repr(number)
    if text.endswith(".0"):
        text = text[:-2]
    return text


def format_value(value: Value) -> str:
    vtype = value.type
    if vtype == TYPE_NIL:
        return "nil"
    if vtype == TYPE_BOOL:
        return "true" if value.value else "false"
    if vtype == TYPE_NUM:
        return format_number(value.value)
    if vtype == TYPE_STR:
        return value.value
    if vtype == TYPE_UNINITIALIZED:
        return "<uninitialized>"
    return str(value.value)


def is_truthy(value: Value) -> bool:
    if value.type == TYPE_NIL:
        return False
    if value.type == TYPE_BOOL:
        return bool(value.value)
    return True


def values_equal(left: Value, right: Value) -> bool:
    if left.type != right.type:
        return False
    if left.type == TYPE_NIL:
        return True
    if left.type == TYPE_NUM:
        return numbers_equal(left.value, right.value)
    if left.type in (TYPE_BOOL, TYPE_STR):
        return left.value == right.value
    return left.value is right.value


def numbers_equal(a: float, b: float) -> bool:
    """Boxed-double equality: NaN equals NaN, and 0 and -0 differ."""
    if math.isnan(a) or math.isnan(b):
        return math.isnan(a) and math.isnan(b)
    return a == b and math.copysign(1.0, a) == math.copysign(1.0, b)


class LoxRuntimeError(LoxError):
    """Raised for runtime faults."""

    kind = "RuntimeError"

    def __init__(
        self,
        message: str,
        *,
        token: Optional[Token] = None,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.token = token
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None

    def attach(self, token: Optional[Token], location: Optional[SourceLocation], rule: str) -> "LoxRuntimeError":
        # Keep the innermost position if one was already recorded.
        if self.token is None:
            self.token = token
        if self.location is None:
            self.location = location
        if self.rule is None:
            self.rule = rule
        return self


class LoxTypeError(LoxRuntimeError):
    kind = "TypeError"


class UndefinedVariableError(LoxRuntimeError):
    kind = "UndefinedVariable"


class UninitializedVariableError(LoxRuntimeError):
    kind = "UninitializedVariable"


class UndefinedPropertyError(LoxRuntimeError):
    kind = "UndefinedProperty"


class ArityError(LoxRuntimeError):
    kind = "ArityError"


class NotCallableError(LoxRuntimeError):
    kind = "NotCallableError"


class LoxFatalError(LoxError):
    """Host stack exhausted; not recoverable as a runtime fault."""


@dataclass(frozen=True)
class ReturnOutcome:
    value: Value
    keyword: Token


@dataclass(eq=False)
class Environment:
    parent: Optional["Environment"] = None
    values: Dict[str, Value] = field(default_factory=dict)

    def _find_env(self, name: str) -> Optional["Environment"]:
        env: Optional[Environment] = self
        while env is not None:
            if name in env.values:
                return env
            env = env.parent
        return None

    def define(self, name: str, value: Value) -> None:
        self.values[name] = value

    def get(self, name: str) -> Value:
        env = self._find_env(name)
        if env is None:
            raise UndefinedVariableError(f"Undefined variable '{name}'.")
        return _initialized(name, env.values[name])

    def assign(self, name: str, value: Value) -> None:
        env = self._find_env(name)
        if env is None:
            raise UndefinedVariableError(f"Undefined variable '{name}'.")
        env.values[name] = value

    def ancestor(self, distance: int) -> "Environment":
        env = self
        for _ in range(distance):
            if env.parent is None:
                raise LoxRuntimeError(f"Resolved scope distance {distance} exceeds the environment chain", rule="internal")
            env = env.parent
        return env

    def get_at(self, distance: int, name: str) -> Value:
        values = self.ancestor(distance).values
        if name not in values:
            raise UndefinedVariableError(f"Undefined variable '{name}'.")
        return _initialized(name, values[name])

    def assign_at(self, distance: int, name: str, value: Value) -> None:
        self.ancestor(distance).values[name] = value

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = format_value(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}


def _initialized(name: str, value: Value) -> Value:
    if value is UNINITIALIZED:
        raise UninitializedVariableError(f"Uninitialized variable '{name}'.")
    return value


class LoxCallable(ABC):
    name: str

    @abstractmethod
    def arity(self) -> int:
        ...

    @abstractmethod
    def invoke(self, interpreter: "Interpreter", arguments: List[Value]) -> Value:
        ...


class LoxFunction(LoxCallable):
    def __init__(self, declaration: FuncDef, closure: Environment, owner: Optional["LoxClass"] = None) -> None:
        self.declaration = declaration
        self.closure = closure
        # class whose method table holds this function; fixes what 'super' means
        self.owner = owner

    @property
    def name(self) -> str:
        return self.declaration.name.lexeme

    def arity(self) -> int:
        return len(self.declaration.params)

    def bind(self, instance: "LoxInstance") -> "LoxFunction":
        env = Environment(parent=self.closure)
        env.define("this", Value(TYPE_INSTANCE, instance))
        if self.owner is not None and self.owner.superclass is not None:
            env.define("super", Value(TYPE_CLASS, self.owner.superclass))
        return LoxFunction(self.declaration, env, self.owner)

    def invoke(self, interpreter: "Interpreter", arguments: List[Value]) -> Value:
        env = Environment(parent=self.closure)
        for param, argument in zip(self.declaration.params, arguments):
            env.define(param.lexeme, argument)
        outcome = interpreter._execute_block(self.declaration.body, env)
        if outcome is not None:
            return outcome.value
        return NIL

    def __str__(self) -> str:
        return f"<fn {self.name}>"


NativeImpl = Callable[["Interpreter", List[Value]], Any]


class NativeFunction(LoxCallable):
    def __init__(self, name: str, param_count: int, impl: NativeImpl) -> None:
        self.name = name
        self.param_count = param_count
        self.impl = impl

    def arity(self) -> int:
        return self.param_count

    def invoke(self, interpreter: "Interpreter", arguments: List[Value]) -> Value:
        try:
            return to_value(self.impl(interpreter, arguments))
        except (LoxRuntimeError, RecursionError):
            raise
        except Exception as exc:
            raise LoxRuntimeError(f"Native function '{self.name}' failed: {exc}", rule="EXT")

    def __str__(self) -> str:
        return "<native fn>"


class LoxClass(LoxCallable):
    def __init__(self, name: str, superclass: Optional["LoxClass"], methods: Optional[Dict[str, LoxFunction]] = None) -> None:
        self.name = name
        self.superclass = superclass
        self.methods: Dict[str, LoxFunction] = methods if methods is not None else {}

    def find_method(self, name: str) -> Optional[LoxFunction]:
        klass: Optional[LoxClass] = self
        while klass is not None:
            method = klass.methods.get(name)
            if method is not None:
                return method
            klass = klass.superclass
        return None

    def arity(self) -> int:
        initializer = self.find_method("init")
        if initializer is None:
            return 0
        return initializer.arity()

    def invoke(self, interpreter: "Interpreter", arguments: List[Value]) -> Value:
        instance = LoxInstance(self)
        initializer = self.find_method("init")
        if initializer is not None:
            # Whatever init returns, construction yields the instance.
            initializer.bind(instance).invoke(interpreter, arguments)
        return Value(TYPE_INSTANCE, instance)

    def __str__(self) -> str:
        return self.name


class LoxInstance:
    def __init__(self, klass: LoxClass) -> None:
        self.klass = klass
        self.fields: Dict[str, Value] = {}

    def get(self, name: str) -> Value:
        if name in self.fields:
            return self.fields[name]
        method = self.klass.find_method(name)
        if method is not None:
            return Value(TYPE_FUN, method.bind(self))
        raise UndefinedPropertyError(f"Undefined property '{name}'.")

    def set(self, name: str, value: Value) -> None:
        self.fields[name] = value

    def __str__(self) -> str:
        return f"{self.klass.name} instance"


@dataclass
class Frame:
    name: str
    frame_id: str
    call_location: Optional[SourceLocation]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, Any]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool, max_entries: int = 10000) -> None:
        self.verbose = verbose
        # Bounded so that long-running loops do not grow the log without limit.
        self.entries: Deque[StateEntry] = deque(maxlen=max_entries)
        self.next_state_index = 0
        self.last_state_id = "seed"
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        location: Optional[SourceLocation],
        statement: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            frame_id=frame.frame_id if frame else None,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    def forget_frame(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


@dataclass
class RuntimeFault:
    """Structured result of a top-level evaluation request that hit a runtime fault."""

    kind: str
    message: str
    lexeme: Optional[str]
    line: Optional[int]
    rule: Optional[str]
    step_index: Optional[int]
    traceback: List[TracebackFrame] = field(default_factory=list)


def _clock(_interpreter: "Interpreter", _args: List[Value]) -> Value:
    return Value(TYPE_NUM, time.time())


# Lox recursion runs on a dedicated thread so the Python recursion limit can
# be raised without overrunning the C stack. Each Lox call costs roughly ten
# Python frames.
EVAL_RECURSION_LIMIT = 50000
EVAL_STACK_SIZE = 512 * 1024 * 1024


class Interpreter:
    def __init__(
        self,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        max_log_entries: int = 10000,
        recursion_limit: int = EVAL_RECURSION_LIMIT,
    ) -> None:
        self.filename = filename
        self.verbose = verbose
        self.services = services or RuntimeServices()
        self.output_sink = output_sink or (lambda text: print(text))
        self.recursion_limit = recursion_limit

        self.globals = Environment()
        # Filled by the resolver: expression -> frame distance, or None for a global.
        self.locals: Dict[Expression, Optional[int]] = {}

        self.logger = StateLogger(verbose=verbose, max_entries=max_log_entries)
        self.logger.record(frame=None, location=None, statement="<seed>", rewrite_record={"rule": "SEED"})
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        self.global_frame = self._new_frame("<top-level>", None)
        self.call_stack.append(self.global_frame)

        self.globals.define("clock", Value(TYPE_FUN, NativeFunction("clock", 0, _clock)))
        # Extension natives cannot shadow existing globals.
        for spec in self.services.natives.values():
            if spec.name in self.globals.values:
                raise LoxExtensionError(f"Native function '{spec.name}' conflicts with an existing global")
            self.globals.define(spec.name, Value(TYPE_FUN, NativeFunction(spec.name, spec.arity, spec.impl)))

    def resolve(self, expression: Expression, depth: Optional[int]) -> None:
        self.locals[expression] = depth

    def stringify(self, value: Value) -> str:
        return format_value(value)

    def interpret(self, statements: List[Statement]) -> Optional[RuntimeFault]:
        """Execute top-level statements against the persistent global frame.

        Returns None on success or a RuntimeFault describing the first runtime
        fault. Output and state changes made before the fault are kept.
        Raises LoxFatalError when the evaluation stack is exhausted.
        """
        outcome: Dict[str, Any] = {}

        def _target() -> None:
            try:
                outcome["fault"] = self._interpret(statements)
            except BaseException as exc:
                # handed back to the calling thread below
                outcome["error"] = exc

        previous_limit = sys.getrecursionlimit()
        previous_stack = threading.stack_size(EVAL_STACK_SIZE)
        try:
            sys.setrecursionlimit(max(previous_limit, self.recursion_limit))
            worker = threading.Thread(target=_target, name="lox-eval", daemon=True)
            worker.start()
        finally:
            threading.stack_size(previous_stack)
        try:
            worker.join()
        finally:
            sys.setrecursionlimit(previous_limit)
        if "error" in outcome:
            raise outcome["error"]
        return outcome["fault"]

    def _interpret(self, statements: List[Statement]) -> Optional[RuntimeFault]:
        try:
            self._emit_event("program_start", self, statements, self.globals)
            outcome = self._execute_block(statements, self.globals)
            if outcome is not None:
                raise LoxRuntimeError(
                    "Can't return from top-level code.",
                    token=outcome.keyword,
                    rule=ReturnStatement.__name__,
                )
            self._emit_event("program_end", self, 0)
        except LoxRuntimeError as error:
            return self._fault(error)
        except RecursionError:
            self._reset_call_stack()
            raise LoxFatalError("Stack overflow.") from None
        except Exception as exc:
            # Convert unexpected Python-level exceptions into a fault so that
            # hosts (REPL/CLI) can keep going.
            loc = None
            if self.logger.entries:
                loc = self.logger.entries[-1].source_location
            return self._fault(LoxRuntimeError(f"Internal interpreter error: {exc}", location=loc, rule="internal"))
        return None

    def _reset_call_stack(self) -> None:
        for frame in self.call_stack[1:]:
            self.logger.forget_frame(frame.frame_id)
        self.call_stack = [self.global_frame]

    def _fault(self, error: LoxRuntimeError) -> RuntimeFault:
        if error.step_index is None and self.logger.entries:
            error.step_index = self.logger.entries[-1].step_index
        line: Optional[int] = None
        lexeme: Optional[str] = None
        if error.token is not None:
            line = error.token.line
            lexeme = error.token.lexeme
        elif error.location is not None:
            line = error.location.line
        fault = RuntimeFault(
            kind=error.kind,
            message=error.message,
            lexeme=lexeme,
            line=line,
            rule=error.rule,
            step_index=error.step_index,
            traceback=TracebackFormatter(self).build_frames(),
        )
        # back to the single top-level frame to keep the host usable
        self._reset_call_stack()
        self.services.emit("on_error", self, fault)
        return fault

    def _execute_block(self, statements: List[Statement], env: Environment) -> Optional[ReturnOutcome]:
        emit_event = self._emit_event
        execute_stmt = self._execute_statement
        for statement in statements:
            emit_event("before_statement", self, statement, env)
            outcome = execute_stmt(statement, env)
            emit_event("after_statement", self, statement, env)
            if outcome is not None:
                return outcome
        return None

    def _execute_statement(self, statement: Statement, env: Environment) -> Optional[ReturnOutcome]:
        self._log_step(rule=statement.__class__.__name__, location=statement.location, env=env)
        if isinstance(statement, ExpressionStatement):
            self._evaluate(statement.expression, env)
            return None
        if isinstance(statement, PrintStatement):
            text = self.stringify(self._evaluate(statement.expression, env))
            self.output_sink(text)
            self._emit_event("on_print", self, text)
            return None
        if isinstance(statement, VarDecl):
            value = UNINITIALIZED
            if statement.initializer is not None:
                value = self._evaluate(statement.initializer, env)
            env.define(statement.name.lexeme, value)
            return None
        if isinstance(statement, Block):
            # The child frame is simply dropped on every exit path.
            return self._execute_block(statement.statements, Environment(parent=env))
        if isinstance(statement, IfStatement):
            if is_truthy(self._evaluate(statement.condition, env)):
                return self._execute_statement(statement.then_branch, env)
            if statement.else_branch is not None:
                return self._execute_statement(statement.else_branch, env)
            return None
        if isinstance(statement, WhileStatement):
            return self._execute_while(statement, env)
        if isinstance(statement, FuncDef):
            function = LoxFunction(statement, env)
            env.define(statement.name.lexeme, Value(TYPE_FUN, function))
            return None
        if isinstance(statement, ReturnStatement):
            value = NIL
            if statement.value is not None:
                value = self._evaluate(statement.value, env)
            return ReturnOutcome(value=value, keyword=statement.keyword)
        if isinstance(statement, ClassDef):
            self._execute_class(statement, env)
            return None
        raise LoxRuntimeError("Unsupported statement", location=statement.location)

    def _execute_while(self, statement: WhileStatement, env: Environment) -> Optional[ReturnOutcome]:
        eval_expr = self._evaluate
        execute_stmt = self._execute_statement
        while is_truthy(eval_expr(statement.condition, env)):
            outcome = execute_stmt(statement.body, env)
            if outcome is not None:
                return outcome
        return None

    def _execute_class(self, statement: ClassDef, env: Environment) -> None:
        superclass: Optional[LoxClass] = None
        if statement.superclass is not None:
            super_value = self._evaluate(statement.superclass, env)
            if super_value.type != TYPE_CLASS:
                raise LoxTypeError(
                    "Superclass must be a class.",
                    token=statement.superclass.name,
                    location=statement.superclass.location,
                    rule=ClassDef.__name__,
                )
            superclass = super_value.value
        klass = LoxClass(statement.name.lexeme, superclass)
        for method in statement.methods:
            klass.methods[method.name.lexeme] = LoxFunction(method, env, owner=klass)
        env.define(statement.name.lexeme, Value(TYPE_CLASS, klass))

    def _evaluate(self, expression: Expression, env: Environment) -> Value:
        if isinstance(expression, Literal):
            return self._literal(expression.value)
        if isinstance(expression, Grouping):
            return self._evaluate(expression.expression, env)
        if isinstance(expression, Unary):
            return self._evaluate_unary(expression, env)
        if isinstance(expression, Binary):
            return self._evaluate_binary(expression, env)
        if isinstance(expression, Logical):
            left = self._evaluate(expression.left, env)
            if expression.operator.type == "OR":
                if is_truthy(left):
                    return left
            elif not is_truthy(left):
                return left
            return self._evaluate(expression.right, env)
        if isinstance(expression, Variable):
            return self._look_up(expression.name, expression, env)
        if isinstance(expression, Assign):
            value = self._evaluate(expression.value, env)
            self._assign(expression, value, env)
            return value
        if isinstance(expression, Call):
            return self._evaluate_call(expression, env)
        if isinstance(expression, Get):
            target = self._evaluate(expression.object, env)
            if target.type != TYPE_INSTANCE:
                raise LoxTypeError(
                    "Only instances have properties.", token=expression.name, location=expression.location, rule="Get"
                )
            try:
                return target.value.get(expression.name.lexeme)
            except LoxRuntimeError as err:
                raise err.attach(expression.name, expression.location, "Get")
        if isinstance(expression, Set):
            target = self._evaluate(expression.object, env)
            if target.type != TYPE_INSTANCE:
                raise LoxTypeError(
                    "Only instances have fields.", token=expression.name, location=expression.location, rule="Set"
                )
            value = self._evaluate(expression.value, env)
            target.value.set(expression.name.lexeme, value)
            return value
        if isinstance(expression, This):
            return self._look_up(expression.keyword, expression, env)
        if isinstance(expression, Super):
            return self._evaluate_super(expression, env)
        raise LoxRuntimeError("Unsupported expression", location=expression.location)

    def _literal(self, raw: Any) -> Value:
        if raw is None:
            return NIL
        if isinstance(raw, bool):
            return bool_value(raw)
        if isinstance(raw, float):
            return Value(TYPE_NUM, raw)
        if isinstance(raw, str):
            return Value(TYPE_STR, raw)
        return to_value(raw)

    def _evaluate_unary(self, expression: Unary, env: Environment) -> Value:
        right = self._evaluate(expression.right, env)
        op = expression.operator.type
        if op == "BANG":
            return bool_value(not is_truthy(right))
        if op == "MINUS":
            if right.type != TYPE_NUM:
                raise LoxTypeError(
                    "Operand must be a number.", token=expression.operator, location=expression.location, rule="Unary"
                )
            return Value(TYPE_NUM, -right.value)
        raise LoxRuntimeError(f"Unsupported unary operator '{expression.operator.lexeme}'", location=expression.location)

    def _evaluate_binary(self, expression: Binary, env: Environment) -> Value:
        left = self._evaluate(expression.left, env)
        right = self._evaluate(expression.right, env)
        operator = expression.operator
        op = operator.type
        if op == "EQUAL_EQUAL":
            return bool_value(values_equal(left, right))
        if op == "BANG_EQUAL":
            return bool_value(not values_equal(left, right))
        if op == "PLUS":
            if left.type == TYPE_NUM and right.type == TYPE_NUM:
                return Value(TYPE_NUM, left.value + right.value)
            if left.type == TYPE_STR and right.type == TYPE_STR:
                return Value(TYPE_STR, left.value + right.value)
            raise LoxTypeError(
                "Operands must be two numbers or two strings.", token=operator, location=expression.location, rule="Binary"
            )
        if left.type != TYPE_NUM or right.type != TYPE_NUM:
            raise LoxTypeError("Operands must be numbers.", token=operator, location=expression.location, rule="Binary")
        a: float = left.value
        b: float = right.value
        if op == "MINUS":
            return Value(TYPE_NUM, a - b)
        if op == "STAR":
            return Value(TYPE_NUM, a * b)
        if op == "SLASH":
            return Value(TYPE_NUM, self._divide(a, b))
        if op == "GREATER":
            return bool_value(a > b)
        if op == "GREATER_EQUAL":
            return bool_value(a >= b)
        if op == "LESS":
            return bool_value(a < b)
        if op == "LESS_EQUAL":
            return bool_value(a <= b)
        raise LoxRuntimeError(f"Unsupported binary operator '{operator.lexeme}'", location=expression.location)

    def _divide(self, a: float, b: float) -> float:
        # IEEE-754 semantics: x/0 is +-Infinity and 0/0 is NaN instead of an error.
        with np.errstate(divide="ignore", invalid="ignore"):
            return float(np.float64(a) / np.float64(b))

    def _evaluate_call(self, expression: Call, env: Environment) -> Value:
        callee = self._evaluate(expression.callee, env)
        eval_expr = self._evaluate
        arguments: List[Value] = [eval_expr(argument, env) for argument in expression.arguments]
        if callee.type not in CALLABLE_TYPES:
            raise NotCallableError(
                "Can only call functions and classes.", token=expression.paren, location=expression.location, rule="Call"
            )
        function: LoxCallable = callee.value
        arity = function.arity()
        if len(arguments) != arity:
            raise ArityError(
                f"Expected {arity} arguments but got {len(arguments)}.",
                token=expression.paren,
                location=expression.location,
                rule="Call",
            )
        self._log_step(rule="Call", location=expression.location, env=env, extra={"callee": function.name, "argc": arity})
        self._emit_event("before_call", self, function.name, arguments, env, expression.location)
        frame = self._new_frame(function.name, expression.location)
        self.call_stack.append(frame)
        try:
            result = function.invoke(self, arguments)
        except LoxRuntimeError as err:
            # Faults raised inside natives carry no position of their own.
            raise err.attach(expression.paren, expression.location, "Call")
        # Frames of a faulting call stay on the stack for the traceback.
        self.call_stack.pop()
        self.logger.forget_frame(frame.frame_id)
        self._emit_event("after_call", self, function.name, result, env, expression.location)
        return result

    def _evaluate_super(self, expression: Super, env: Environment) -> Value:
        if expression in self.locals and self.locals[expression] is not None:
            holder: Optional[Environment] = env.ancestor(self.locals[expression])
        else:
            holder = env._find_env("super")
        if holder is None or "super" not in holder.values:
            raise UndefinedVariableError(
                "Undefined variable 'super'.", token=expression.keyword, location=expression.location, rule="Super"
            )
        # 'this' lives in the same bound-method frame as 'super'.
        superclass: LoxClass = holder.values["super"].value
        receiver: LoxInstance = holder.values["this"].value
        method = superclass.find_method(expression.method.lexeme)
        if method is None:
            raise UndefinedPropertyError(
                f"Undefined property '{expression.method.lexeme}'.",
                token=expression.method,
                location=expression.location,
                rule="Super",
            )
        return Value(TYPE_FUN, method.bind(receiver))

    def _look_up(self, name: Token, expression: Expression, env: Environment) -> Value:
        try:
            if expression in self.locals:
                distance = self.locals[expression]
                if distance is None:
                    return self.globals.get(name.lexeme)
                return env.get_at(distance, name.lexeme)
            return env.get(name.lexeme)
        except LoxRuntimeError as err:
            raise err.attach(name, expression.location, expression.__class__.__name__)

    def _assign(self, expression: Assign, value: Value, env: Environment) -> None:
        name = expression.name.lexeme
        try:
            if expression in self.locals:
                distance = self.locals[expression]
                if distance is None:
                    self.globals.assign(name, value)
                else:
                    env.assign_at(distance, name, value)
                return
            env.assign(name, value)
        except LoxRuntimeError as err:
            raise err.attach(expression.name, expression.location, "Assign")

    def _new_frame(self, name: str, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, call_location=call_location)

    def _emit_event(self, event: str, *args: Any) -> None:
        try:
            self.services.emit(event, *args)
        except (LoxRuntimeError, RecursionError):
            raise
        except Exception as exc:
            loc = None
            if self.logger.entries:
                loc = self.logger.entries[-1].source_location
            raise LoxRuntimeError(f"Extension hook '{event}' failed: {exc}", location=loc, rule="EXT")

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        env: Optional[Environment],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        env_snapshot = env.snapshot() if (self.verbose and env is not None) else None
        statement = location.statement if location else None
        rewrite = {"rule": rule}
        if extra:
            rewrite.update(extra)
        entry = self.logger.record(
            frame=frame,
            location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )

        # Run extension step rules (every N steps) after recording.
        try:
            self.services.after_step(
                self,
                StepContext(step_index=entry.step_index, rule=rule, location=location, extra=extra),
            )
        except (LoxRuntimeError, RecursionError):
            raise
        except Exception as exc:
            raise LoxRuntimeError(f"Extension step rule failed: {exc}", location=location, rule="EXT")


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_entry_for_frame(frame.frame_id)
            location = entry.source_location if entry else frame.call_location
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    location=location,
                    statement=entry.statement if entry else None,
                    state_entry=entry,
                )
            )
        return frames

    @staticmethod
    def format_text(fault: RuntimeFault, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in fault.traceback:
            if frame.location:
                lines.append(f"  File \"{frame.location.file}\", line {frame.location.line}, in {frame.name}")
                if frame.statement:
                    lines.append(f"    {frame.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        where = f" [line {fault.line}]" if fault.line is not None else ""
        lines.append(f"{fault.kind}: {fault.message}{where}")
        return "\n".join(lines)

    @staticmethod
    def to_json(fault: RuntimeFault) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(fault.traceback):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
                if frame.state_entry.rewrite_record is not None:
                    entry["rewrite_record"] = frame.state_entry.rewrite_record
            frames_json.append(entry)
        data = {
            "error": {
                "type": fault.kind,
                "message": fault.message,
                "lexeme": fault.lexeme,
                "line": fault.line,
                "failing_step_index": fault.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
