"""Static resolution pass.

Walks a parsed statement list once before execution and tells the
interpreter, for every local variable reference, how many enclosing frames
separate the reference from the frame that declares the name. The scope stack
kept here mirrors the frames the interpreter creates at runtime:

- a block statement opens one frame
- a function call opens one frame holding the parameters and the body
- binding a method opens one frame holding ``this`` (and ``super`` when the
  class has a superclass)

Names not found in any local scope are recorded as globals; the interpreter
then looks them up by name in the global frame only. Skipping this pass
entirely is also valid, since the interpreter falls back to a name search
through the environment chain.

The pass also reports static misuse that the grammar alone cannot reject.
"""

from __future__ import annotations
from typing import Dict, List

from lexer import Diagnostic, LoxSyntaxError, Token
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
    Statement,
    Super,
    This,
    Unary,
    VarDecl,
    Variable,
    WhileStatement,
)


class LoxResolveError(LoxSyntaxError):
    """Raised when static resolution finds misuse."""


FUNCTION_NONE = "NONE"
FUNCTION_FUNCTION = "FUNCTION"
FUNCTION_METHOD = "METHOD"

CLASS_NONE = "NONE"
CLASS_CLASS = "CLASS"
CLASS_SUBCLASS = "SUBCLASS"


class Resolver:
    def __init__(self, interpreter) -> None:
        self.interpreter = interpreter
        # name -> True once the initializer has finished
        self.scopes: List[Dict[str, bool]] = []
        self.current_function = FUNCTION_NONE
        self.current_class = CLASS_NONE
        self.errors: List[Diagnostic] = []

    def resolve(self, statements: List[Statement]) -> None:
        self._resolve_statements(statements)
        if self.errors:
            raise LoxResolveError(self.errors)

    def _resolve_statements(self, statements: List[Statement]) -> None:
        for statement in statements:
            self._resolve_statement(statement)

    def _resolve_statement(self, statement: Statement) -> None:
        if isinstance(statement, Block):
            self._begin_scope()
            self._resolve_statements(statement.statements)
            self._end_scope()
            return
        if isinstance(statement, VarDecl):
            self._declare(statement.name)
            if statement.initializer is not None:
                self._resolve_expression(statement.initializer)
            self._define(statement.name)
            return
        if isinstance(statement, FuncDef):
            # Defined before the body so the function can call itself.
            self._declare(statement.name)
            self._define(statement.name)
            self._resolve_function(statement, FUNCTION_FUNCTION)
            return
        if isinstance(statement, ClassDef):
            self._resolve_class(statement)
            return
        if isinstance(statement, (ExpressionStatement, PrintStatement)):
            self._resolve_expression(statement.expression)
            return
        if isinstance(statement, IfStatement):
            self._resolve_expression(statement.condition)
            self._resolve_statement(statement.then_branch)
            if statement.else_branch is not None:
                self._resolve_statement(statement.else_branch)
            return
        if isinstance(statement, WhileStatement):
            self._resolve_expression(statement.condition)
            self._resolve_statement(statement.body)
            return
        if isinstance(statement, ReturnStatement):
            if self.current_function == FUNCTION_NONE:
                self._error(statement.keyword, "Can't return from top-level code.")
            if statement.value is not None:
                self._resolve_expression(statement.value)
            return
        raise TypeError(f"Unsupported statement {type(statement).__name__}")

    def _resolve_class(self, statement: ClassDef) -> None:
        enclosing_class = self.current_class
        self.current_class = CLASS_CLASS
        self._declare(statement.name)
        self._define(statement.name)

        if statement.superclass is not None:
            if statement.superclass.name.lexeme == statement.name.lexeme:
                self._error(statement.superclass.name, "A class can't inherit from itself.")
            self.current_class = CLASS_SUBCLASS
            self._resolve_expression(statement.superclass)

        # One frame per bound method: 'this' plus 'super' for subclasses.
        self._begin_scope()
        self.scopes[-1]["this"] = True
        if statement.superclass is not None:
            self.scopes[-1]["super"] = True
        for method in statement.methods:
            self._resolve_function(method, FUNCTION_METHOD)
        self._end_scope()

        self.current_class = enclosing_class

    def _resolve_function(self, function: FuncDef, kind: str) -> None:
        enclosing_function = self.current_function
        self.current_function = kind
        self._begin_scope()
        for param in function.params:
            self._declare(param)
            self._define(param)
        self._resolve_statements(function.body)
        self._end_scope()
        self.current_function = enclosing_function

    def _resolve_expression(self, expression: Expression) -> None:
        if isinstance(expression, Variable):
            if self.scopes and self.scopes[-1].get(expression.name.lexeme) is False:
                self._error(expression.name, "Can't read local variable in its own initializer.")
            self._resolve_local(expression, expression.name.lexeme)
            return
        if isinstance(expression, Assign):
            self._resolve_expression(expression.value)
            self._resolve_local(expression, expression.name.lexeme)
            return
        if isinstance(expression, (Binary, Logical)):
            self._resolve_expression(expression.left)
            self._resolve_expression(expression.right)
            return
        if isinstance(expression, Unary):
            self._resolve_expression(expression.right)
            return
        if isinstance(expression, Grouping):
            self._resolve_expression(expression.expression)
            return
        if isinstance(expression, Literal):
            return
        if isinstance(expression, Call):
            self._resolve_expression(expression.callee)
            for argument in expression.arguments:
                self._resolve_expression(argument)
            return
        if isinstance(expression, Get):
            self._resolve_expression(expression.object)
            return
        if isinstance(expression, Set):
            self._resolve_expression(expression.value)
            self._resolve_expression(expression.object)
            return
        if isinstance(expression, This):
            if self.current_class == CLASS_NONE:
                self._error(expression.keyword, "Can't use 'this' outside of a class.")
                return
            self._resolve_local(expression, "this")
            return
        if isinstance(expression, Super):
            if self.current_class == CLASS_NONE:
                self._error(expression.keyword, "Can't use 'super' outside of a class.")
            elif self.current_class != CLASS_SUBCLASS:
                self._error(expression.keyword, "Can't use 'super' in a class with no superclass.")
            self._resolve_local(expression, "super")
            return
        raise TypeError(f"Unsupported expression {type(expression).__name__}")

    def _resolve_local(self, expression: Expression, name: str) -> None:
        for depth, scope in enumerate(reversed(self.scopes)):
            if name in scope:
                self.interpreter.resolve(expression, depth)
                return
        # None marks a global: looked up by name in the global frame only.
        self.interpreter.resolve(expression, None)

    def _begin_scope(self) -> None:
        self.scopes.append({})

    def _end_scope(self) -> None:
        self.scopes.pop()

    def _declare(self, name: Token) -> None:
        if not self.scopes:
            return
        scope = self.scopes[-1]
        if name.lexeme in scope:
            self._error(name, "Already a variable with this name in this scope.")
        scope[name.lexeme] = False

    def _define(self, name: Token) -> None:
        if not self.scopes:
            return
        self.scopes[-1][name.lexeme] = True

    def _error(self, token: Token, message: str) -> None:
        where = " at end" if token.type == "EOF" else f" at '{token.lexeme}'"
        self.errors.append(Diagnostic(token.line, where, message))
