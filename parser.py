from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional

from lexer import Diagnostic, LoxParseError, Token


MAX_ARGUMENTS = 255


@dataclass(eq=False)
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


# Nodes hash by identity so the resolver can key depths on them.
@dataclass(eq=False)
class Node:
    location: SourceLocation


@dataclass(eq=False)
class Program(Node):
    statements: List["Statement"]


class Statement(Node):
    pass


class Expression(Node):
    pass


@dataclass(eq=False)
class ExpressionStatement(Statement):
    expression: Expression


@dataclass(eq=False)
class PrintStatement(Statement):
    expression: Expression


@dataclass(eq=False)
class VarDecl(Statement):
    name: Token
    initializer: Optional[Expression]


@dataclass(eq=False)
class Block(Statement):
    statements: List[Statement]


@dataclass(eq=False)
class IfStatement(Statement):
    condition: Expression
    then_branch: Statement
    else_branch: Optional[Statement]


@dataclass(eq=False)
class WhileStatement(Statement):
    condition: Expression
    body: Statement


@dataclass(eq=False)
class FuncDef(Statement):
    name: Token
    params: List[Token]
    body: List[Statement]


@dataclass(eq=False)
class ReturnStatement(Statement):
    keyword: Token
    value: Optional[Expression]


@dataclass(eq=False)
class ClassDef(Statement):
    name: Token
    superclass: Optional["Variable"]
    methods: List[FuncDef]


@dataclass(eq=False)
class Literal(Expression):
    value: Any


@dataclass(eq=False)
class Grouping(Expression):
    expression: Expression


@dataclass(eq=False)
class Unary(Expression):
    operator: Token
    right: Expression


@dataclass(eq=False)
class Binary(Expression):
    left: Expression
    operator: Token
    right: Expression


@dataclass(eq=False)
class Logical(Expression):
    left: Expression
    operator: Token
    right: Expression


@dataclass(eq=False)
class Variable(Expression):
    name: Token


@dataclass(eq=False)
class Assign(Expression):
    name: Token
    value: Expression


@dataclass(eq=False)
class Call(Expression):
    callee: Expression
    paren: Token
    arguments: List[Expression]


@dataclass(eq=False)
class Get(Expression):
    object: Expression
    name: Token


@dataclass(eq=False)
class Set(Expression):
    object: Expression
    name: Token
    value: Expression


@dataclass(eq=False)
class This(Expression):
    keyword: Token


@dataclass(eq=False)
class Super(Expression):
    keyword: Token
    method: Token


class _ParseAbort(Exception):
    """Unwinds the current declaration so the parser can resynchronize."""


# Keywords that begin a new statement; recovery stops in front of them.
STATEMENT_STARTS = {"CLASS", "FUN", "VAR", "FOR", "IF", "WHILE", "PRINT", "RETURN"}


class Parser:
    def __init__(
        self,
        tokens: List[Token],
        filename: str = "<string>",
        source_lines: Optional[List[str]] = None,
    ):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines or []
        self.index = 0
        self.errors: List[Diagnostic] = []

    def parse(self) -> Program:
        statements: List[Statement] = []
        while not self._at_end():
            declaration = self._parse_declaration()
            if declaration is not None:
                statements.append(declaration)
        if self.errors:
            raise LoxParseError(self.errors)
        eof_token: Token = self._peek()
        return Program(location=self._location_from_token(eof_token), statements=statements)

    def _parse_declaration(self) -> Optional[Statement]:
        try:
            if self._match("CLASS"):
                return self._parse_class()
            if self._match("FUN"):
                return self._parse_function("function")
            if self._match("VAR"):
                return self._parse_var()
            return self._parse_statement()
        except _ParseAbort:
            self._synchronize()
            return None

    def _parse_class(self) -> ClassDef:
        keyword = self._previous()
        name = self._consume("IDENT", "Expect class name.")
        superclass: Optional[Variable] = None
        if self._match("LESS"):
            super_name = self._consume("IDENT", "Expect superclass name.")
            superclass = Variable(location=self._location_from_token(super_name), name=super_name)
        self._consume("LBRACE", "Expect '{' before class body.")
        methods: List[FuncDef] = []
        while not self._check("RBRACE") and not self._at_end():
            methods.append(self._parse_function("method"))
        self._consume("RBRACE", "Expect '}' after class body.")
        return ClassDef(location=self._location_from_token(keyword), name=name, superclass=superclass, methods=methods)

    def _parse_function(self, kind: str) -> FuncDef:
        name = self._consume("IDENT", f"Expect {kind} name.")
        self._consume("LPAREN", f"Expect '(' after {kind} name.")
        params: List[Token] = []
        if not self._check("RPAREN"):
            while True:
                if len(params) >= MAX_ARGUMENTS:
                    self._error(self._peek(), f"Can't have more than {MAX_ARGUMENTS} parameters.")
                params.append(self._consume("IDENT", "Expect parameter name."))
                if not self._match("COMMA"):
                    break
        self._consume("RPAREN", "Expect ')' after parameters.")
        self._consume("LBRACE", f"Expect '{{' before {kind} body.")
        body = self._parse_block_statements()
        return FuncDef(location=self._location_from_token(name), name=name, params=params, body=body)

    def _parse_var(self) -> VarDecl:
        name = self._consume("IDENT", "Expect variable name.")
        initializer: Optional[Expression] = None
        if self._match("EQUAL"):
            initializer = self._parse_expression()
        self._consume("SEMICOLON", "Expect ';' after variable declaration.")
        return VarDecl(location=self._location_from_token(name), name=name, initializer=initializer)

    def _parse_statement(self) -> Statement:
        if self._match("FOR"):
            return self._parse_for()
        if self._match("WHILE"):
            return self._parse_while()
        if self._match("IF"):
            return self._parse_if()
        if self._match("PRINT"):
            return self._parse_print()
        if self._match("RETURN"):
            return self._parse_return()
        if self._match("LBRACE"):
            brace = self._previous()
            return Block(location=self._location_from_token(brace), statements=self._parse_block_statements())
        return self._parse_expression_statement()

    def _parse_for(self) -> Statement:
        keyword = self._previous()
        location = self._location_from_token(keyword)
        self._consume("LPAREN", "Expect '(' after 'for'.")
        initializer: Optional[Statement]
        if self._match("SEMICOLON"):
            initializer = None
        elif self._match("VAR"):
            initializer = self._parse_var()
        else:
            initializer = self._parse_expression_statement()
        condition: Optional[Expression] = None
        if not self._check("SEMICOLON"):
            condition = self._parse_expression()
        self._consume("SEMICOLON", "Expect ';' after loop condition.")
        increment: Optional[Expression] = None
        if not self._check("RPAREN"):
            increment = self._parse_expression()
        self._consume("RPAREN", "Expect ')' after for clauses.")
        body: Statement = self._parse_statement()

        # for (init; cond; incr) body  =>  { init; while (cond) { body; incr; } }
        if increment is not None:
            body = Block(
                location=location,
                statements=[body, ExpressionStatement(location=increment.location, expression=increment)],
            )
        if condition is None:
            condition = Literal(location=location, value=True)
        body = WhileStatement(location=location, condition=condition, body=body)
        if initializer is not None:
            body = Block(location=location, statements=[initializer, body])
        return body

    def _parse_while(self) -> WhileStatement:
        keyword = self._previous()
        condition = self._parse_parenthesized_expression("while")
        body = self._parse_statement()
        return WhileStatement(location=self._location_from_token(keyword), condition=condition, body=body)

    def _parse_if(self) -> IfStatement:
        keyword = self._previous()
        condition = self._parse_parenthesized_expression("if")
        then_branch = self._parse_statement()
        else_branch: Optional[Statement] = None
        if self._match("ELSE"):
            else_branch = self._parse_statement()
        return IfStatement(
            location=self._location_from_token(keyword),
            condition=condition,
            then_branch=then_branch,
            else_branch=else_branch,
        )

    def _parse_print(self) -> PrintStatement:
        keyword = self._previous()
        value = self._parse_expression()
        self._consume("SEMICOLON", "Expect ';' after value.")
        return PrintStatement(location=self._location_from_token(keyword), expression=value)

    def _parse_return(self) -> ReturnStatement:
        keyword = self._previous()
        value: Optional[Expression] = None
        if not self._check("SEMICOLON"):
            value = self._parse_expression()
        self._consume("SEMICOLON", "Expect ';' after return value.")
        return ReturnStatement(location=self._location_from_token(keyword), keyword=keyword, value=value)

    def _parse_expression_statement(self) -> ExpressionStatement:
        expr = self._parse_expression()
        self._consume("SEMICOLON", "Expect ';' after expression.")
        return ExpressionStatement(location=expr.location, expression=expr)

    def _parse_block_statements(self) -> List[Statement]:
        statements: List[Statement] = []
        while not self._check("RBRACE") and not self._at_end():
            declaration = self._parse_declaration()
            if declaration is not None:
                statements.append(declaration)
        self._consume("RBRACE", "Expect '}' after block.")
        return statements

    def _parse_parenthesized_expression(self, keyword: str) -> Expression:
        self._consume("LPAREN", f"Expect '(' after '{keyword}'.")
        expr = self._parse_expression()
        self._consume("RPAREN", f"Expect ')' after {keyword} condition.")
        return expr

    def _parse_expression(self) -> Expression:
        return self._parse_assignment()

    def _parse_assignment(self) -> Expression:
        expr = self._parse_or()
        if self._match("EQUAL"):
            equals = self._previous()
            value = self._parse_assignment()
            if isinstance(expr, Variable):
                return Assign(location=expr.location, name=expr.name, value=value)
            if isinstance(expr, Get):
                return Set(location=expr.location, object=expr.object, name=expr.name, value=value)
            # Reported without unwinding; the parse is still well-formed.
            self._error(equals, "Invalid assignment target.")
        return expr

    def _parse_or(self) -> Expression:
        expr = self._parse_and()
        while self._match("OR"):
            operator = self._previous()
            right = self._parse_and()
            expr = Logical(location=self._location_from_token(operator), left=expr, operator=operator, right=right)
        return expr

    def _parse_and(self) -> Expression:
        expr = self._parse_binary_level(0)
        while self._match("AND"):
            operator = self._previous()
            right = self._parse_binary_level(0)
            expr = Logical(location=self._location_from_token(operator), left=expr, operator=operator, right=right)
        return expr

    # equality, comparison, term, factor: all left-associative
    _BINARY_LEVELS = (
        ("BANG_EQUAL", "EQUAL_EQUAL"),
        ("GREATER", "GREATER_EQUAL", "LESS", "LESS_EQUAL"),
        ("MINUS", "PLUS"),
        ("SLASH", "STAR"),
    )

    def _parse_binary_level(self, level: int) -> Expression:
        if level == len(self._BINARY_LEVELS):
            return self._parse_unary()
        expr = self._parse_binary_level(level + 1)
        while self._match(*self._BINARY_LEVELS[level]):
            operator = self._previous()
            right = self._parse_binary_level(level + 1)
            expr = Binary(location=self._location_from_token(operator), left=expr, operator=operator, right=right)
        return expr

    def _parse_unary(self) -> Expression:
        if self._match("BANG", "MINUS"):
            operator = self._previous()
            right = self._parse_unary()
            return Unary(location=self._location_from_token(operator), operator=operator, right=right)
        return self._parse_call()

    def _parse_call(self) -> Expression:
        expr = self._parse_primary()
        while True:
            if self._match("LPAREN"):
                expr = self._finish_call(expr)
            elif self._match("DOT"):
                name = self._consume("IDENT", "Expect property name after '.'.")
                expr = Get(location=self._location_from_token(name), object=expr, name=name)
            else:
                break
        return expr

    def _finish_call(self, callee: Expression) -> Call:
        arguments: List[Expression] = []
        if not self._check("RPAREN"):
            while True:
                if len(arguments) >= MAX_ARGUMENTS:
                    self._error(self._peek(), f"Can't have more than {MAX_ARGUMENTS} arguments.")
                arguments.append(self._parse_expression())
                if not self._match("COMMA"):
                    break
        paren = self._consume("RPAREN", "Expect ')' after arguments.")
        return Call(location=self._location_from_token(paren), callee=callee, paren=paren, arguments=arguments)

    def _parse_primary(self) -> Expression:
        token = self._peek()
        location = self._location_from_token(token)
        if self._match("FALSE"):
            return Literal(location=location, value=False)
        if self._match("TRUE"):
            return Literal(location=location, value=True)
        if self._match("NIL"):
            return Literal(location=location, value=None)
        if self._match("NUMBER", "STRING"):
            return Literal(location=location, value=token.literal)
        if self._match("THIS"):
            return This(location=location, keyword=token)
        if self._match("SUPER"):
            self._consume("DOT", "Expect '.' after 'super'.")
            method = self._consume("IDENT", "Expect superclass method name.")
            return Super(location=location, keyword=token, method=method)
        if self._match("IDENT"):
            return Variable(location=location, name=token)
        if self._match("LPAREN"):
            expr = self._parse_expression()
            self._consume("RPAREN", "Expect ')' after expression.")
            return Grouping(location=location, expression=expr)
        raise self._error(token, "Expect expression.")

    def _synchronize(self) -> None:
        self._advance()
        while not self._at_end():
            if self._previous().type == "SEMICOLON":
                return
            if self._peek().type in STATEMENT_STARTS:
                return
            self._advance()

    def _error(self, token: Token, message: str) -> _ParseAbort:
        where = " at end" if token.type == "EOF" else f" at '{token.lexeme}'"
        self.errors.append(Diagnostic(token.line, where, message))
        return _ParseAbort(message)

    def _consume(self, token_type: str, message: str) -> Token:
        if self._check(token_type):
            return self._advance()
        raise self._error(self._peek(), message)

    def _match(self, *token_types: str) -> bool:
        if self._peek().type in token_types:
            self._advance()
            return True
        return False

    def _check(self, token_type: str) -> bool:
        return self._peek().type == token_type

    def _at_end(self) -> bool:
        return self._peek().type == "EOF"

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        if token.type != "EOF":
            self.index += 1
        return token

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _previous(self) -> Token:
        return self.tokens[self.index - 1]

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)
