from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import pytest

from interpreter import Interpreter, RuntimeFault
from lexer import Lexer
from parser import Parser
from resolver import Resolver


@dataclass
class RunResult:
    output: List[str]
    fault: Optional[RuntimeFault]
    interpreter: Interpreter = field(repr=False)


def parse(source: str, filename: str = "<test>"):
    tokens = Lexer(source, filename).tokenize()
    return Parser(tokens, filename, source.splitlines()).parse().statements


def execute(source: str, *, resolve: bool = True, interpreter: Optional[Interpreter] = None, **kwargs) -> RunResult:
    output: List[str] = []
    if interpreter is None:
        interpreter = Interpreter(filename="<test>", output_sink=output.append, **kwargs)
    else:
        interpreter.output_sink = output.append
    statements = parse(source)
    if resolve:
        Resolver(interpreter).resolve(statements)
    fault = interpreter.interpret(statements)
    return RunResult(output=output, fault=fault, interpreter=interpreter)


@pytest.fixture(params=[True, False], ids=["resolved", "unresolved"])
def run(request):
    """Run source with and without the static resolution pass."""

    def _run(source: str, **kwargs) -> RunResult:
        return execute(source, resolve=request.param, **kwargs)

    return _run
