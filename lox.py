"""Lox entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from extensions import LoxExtensionError, RuntimeServices, load_runtime_services
from interpreter import Interpreter, LoxFatalError, RuntimeFault, TracebackFormatter
from lexer import Lexer, LoxSyntaxError
from parser import Parser, Statement
from resolver import Resolver

EXIT_OK = 0
EXIT_USAGE = 64
EXIT_DATAERR = 65
EXIT_SOFTWARE = 70
EXIT_IOERR = 74


def _parse_statements_from_source(text: str, filename: str) -> List[Statement]:
    lexer = Lexer(text, filename)
    tokens = lexer.tokenize()
    parser = Parser(tokens, filename, text.splitlines())
    program = parser.parse()
    return program.statements


def _prepare(interpreter: Interpreter, text: str, filename: str, resolve: bool) -> List[Statement]:
    statements = _parse_statements_from_source(text, filename)
    if resolve:
        Resolver(interpreter).resolve(statements)
    return statements


def _report_fault(fault: RuntimeFault, verbose: bool, as_json: bool) -> None:
    print(TracebackFormatter.format_text(fault, verbose=verbose), file=sys.stderr)
    if as_json:
        print(TracebackFormatter.to_json(fault), file=sys.stderr)


def run_repl(verbose: bool, services: Optional[RuntimeServices] = None, resolve: bool = True) -> int:
    print("Lox REPL. Enter statements, blank line to run buffer.")
    interpreter = Interpreter(filename="<stdin>", verbose=verbose, services=services)
    buffer: List[str] = []

    def _run(text: str) -> None:
        statements = _prepare(interpreter, text, "<stdin>", resolve)
        fault = interpreter.interpret(statements)
        if fault is not None:
            _report_fault(fault, verbose, as_json=False)

    while True:
        prompt = ">>> " if not buffer else "..> "
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        stripped = line.strip()
        if not buffer and stripped != "" and not stripped.endswith("{"):
            try:
                _run(line)
            except LoxSyntaxError:
                # If a single-line parse fails, treat it as start of multi-line input
                buffer.append(line)
            except LoxFatalError as error:
                print(f"Fatal: {error}", file=sys.stderr)
            continue

        if stripped == "" and buffer:
            source_text = "\n".join(buffer)
            buffer.clear()
            try:
                _run(source_text)
            except LoxSyntaxError as error:
                print(error, file=sys.stderr)
            except LoxFatalError as error:
                print(f"Fatal: {error}", file=sys.stderr)
            continue

        if stripped != "":
            buffer.append(line)
    return EXIT_OK


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Lox tree-walking interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit env snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--ext", dest="ext", action="append", default=[], help="Extension module (.py) or pointer file (.loxx); repeatable")
    parser.add_argument("--no-resolve", dest="resolve", action="store_false", help="Skip the static resolution pass")
    args = parser.parse_args(argv)

    try:
        services = load_runtime_services(args.ext)
    except LoxExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return EXIT_USAGE

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return EXIT_USAGE
        return run_repl(verbose=args.verbose, services=services, resolve=args.resolve)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return EXIT_IOERR

    try:
        interpreter = Interpreter(filename=filename, verbose=args.verbose, services=services)
    except LoxExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return EXIT_USAGE

    try:
        statements = _prepare(interpreter, source_text, filename, args.resolve)
    except LoxSyntaxError as error:
        print(error, file=sys.stderr)
        return EXIT_DATAERR

    try:
        fault = interpreter.interpret(statements)
    except LoxFatalError as error:
        print(f"Fatal: {error}", file=sys.stderr)
        return EXIT_SOFTWARE
    if fault is not None:
        _report_fault(fault, args.verbose, args.traceback_json)
        return EXIT_SOFTWARE
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(run_cli())
