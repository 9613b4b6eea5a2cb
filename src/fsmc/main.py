from __future__ import annotations

import argparse
import sys
from pathlib import Path

import fsmc.error
from fsmc.encoding.image import decode, disassemble
from fsmc.compiler import compile_config
from fsmc.error import Colors, CompileError
from fsmc.limits import DEFAULT_LIMITS, load_limits


def compiler_main(args: list[str] | None = None) -> int:
    arg_parser = argparse.ArgumentParser(
        description="Compile a TOML flight program into a flight computer config image"
    )
    arg_parser.add_argument("input", type=Path, help="The flight program to compile")
    arg_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        required=False,
        help="The output image path (defaults to the input path with a .bin suffix)",
    )
    arg_parser.add_argument(
        "--limits",
        type=Path,
        required=False,
        help="JSON file overriding the flight computer's pool limits and tick rate",
    )
    arg_parser.add_argument(
        "--debug",
        action="store_true",
        help="Show the compiler stack trace for each error",
    )
    parsed = arg_parser.parse_args(args)

    if not parsed.input.exists():
        print(Colors.red(f"Input file {parsed.input} does not exist"), file=sys.stderr)
        return 1

    fsmc.error.debug = parsed.debug

    try:
        limits = load_limits(str(parsed.limits)) if parsed.limits else DEFAULT_LIMITS
    except (OSError, ValueError, TypeError) as e:
        print(Colors.red(f"Invalid limits file {parsed.limits}: {e}"), file=sys.stderr)
        return 1

    result = compile_config(
        parsed.input.read_text(encoding="utf-8"), limits, str(parsed.input)
    )
    if isinstance(result, CompileError):
        print(result, file=sys.stderr)
        return 1

    output = parsed.output
    if output is None:
        output = parsed.input.with_suffix(".bin")
    output.write_bytes(result)
    print(Colors.green(f"Wrote {len(result)} bytes to {output}"))
    return 0


def disassembler_main(args: list[str] | None = None) -> int:
    arg_parser = argparse.ArgumentParser(
        description="Print the contents of a flight computer config image"
    )
    arg_parser.add_argument("input", type=Path, help="The config image to read")
    parsed = arg_parser.parse_args(args)

    if not parsed.input.exists():
        print(Colors.red(f"Input file {parsed.input} does not exist"), file=sys.stderr)
        return 1

    try:
        config = decode(parsed.input.read_bytes())
    except RuntimeError as e:
        print(Colors.red(str(e)), file=sys.stderr)
        return 1

    print(disassemble(config), end="")
    return 0


def main():
    sys.exit(compiler_main())


def disasm():
    sys.exit(disassembler_main())
