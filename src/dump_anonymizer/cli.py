# Copyright 2025 Lars Marowsky-Brée <lars@marowsky-bree.eu>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Command-line interface for the dump anonymizer."""

import argparse
import io
import sys
from pathlib import Path
from typing import NoReturn, TextIO

from .catalog import build_catalog
from .config import load_config, validate_config_file
from .dump import ENCODING, ENCODING_ERRORS, DumpTransducer, open_dump, process_file
from .evaluator import evaluate
from .models import Catalog, DumpStats, RowContext
from .parser import parse_template

STDIO = "-"


def _emit_warnings(diagnostics: list[str]) -> None:
    """Write diagnostics to stderr."""
    for msg in diagnostics:
        sys.stderr.write(f"Warning: {msg}\n")


def _load_catalog(config_paths: list[Path], verbose: bool) -> Catalog | None:
    """Load and compile configuration, return None if a file is missing."""
    missing = [p for p in config_paths if not p.exists()]
    if missing:
        for path in missing:
            print(f"Error: Config file not found: {path}", file=sys.stderr)
        return None

    raw = load_config(config_paths)
    diagnostics: list[str] = []
    catalog = build_catalog(raw, diagnostics)
    _emit_warnings(diagnostics)

    if verbose:
        for table, columns in raw.items():
            for column, template in columns.items():
                print(f"Loaded rule for {table}.{column}: {template}", file=sys.stderr)
    return catalog


def _stdio(stream: TextIO) -> TextIO:
    """Switch a stdio stream to the encoding used for dump files."""
    if isinstance(stream, io.TextIOWrapper):
        stream.reconfigure(encoding=ENCODING, errors=ENCODING_ERRORS, newline="")
    return stream


def _transform(input_arg: str, output_arg: str, catalog: Catalog) -> DumpStats:
    """Run the transducer, using stdin/stdout for '-'."""
    if input_arg == STDIO and output_arg == STDIO:
        return DumpTransducer(catalog).process(_stdio(sys.stdin), _stdio(sys.stdout))
    if input_arg == STDIO:
        with open_dump(Path(output_arg), "w") as out:
            return DumpTransducer(catalog).process(_stdio(sys.stdin), out)
    if output_arg == STDIO:
        with open_dump(Path(input_arg)) as src:
            return DumpTransducer(catalog).process(src, _stdio(sys.stdout))
    return process_file(Path(input_arg), Path(output_arg), catalog)


def cmd_run(args: argparse.Namespace) -> int:
    """Anonymize a dump."""
    catalog = _load_catalog([Path(c) for c in args.config], args.verbose)
    if catalog is None:
        return 1

    try:
        stats = _transform(args.input, args.output, catalog)
    except (OSError, UnicodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Processing failed.", file=sys.stderr)
        return 1

    if not args.quiet:
        print(
            f"Processed {stats.lines} line(s): {stats.rewritten_rows} of {stats.rows} row(s) "
            f"rewritten in {stats.blocks} block(s)",
            file=sys.stderr,
        )
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate configuration files and their templates."""
    status = 0
    for config in args.config:
        path = Path(config)
        errors = validate_config_file(path)
        if errors:
            print(f"Validation errors in {path}:", file=sys.stderr)
            for err in errors:
                print(f"  {err}", file=sys.stderr)
            status = 1
        else:
            print(f"{path}: OK")
    return status


def _parse_row(pairs: list[str]) -> RowContext | None:
    """Build a row context from COL=VAL pairs, None if one is malformed."""
    columns: list[str] = []
    values: list[str] = []
    for pair in pairs:
        column, sep, value = pair.partition("=")
        if not sep or not column:
            print(f"Error: Invalid --row value (expected COL=VAL): {pair}", file=sys.stderr)
            return None
        columns.append(column)
        values.append(value)
    return RowContext(tuple(columns), tuple(values))


def cmd_render(args: argparse.Namespace) -> int:
    """Evaluate a template against a single value."""
    ctx = _parse_row(args.row or [])
    if ctx is None:
        return 1

    diagnostics: list[str] = []
    rule = parse_template(args.template, diagnostics)
    _emit_warnings(diagnostics)
    print(evaluate(rule, args.value, ctx))
    return 0


def main() -> int | NoReturn:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dump-anon", description="Anonymize COPY data in plain SQL dumps"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # run subcommand
    run_parser = subparsers.add_parser("run", help="Anonymize a dump file")
    run_parser.add_argument(
        "-c", "--config", action="append", required=True, help="YAML rules file (repeatable)"
    )
    run_parser.add_argument("-i", "--input", default=STDIO, help="Input dump ('-' for stdin)")
    run_parser.add_argument("-o", "--output", default=STDIO, help="Output dump ('-' for stdout)")
    run_parser.add_argument("-v", "--verbose", action="store_true", help="List loaded rules")
    run_parser.add_argument("-q", "--quiet", action="store_true", help="No summary")

    # validate subcommand
    validate_parser = subparsers.add_parser("validate", help="Validate rules file syntax")
    validate_parser.add_argument(
        "-c", "--config", action="append", required=True, help="YAML rules file (repeatable)"
    )

    # render subcommand
    render_parser = subparsers.add_parser("render", help="Evaluate a template against a value")
    render_parser.add_argument("template", help="Template, e.g. '{{HASH(salt)}}@example.com'")
    render_parser.add_argument("value", nargs="?", default="", help="Cell value")
    render_parser.add_argument(
        "--row", action="append", metavar="COL=VAL", help="Original row value (repeatable)"
    )

    args = parser.parse_args()

    if args.command == "run":
        return cmd_run(args)
    if args.command == "validate":
        return cmd_validate(args)
    if args.command == "render":
        return cmd_render(args)

    parser.print_help()
    return 1
