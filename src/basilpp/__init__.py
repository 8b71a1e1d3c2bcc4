import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path, PurePosixPath
from typing import TextIO, cast

from basilpp.embedded import AssetTable, default_assets, is_unsafe_target
from basilpp.frontend import FrontendError, preprocess_source, read_source
from basilpp.options import PreprocessOptions, build_options_for_file
from basilpp.search_paths import debug_enabled


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="basilpp",
        description="Flatten includes, macros and conditionals in Basil source.",
        allow_abbrev=False,
    )
    parser.add_argument("input", nargs="?", help="path to a Basil source file, or - to read from stdin")
    parser.add_argument(
        "-I",
        "--include-path",
        dest="include_paths",
        action="append",
        default=[],
        help="add include search path (repeatable)",
    )
    parser.add_argument(
        "-D",
        "--D",
        dest="defines",
        action="append",
        default=[],
        help=(
            "predefine a macro as NAME[=VALUE] (bool if no value; int or string); "
            "the attached form --DNAME=VALUE is also accepted"
        ),
    )
    parser.add_argument(
        "--no-embedded-includes",
        dest="no_embedded",
        action="store_true",
        help="disable looking up embedded library includes",
    )
    parser.add_argument(
        "--diag-format",
        choices=("human", "json"),
        default="human",
        help="diagnostic output format",
    )
    parser.add_argument("-o", "--output", help="write flattened source to this file")
    parser.add_argument("--dump-deps", action="store_true", help="print resolved include identities")
    parser.add_argument(
        "--dump-include-trace",
        action="store_true",
        help="print include resolution trace",
    )
    parser.add_argument(
        "--dump-macro-table",
        action="store_true",
        help="print final macro table",
    )
    parser.add_argument(
        "--list-embedded",
        action="store_true",
        help="list embedded include files and exit",
    )
    parser.add_argument(
        "--make",
        metavar="TARGET",
        help="copy an embedded file or directory into the current directory and exit",
    )
    return parser


def _print_diagnostic(error: FrontendError, diag_format: str) -> None:
    diagnostic = error.diagnostic
    if diag_format == "json":
        print(
            json.dumps(
                {
                    "stage": diagnostic.stage,
                    "filename": diagnostic.filename,
                    "line": diagnostic.line,
                    "code": diagnostic.code,
                    "message": diagnostic.message,
                },
                separators=(",", ":"),
            ),
            file=sys.stderr,
        )
    else:
        print(error, file=sys.stderr)


def _split_attached_defines(argv: list[str]) -> list[str]:
    # Accept --DNAME=VALUE alongside -DNAME, --D NAME and --D=NAME.
    out: list[str] = []
    for arg in argv:
        if arg.startswith("--D") and len(arg) > 3 and arg[3] != "=":
            out.extend(("--D", arg[3:]))
        else:
            out.append(arg)
    return out


def _print_embedded_inventory(assets: AssetTable) -> None:
    print("Embedded files:")
    for path in assets.list_all_paths():
        print(f"  {path}")
    dirs = assets.list_top_level_dirs()
    if dirs:
        print(f"\nTop-level dirs: {', '.join(dirs)}")


def _make(assets: AssetTable, target: str, destination: Path) -> int:
    if is_unsafe_target(target):
        print(f"basilpp: refusing unsafe target: {target}", file=sys.stderr)
        return 1
    is_dir = assets.has_dir(target)
    is_file = assets.find_file(target) is not None
    if not is_file and not is_dir and not PurePosixPath(target).suffix:
        is_file = assets.find_file(f"{target}.bas") is not None
    try:
        if is_file:
            out_path = assets.write_single(target, destination)
            print(f"Wrote file: {out_path}")
            return 0
        if is_dir:
            assets.extract_dir(target, destination)
            print(f"Wrote directory: {target.rstrip('/')}/")
            return 0
    except OSError as error:
        print(f"basilpp: I/O error: {error}", file=sys.stderr)
        return 1
    print(
        f"basilpp: no embedded file or dir named {target!r}; try --list-embedded",
        file=sys.stderr,
    )
    return 1


def main(argv: Sequence[str] | None = None, *, stdin: TextIO | None = None) -> int:
    if debug_enabled():
        logging.basicConfig(level=logging.DEBUG, format="[basilpp] %(name)s: %(message)s")
    parser = _build_arg_parser()
    try:
        raw_args = list(sys.argv[1:] if argv is None else argv)
        args = parser.parse_args(_split_attached_defines(raw_args))
    except SystemExit as error:
        return cast(int, error.code)
    if args.list_embedded:
        _print_embedded_inventory(default_assets())
        return 0
    if args.make is not None:
        return _make(default_assets(), args.make, Path.cwd())
    if args.input is None:
        print("basilpp: error: an input path is required", file=sys.stderr)
        return 2
    try:
        if args.input == "-":
            options = PreprocessOptions(
                include_paths=tuple(args.include_paths),
                defines=tuple(args.defines),
                use_embedded=not args.no_embedded,
            )
        else:
            options = build_options_for_file(
                args.input,
                include_paths=tuple(args.include_paths),
                defines=tuple(args.defines),
                no_embedded=args.no_embedded,
            )
    except ValueError as error:
        print(f"basilpp: invalid option: {error}", file=sys.stderr)
        return 2
    try:
        filename, source = read_source(args.input, stdin=stdin)
    except (OSError, UnicodeError) as error:
        print(f"basilpp: I/O error: {error}", file=sys.stderr)
        return 1
    try:
        result = preprocess_source(source, filename=filename, options=options)
    except FrontendError as error:
        _print_diagnostic(error, args.diag_format)
        return 1
    if args.dump_deps:
        for key in result.dependencies:
            print(key)
    if args.dump_include_trace:
        for line in result.include_trace:
            print(line)
    if args.dump_macro_table:
        for line in result.macro_table:
            print(line)
    if args.dump_deps or args.dump_include_trace or args.dump_macro_table:
        return 0
    if args.output is not None:
        try:
            Path(args.output).write_text(result.text, encoding="utf-8")
        except OSError as error:
            print(f"basilpp: I/O error: {error}", file=sys.stderr)
            return 1
        return 0
    sys.stdout.write(result.text)
    return 0
