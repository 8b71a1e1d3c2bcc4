import logging
from dataclasses import dataclass, replace
from pathlib import Path

from basilpp import expr
from basilpp.diag import (
    PP_BUILTIN_MACRO,
    PP_DEPTH_LIMIT,
    PP_INVALID_DIRECTIVE,
    PP_INVALID_IF_EXPR,
    PP_INVALID_MACRO,
    PP_SIZE_LIMIT,
    IncludeCycleError,
    PreprocessorError,
)
from basilpp.embedded import AssetTable, default_assets
from basilpp.includes import (
    IncludeKey,
    IncludeResolver,
    format_include_reference,
    parse_include_target,
)
from basilpp.macros import (
    IDENT_RE,
    MacroTable,
    builtin_values,
    format_macro_table,
    is_builtin,
    parse_define_value,
)
from basilpp.options import PreprocessOptions, normalize_options
from basilpp.search_paths import debug_enabled, host_os

logger = logging.getLogger(__name__)

MAX_INCLUDE_DEPTH = 64
# Open #if blocks across the whole include chain, not per unit.
MAX_CONDITIONAL_DEPTH = 64
MAX_OUTPUT_BYTES = 2 * 1024 * 1024
PSEUDO_FILENAMES = frozenset({"<input>", "<stdin>"})


@dataclass(frozen=True)
class SourceMap:
    # Reserved for mapping output lines back through includes.
    pass


@dataclass(frozen=True)
class PreprocessResult:
    text: str
    source_map: SourceMap
    dependencies: tuple[IncludeKey, ...]
    include_trace: tuple[str, ...]
    macro_table: tuple[str, ...]


@dataclass(frozen=True)
class _Directive:
    indent: str
    body: str
    name: str
    operand: str


@dataclass(frozen=True)
class _Unit:
    display: str
    base_dir: Path | None


@dataclass
class _Branch:
    condition: str | None
    line: int
    lines: list[str]

    @property
    def first_line(self) -> int:
        return self.line + 1


class _OutputBuilder:
    def __init__(self) -> None:
        self._chunks: list[str] = []
        self.size = 0

    def append(self, text: str) -> None:
        self._chunks.append(text)
        self.size += len(text.encode("utf-8"))

    def build(self) -> str:
        return "".join(self._chunks)


def preprocess_text(
    text: str,
    *,
    filename: str = "<input>",
    options: PreprocessOptions | None = None,
    assets: AssetTable | None = None,
) -> PreprocessResult:
    normalized_options = normalize_options(options)
    if filename in PSEUDO_FILENAMES:
        unit = _Unit(filename, None)
    else:
        resolved = Path(filename).resolve()
        unit = _Unit(str(resolved), resolved.parent)
        normalized_options = replace(normalized_options, root_dir=str(resolved.parent))
    processor = _Preprocessor(normalized_options, default_assets() if assets is None else assets)
    macros = processor.process(unit, text)
    return PreprocessResult(
        processor.output(),
        SourceMap(),
        tuple(processor.dependencies),
        tuple(processor.include_trace),
        format_macro_table(macros),
    )


class _Preprocessor:
    def __init__(self, options: PreprocessOptions, assets: AssetTable) -> None:
        self._options = options
        self._resolver = IncludeResolver(options, assets)
        self._host_os = host_os()
        self._debug = debug_enabled()
        self._out = _OutputBuilder()
        self._seen: set[IncludeKey] = set()
        self._stack: list[str] = []
        self.dependencies: list[IncludeKey] = []
        self.include_trace: list[str] = []

    def process(self, unit: _Unit, text: str) -> MacroTable:
        macros: MacroTable = {}
        for name, value in self._options.macro_seeds().items():
            if is_builtin(name):
                logger.warning("ignoring predefinition of built-in macro %s", name)
                continue
            macros[name] = value
        self._stack.append(unit.display)
        self._process_unit(unit, _split_lines(text), macros, depth=0)
        self._stack.pop()
        return macros

    def output(self) -> str:
        return self._out.build()

    def _builtins(self, unit: _Unit, line: int) -> MacroTable:
        return builtin_values(
            filename=unit.display,
            line=line,
            engine_name=self._options.engine_name,
            version_major=self._options.version_major,
            host_os=self._host_os,
            debug=self._debug,
        )

    def _process_unit(
        self,
        unit: _Unit,
        lines: list[str],
        macros: MacroTable,
        *,
        depth: int,
        nesting: int = 0,
        first_line: int = 1,
    ) -> None:
        if depth > MAX_INCLUDE_DEPTH:
            raise PreprocessorError(
                f"maximum include depth ({MAX_INCLUDE_DEPTH}) exceeded",
                filename=unit.display,
                code=PP_DEPTH_LIMIT,
            )
        index = 0
        while index < len(lines):
            line = lines[index]
            line_no = first_line + index
            index += 1
            directive = _parse_directive(line)
            if directive is None:
                self._out.append(line + "\n")
                continue
            name = directive.name
            if name == "include":
                self._handle_include(
                    directive.operand, unit, line_no, macros, depth=depth, nesting=nesting
                )
                continue
            if name == "define":
                self._handle_define(directive.operand, unit, line_no, macros)
                continue
            if name == "undef":
                self._handle_undef(directive.operand, unit, line_no, macros)
                continue
            if name == "if":
                if nesting >= MAX_CONDITIONAL_DEPTH:
                    raise PreprocessorError(
                        f"maximum #if nesting ({MAX_CONDITIONAL_DEPTH}) exceeded",
                        line_no,
                        filename=unit.display,
                        code=PP_DEPTH_LIMIT,
                    )
                branches, consumed = _capture_conditional(
                    directive.operand, lines[index:], line_no, unit.display
                )
                index += consumed
                chosen = self._select_branch(branches, unit, macros)
                if chosen is not None:
                    self._process_unit(
                        unit,
                        chosen.lines,
                        macros,
                        depth=depth,
                        nesting=nesting + 1,
                        first_line=chosen.first_line,
                    )
                continue
            if name in {"elif", "else", "endif"}:
                raise PreprocessorError(
                    f"misordered directive '#{name}' without matching #if",
                    line_no,
                    filename=unit.display,
                    code=PP_INVALID_DIRECTIVE,
                )
            self._out.append(f"{directive.indent}#{directive.body}\n")

    def _handle_include(
        self,
        operand: str,
        unit: _Unit,
        line_no: int,
        macros: MacroTable,
        *,
        depth: int,
        nesting: int,
    ) -> None:
        try:
            form, target = parse_include_target(operand)
        except ValueError as error:
            raise PreprocessorError(
                str(error), line_no, filename=unit.display, code=PP_INVALID_DIRECTIVE
            ) from error
        resolved = self._resolver.resolve(
            target,
            form,
            base_dir=unit.base_dir,
            include_from=unit.display,
            line=line_no,
        )
        trace = (
            f"{unit.display}:{line_no}: #include "
            f"{format_include_reference(target, form)} -> {resolved.display}"
        )
        if resolved.key in self._seen:
            logger.debug("already included %s; skipping", resolved.display)
            self.include_trace.append(f"{trace} (skipped)")
            return
        self._seen.add(resolved.key)
        self.dependencies.append(resolved.key)
        self.include_trace.append(trace)
        if resolved.display in self._stack:
            raise IncludeCycleError((*self._stack, resolved.display), line_no)
        self._stack.append(resolved.display)
        self._process_unit(
            _Unit(resolved.display, resolved.base_dir),
            _split_lines(resolved.text),
            dict(macros),
            depth=depth + 1,
            nesting=nesting,
        )
        self._stack.pop()
        if self._out.size > MAX_OUTPUT_BYTES:
            raise PreprocessorError(
                "preprocessed output exceeds 2 MiB (limit)",
                line_no,
                filename=unit.display,
                code=PP_SIZE_LIMIT,
            )

    def _handle_define(self, operand: str, unit: _Unit, line_no: int, macros: MacroTable) -> None:
        if not operand:
            raise PreprocessorError(
                "expected macro name", line_no, filename=unit.display, code=PP_INVALID_MACRO
            )
        parts = operand.split(None, 1)
        name = parts[0]
        self._check_macro_name(name, "redefine", unit, line_no)
        try:
            value = parse_define_value(parts[1] if len(parts) > 1 else "")
        except ValueError as error:
            raise PreprocessorError(
                str(error), line_no, filename=unit.display, code=PP_INVALID_MACRO
            ) from error
        macros[name] = value

    def _handle_undef(self, operand: str, unit: _Unit, line_no: int, macros: MacroTable) -> None:
        self._check_macro_name(operand, "undefine", unit, line_no)
        macros.pop(operand, None)

    def _check_macro_name(self, name: str, action: str, unit: _Unit, line_no: int) -> None:
        if is_builtin(name):
            raise PreprocessorError(
                f"cannot {action} built-in macro {name}",
                line_no,
                filename=unit.display,
                code=PP_BUILTIN_MACRO,
            )
        if IDENT_RE.fullmatch(name) is None:
            raise PreprocessorError(
                f"invalid macro name: {name!r}",
                line_no,
                filename=unit.display,
                code=PP_INVALID_MACRO,
            )

    def _select_branch(
        self,
        branches: list[_Branch],
        unit: _Unit,
        macros: MacroTable,
    ) -> _Branch | None:
        for branch in branches:
            if branch.condition is None:
                return branch
            try:
                taken = expr.is_true(branch.condition, macros, self._builtins(unit, branch.line))
            except expr.ExpressionError as error:
                raise PreprocessorError(
                    f"invalid #if expression: {error}",
                    branch.line,
                    filename=unit.display,
                    code=PP_INVALID_IF_EXPR,
                ) from error
            if taken:
                return branch
        return None


def _capture_conditional(
    condition: str,
    lines: list[str],
    if_line: int,
    filename: str,
) -> tuple[list[_Branch], int]:
    # Nested #if/#endif pairs stay in the enclosing branch as raw text. The count
    # of consumed lines includes the closing #endif.
    if not condition:
        raise PreprocessorError(
            "expected expression after #if", if_line, filename=filename, code=PP_INVALID_IF_EXPR
        )
    branches = [_Branch(condition, if_line, [])]
    nesting = 0
    saw_else = False
    for offset, line in enumerate(lines):
        line_no = if_line + 1 + offset
        directive = _parse_directive(line)
        if directive is not None:
            if directive.name == "if":
                nesting += 1
            elif directive.name == "endif":
                if nesting == 0:
                    return branches, offset + 1
                nesting -= 1
            elif nesting == 0 and directive.name in {"elif", "else"}:
                if saw_else:
                    raise PreprocessorError(
                        f"#{directive.name} after #else",
                        line_no,
                        filename=filename,
                        code=PP_INVALID_DIRECTIVE,
                    )
                if directive.name == "else":
                    saw_else = True
                    branches.append(_Branch(None, line_no, []))
                elif not directive.operand:
                    raise PreprocessorError(
                        "expected expression after #elif",
                        line_no,
                        filename=filename,
                        code=PP_INVALID_IF_EXPR,
                    )
                else:
                    branches.append(_Branch(directive.operand, line_no, []))
                continue
        branches[-1].lines.append(line)
    raise PreprocessorError(
        "unterminated #if", if_line, filename=filename, code=PP_INVALID_DIRECTIVE
    )


def _parse_directive(line: str) -> _Directive | None:
    stripped = line.lstrip()
    if not stripped.startswith("#"):
        return None
    indent = line[: len(line) - len(stripped)]
    body = stripped[1:].lstrip()
    match = IDENT_RE.match(body)
    if match is None:
        return _Directive(indent, body, "", "")
    rest = body[match.end() :]
    if rest and not rest[0].isspace():
        return _Directive(indent, body, "", "")
    return _Directive(indent, body, match.group(0), rest.strip())


def _split_lines(text: str) -> list[str]:
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines
