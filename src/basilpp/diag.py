from dataclasses import dataclass

PP_INVALID_DIRECTIVE = "BASIL-PP-0101"
PP_INCLUDE_NOT_FOUND = "BASIL-PP-0102"
PP_INVALID_IF_EXPR = "BASIL-PP-0103"
PP_INVALID_MACRO = "BASIL-PP-0201"
PP_BUILTIN_MACRO = "BASIL-PP-0202"
PP_INCLUDE_CYCLE = "BASIL-PP-0302"
PP_DEPTH_LIMIT = "BASIL-PP-0401"
PP_SIZE_LIMIT = "BASIL-PP-0402"


class PreprocessorError(ValueError):
    def __init__(
        self,
        message: str,
        line: int | None = None,
        *,
        filename: str | None = None,
        code: str = PP_INVALID_DIRECTIVE,
    ) -> None:
        if line is None:
            super().__init__(message)
        else:
            location = f"{filename}:{line}" if filename is not None else f"line {line}"
            super().__init__(f"{message} at {location}")
        self.message = message
        self.line = line
        self.filename = filename
        self.code = code

    def report(self) -> str:
        return self.message


class IncludeNotFoundError(PreprocessorError):
    def __init__(
        self,
        target: str,
        searched: tuple[str, ...],
        include_from: str | None,
        line: int | None = None,
    ) -> None:
        super().__init__(
            f"include not found: {target!r}",
            line,
            filename=include_from,
            code=PP_INCLUDE_NOT_FOUND,
        )
        self.target = target
        self.searched = searched
        self.include_from = include_from

    def __str__(self) -> str:
        return self.report()

    def report(self) -> str:
        lines = [f'error: include not found: "{self.target}"', "  searched in:"]
        lines.extend(f"    - {location}" for location in self.searched)
        if self.include_from is not None:
            lines.append(f"  included from: {self.include_from}")
        return "\n".join(lines)


class IncludeCycleError(PreprocessorError):
    def __init__(self, chain: tuple[str, ...], line: int | None = None) -> None:
        super().__init__(
            "include cycle detected",
            line,
            filename=chain[-2] if len(chain) > 1 else None,
            code=PP_INCLUDE_CYCLE,
        )
        self.chain = chain

    def __str__(self) -> str:
        return self.report()

    def report(self) -> str:
        return "error: include cycle detected\n  " + " -> ".join(self.chain)


@dataclass(frozen=True)
class Diagnostic:
    stage: str
    filename: str
    message: str
    line: int | None = None
    code: str | None = None

    def __str__(self) -> str:
        if self.line is None:
            return f"{self.filename}: {self.stage}: {self.message}"
        return f"{self.filename}:{self.line}: {self.stage}: {self.message}"


class FrontendError(ValueError):
    def __init__(self, diagnostic: Diagnostic) -> None:
        super().__init__(str(diagnostic))
        self.diagnostic = diagnostic
