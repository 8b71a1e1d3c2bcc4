import sys
from pathlib import Path
from typing import TextIO

from basilpp.diag import Diagnostic, FrontendError, PreprocessorError
from basilpp.embedded import AssetTable
from basilpp.options import PreprocessOptions
from basilpp.preprocessor import PreprocessResult, preprocess_text


def read_source(path: str, *, stdin: TextIO | None = None) -> tuple[str, str]:
    if path == "-":
        stream = sys.stdin if stdin is None else stdin
        return "<stdin>", stream.read()
    resolved = Path(path)
    return str(resolved), resolved.read_text(encoding="utf-8")


def preprocess_source(
    source: str,
    *,
    filename: str = "<input>",
    options: PreprocessOptions | None = None,
    assets: AssetTable | None = None,
) -> PreprocessResult:
    try:
        return preprocess_text(source, filename=filename, options=options, assets=assets)
    except PreprocessorError as error:
        diagnostic = Diagnostic(
            "preprocess",
            error.filename if error.filename is not None else filename,
            error.report(),
            error.line,
            error.code,
        )
        raise FrontendError(diagnostic) from error


def preprocess_path(
    path: str | Path,
    *,
    options: PreprocessOptions | None = None,
    assets: AssetTable | None = None,
) -> PreprocessResult:
    filename, source = read_source(str(path))
    return preprocess_source(source, filename=filename, options=options, assets=assets)
