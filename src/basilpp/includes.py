import logging
import os
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Literal

from basilpp.diag import IncludeNotFoundError
from basilpp.embedded import EMBEDDED_PREFIX, AssetTable
from basilpp.options import PreprocessOptions

logger = logging.getLogger(__name__)

SOURCE_SUFFIX = ".bas"
MODULE_SUFFIX = ".basil"


class IncludeForm(Enum):
    QUOTED = auto()
    ANGLE = auto()
    BARE = auto()


@dataclass(frozen=True)
class IncludeKey:
    kind: Literal["fs", "embedded"]
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ResolvedInclude:
    key: IncludeKey
    display: str
    text: str
    base_dir: Path | None


def parse_include_target(operand: str) -> tuple[IncludeForm, str]:
    arg = operand.strip()
    if not arg:
        raise ValueError("malformed #include; missing target")
    if arg.startswith('"'):
        close = arg.find('"', 1)
        if close < 0:
            raise ValueError("malformed #include; missing closing quote")
        return IncludeForm.QUOTED, arg[1:close]
    if arg.startswith("<"):
        close = arg.find(">", 1)
        if close < 0:
            raise ValueError("malformed #include; missing '>'")
        return IncludeForm.ANGLE, arg[1:close]
    if any(ch.isspace() for ch in arg):
        raise ValueError("bare #include path contains spaces; use quotes")
    return IncludeForm.BARE, arg


def format_include_reference(target: str, form: IncludeForm) -> str:
    if form is IncludeForm.ANGLE:
        return f"<{target}>"
    if form is IncludeForm.QUOTED:
        return f'"{target}"'
    return target


def swap_extension(path: str) -> str | None:
    if path.endswith(MODULE_SUFFIX):
        return path.removesuffix(MODULE_SUFFIX) + SOURCE_SUFFIX
    if path.endswith(SOURCE_SUFFIX):
        return path.removesuffix(SOURCE_SUFFIX) + MODULE_SUFFIX
    return None


def canonical_key(path: Path) -> str:
    return os.path.normcase(str(path))


def _read_text(path: Path) -> str | None:
    try:
        return path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as error:
        logger.debug("skipping unreadable include candidate %s: %s", path, error)
        return None


class IncludeResolver:
    def __init__(self, options: PreprocessOptions, assets: AssetTable) -> None:
        self._options = options
        self._assets = assets

    def resolve(
        self,
        target: str,
        form: IncludeForm,
        *,
        base_dir: Path | None,
        include_from: str | None = None,
        line: int | None = None,
    ) -> ResolvedInclude:
        name = target.replace("\\", "/")
        searched: list[str] = []
        root_dir = Path(self._options.root_dir)
        # Angle: embedded, -I, root. Quoted and bare: unit dir, root, -I,
        # BASIL_PATH, embedded.
        if form is IncludeForm.ANGLE:
            hit = self._try_embedded(name, searched)
            for directory, label in self._labelled_dirs(self._options.include_paths, "-I"):
                hit = hit or self._try_dir(directory, name, searched, label=label)
            hit = hit or self._try_dir(root_dir, name, searched)
        else:
            hit = None
            if base_dir is not None:
                hit = self._try_dir(base_dir, name, searched)
            hit = hit or self._try_dir(root_dir, name, searched)
            for directory, label in self._labelled_dirs(self._options.include_paths, "-I"):
                hit = hit or self._try_dir(directory, name, searched, label=label)
            for directory, label in self._labelled_dirs(self._options.env_paths, "BASIL_PATH"):
                hit = hit or self._try_dir(directory, name, searched, label=label)
            hit = hit or self._try_embedded(name, searched)
        if hit is None:
            raise IncludeNotFoundError(target, tuple(searched), include_from, line)
        logger.debug("resolved %s -> %s", format_include_reference(target, form), hit.display)
        return hit

    def _labelled_dirs(
        self, directories: tuple[str, ...], tag: str
    ) -> list[tuple[Path, str]]:
        return [(Path(directory), f"{tag} {directory}") for directory in directories]

    def _try_dir(
        self,
        directory: Path,
        name: str,
        searched: list[str],
        *,
        label: str | None = None,
    ) -> ResolvedInclude | None:
        searched.append(label if label is not None else str(directory))
        candidates = [name]
        alternate = swap_extension(name)
        if alternate is not None:
            candidates.append(alternate)
        for candidate_name in candidates:
            candidate = directory / candidate_name
            if not candidate.is_file():
                continue
            resolved = candidate.resolve()
            text = _read_text(resolved)
            if text is None:
                continue
            return ResolvedInclude(
                IncludeKey("fs", canonical_key(resolved)),
                str(resolved),
                text,
                resolved.parent,
            )
        return None

    def _try_embedded(self, name: str, searched: list[str]) -> ResolvedInclude | None:
        if not self._options.use_embedded:
            return None
        searched.append(f"{EMBEDDED_PREFIX}{name}")
        candidates = [name]
        alternate = swap_extension(name)
        if alternate is not None:
            candidates.append(alternate)
        for candidate_name in candidates:
            embedded = self._assets.find_file(candidate_name)
            if embedded is None:
                continue
            return ResolvedInclude(
                IncludeKey("embedded", embedded.identity),
                embedded.identity,
                embedded.contents.decode("utf-8", errors="replace"),
                None,
            )
        return None
