from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from functools import cache
from importlib.resources import files
from importlib.resources.abc import Traversable
from pathlib import Path, PurePosixPath
from types import MappingProxyType

EMBEDDED_PREFIX = "embedded:/"


@dataclass(frozen=True)
class EmbeddedFile:
    path: str
    contents: bytes

    @property
    def identity(self) -> str:
        return f"{EMBEDDED_PREFIX}{self.path}"


class AssetTable:
    def __init__(self, entries: Mapping[str, bytes] | None = None) -> None:
        normalized = {
            normalize_logical_path(path): bytes(contents)
            for path, contents in (entries or {}).items()
        }
        self._files: Mapping[str, bytes] = MappingProxyType(dict(sorted(normalized.items())))

    def __len__(self) -> int:
        return len(self._files)

    def find_file(self, path: str) -> EmbeddedFile | None:
        logical = normalize_logical_path(path)
        contents = self._files.get(logical)
        if contents is None:
            return None
        return EmbeddedFile(logical, contents)

    def list_all_paths(self) -> Iterator[str]:
        return iter(self._files)

    def list_top_level_dirs(self) -> tuple[str, ...]:
        dirs = {path.split("/", 1)[0] for path in self._files if "/" in path}
        return tuple(sorted(dirs))

    def has_dir(self, path: str) -> bool:
        prefix = normalize_logical_path(path).rstrip("/") + "/"
        return any(logical.startswith(prefix) for logical in self._files)

    def write_single(self, target: str, destination: Path) -> Path:
        if is_unsafe_target(target):
            raise ValueError(f"Refusing unsafe embedded target: {target!r}")
        embedded = self.find_file(target)
        if embedded is None and not PurePosixPath(target).suffix:
            embedded = self.find_file(f"{target}.bas")
        if embedded is None:
            raise FileNotFoundError(f"No embedded file named {target!r}")
        out_path = destination / PurePosixPath(embedded.path).name
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(embedded.contents)
        return out_path

    def extract_dir(self, target: str, destination: Path) -> list[Path]:
        if is_unsafe_target(target):
            raise ValueError(f"Refusing unsafe embedded target: {target!r}")
        prefix = normalize_logical_path(target).rstrip("/") + "/"
        written: list[Path] = []
        for logical, contents in self._files.items():
            if not logical.startswith(prefix):
                continue
            out_path = destination.joinpath(*PurePosixPath(logical).parts)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_bytes(contents)
            written.append(out_path)
        if not written:
            raise FileNotFoundError(f"No embedded directory named {target!r}")
        return written


def normalize_logical_path(path: str) -> str:
    return path.replace("\\", "/").lstrip("/")


def is_unsafe_target(target: str) -> bool:
    normalized = target.replace("\\", "/")
    if normalized.startswith("/") or (len(normalized) > 1 and normalized[1] == ":"):
        return True
    return ".." in normalized.split("/")


def _collect(root: Traversable, prefix: str, out: dict[str, bytes]) -> None:
    for entry in root.iterdir():
        logical = f"{prefix}{entry.name}"
        if entry.is_dir():
            _collect(entry, f"{logical}/", out)
        elif entry.is_file() and not entry.name.startswith("."):
            out[logical] = entry.read_bytes()


# Built once from the package library/ directory, never mutated afterwards.
@cache
def default_assets() -> AssetTable:
    entries: dict[str, bytes] = {}
    root = files("basilpp") / "library"
    if root.is_dir():
        _collect(root, "", entries)
    return AssetTable(entries)


def find_file(path: str) -> EmbeddedFile | None:
    return default_assets().find_file(path)


def list_all_paths() -> Iterator[str]:
    return default_assets().list_all_paths()
