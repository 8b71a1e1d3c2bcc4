import os
import sys
from functools import cache
from pathlib import Path

ENV_PATH_VAR = "BASIL_PATH"
ENV_DEBUG_VAR = "BASIL_DEBUG"


def env_search_paths() -> tuple[Path, ...]:
    items = _env_search_paths(os.environ.get(ENV_PATH_VAR, ""), os.pathsep)
    return tuple(Path(item) for item in items)


def debug_enabled() -> bool:
    return os.environ.get(ENV_DEBUG_VAR) == "1"


def host_os() -> str:
    return _host_os(sys.platform)


def _dedupe_in_order(items: list[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return tuple(out)


@cache
def _env_search_paths(value: str, separator: str) -> tuple[str, ...]:
    if not value:
        return ()
    return _dedupe_in_order([item for item in value.split(separator) if item])


def _host_os(platform: str) -> str:
    if platform.startswith(("win32", "cygwin")):
        return "windows"
    if platform == "darwin":
        return "macos"
    return "linux"
