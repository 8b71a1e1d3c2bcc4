import os
from dataclasses import dataclass, field
from pathlib import Path

from basilpp.macros import IDENT_RE, TRUE, MacroValue, parse_int64
from basilpp.search_paths import env_search_paths

DEFAULT_ENGINE_NAME = "basic"
DEFAULT_VERSION_MAJOR = 1


def _default_env_paths() -> tuple[str, ...]:
    return tuple(str(path) for path in env_search_paths())


@dataclass(frozen=True)
class PreprocessOptions:
    root_dir: str = field(default_factory=os.getcwd)
    include_paths: tuple[str, ...] = ()
    env_paths: tuple[str, ...] = field(default_factory=_default_env_paths)
    use_embedded: bool = True
    defines: tuple[str, ...] = ()
    engine_name: str = DEFAULT_ENGINE_NAME
    version_major: int = DEFAULT_VERSION_MAJOR

    def __post_init__(self) -> None:
        if not self.engine_name:
            raise ValueError("Engine name must not be empty")
        if self.version_major < 0:
            raise ValueError(f"Unsupported engine version: {self.version_major}")
        for define in self.defines:
            name = define.split("=", 1)[0]
            if IDENT_RE.fullmatch(name) is None:
                raise ValueError(f"Invalid macro definition: {define}")

    def macro_seeds(self) -> dict[str, MacroValue]:
        return dict(parse_define_flag(define) for define in self.defines)


def normalize_options(options: PreprocessOptions | None) -> PreprocessOptions:
    return PreprocessOptions() if options is None else options


def parse_define_flag(definition: str) -> tuple[str, MacroValue]:
    if "=" not in definition:
        return definition, TRUE
    name, value = definition.split("=", 1)
    number = parse_int64(value)
    if number is not None:
        return name, MacroValue.integer(number)
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return name, MacroValue.text(value[1:-1])
    return name, MacroValue.text(value)


def build_options_for_file(
    primary_path: str | Path,
    *,
    include_paths: tuple[str, ...] = (),
    defines: tuple[str, ...] = (),
    no_embedded: bool = False,
    version_major: int = DEFAULT_VERSION_MAJOR,
) -> PreprocessOptions:
    primary = Path(primary_path)
    root_dir = str(primary.resolve().parent) if primary.name else os.getcwd()
    return PreprocessOptions(
        root_dir=root_dir,
        include_paths=include_paths,
        defines=defines,
        use_embedded=not no_embedded,
        version_major=version_major,
    )
