import re
from dataclasses import dataclass
from enum import Enum, auto

IDENT_RE = re.compile(r"[A-Za-z_]\w*")
_INT_RE = re.compile(r"[+-]?[0-9]+")

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

BUILTIN_FILE = "__file__"
BUILTIN_LINE = "__line__"
BUILTIN_ENGINE = "__engine__"
BUILTIN_VERSION = "__version__"
BUILTIN_OS = "__os__"
BUILTIN_DEBUG = "__debug__"
BUILTIN_NAMES = frozenset(
    {BUILTIN_FILE, BUILTIN_LINE, BUILTIN_ENGINE, BUILTIN_VERSION, BUILTIN_OS, BUILTIN_DEBUG}
)


class ValueKind(Enum):
    BOOL = auto()
    INT = auto()
    TEXT = auto()


@dataclass(frozen=True)
class MacroValue:
    kind: ValueKind
    value: bool | int | str

    @classmethod
    def boolean(cls, value: bool) -> "MacroValue":
        return cls(ValueKind.BOOL, bool(value))

    @classmethod
    def integer(cls, value: int) -> "MacroValue":
        if not INT64_MIN <= value <= INT64_MAX:
            raise ValueError(f"Integer out of 64-bit range: {value}")
        return cls(ValueKind.INT, int(value))

    @classmethod
    def text(cls, value: str) -> "MacroValue":
        return cls(ValueKind.TEXT, value)

    def is_truthy(self) -> bool:
        if self.kind is ValueKind.INT:
            return self.value != 0
        if self.kind is ValueKind.TEXT:
            return self.value != ""
        return bool(self.value)

    def render(self) -> str:
        if self.kind is ValueKind.BOOL:
            return "true" if self.value else "false"
        if self.kind is ValueKind.TEXT:
            return _quote_text(str(self.value))
        return str(self.value)


TRUE = MacroValue.boolean(True)
FALSE = MacroValue.boolean(False)

MacroTable = dict[str, MacroValue]


def is_builtin(name: str) -> bool:
    return name in BUILTIN_NAMES


def parse_int64(text: str) -> int | None:
    if _INT_RE.fullmatch(text) is None:
        return None
    value = int(text)
    if not INT64_MIN <= value <= INT64_MAX:
        return None
    return value


def parse_define_value(text: str) -> MacroValue:
    value = text.strip()
    if not value:
        return TRUE
    if value.startswith('"'):
        close = value.find('"', 1)
        if close < 0:
            raise ValueError("malformed string literal in #define")
        return MacroValue.text(value[1:close])
    number = parse_int64(value)
    if number is not None:
        return MacroValue.integer(number)
    return MacroValue.text(value)


def builtin_values(
    *,
    filename: str,
    line: int,
    engine_name: str,
    version_major: int,
    host_os: str,
    debug: bool,
) -> MacroTable:
    return {
        BUILTIN_FILE: MacroValue.text(filename),
        BUILTIN_LINE: MacroValue.integer(line),
        BUILTIN_ENGINE: MacroValue.text(engine_name),
        BUILTIN_VERSION: MacroValue.integer(version_major),
        BUILTIN_OS: MacroValue.text(host_os),
        BUILTIN_DEBUG: MacroValue.integer(1 if debug else 0),
    }


def format_macro_table(macros: MacroTable) -> tuple[str, ...]:
    return tuple(f"{name}={value.render()}" for name, value in sorted(macros.items()))


def _quote_text(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
