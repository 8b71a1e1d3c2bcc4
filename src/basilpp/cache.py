import os
import struct
import tempfile
from dataclasses import dataclass
from pathlib import Path

MAGIC = b"BSLX"
FORMAT_VERSION = 3
ABI_VERSION = 2
FLAG_SHORT_TAGS = 1 << 0
FLAG_TEMPLATING = 1 << 1
CACHE_SUFFIX = ".basx"

# magic, format version, ABI version, flags (bit 0 short tags, bit 1 templating),
# source size, source mtime in ns. A cache is reused only if every field matches.
_HEADER = struct.Struct("<4sIIIQQ")
HEADER_SIZE = _HEADER.size


@dataclass(frozen=True)
class CacheHeader:
    flags: int
    source_size: int
    source_mtime_ns: int
    format_version: int = FORMAT_VERSION
    abi_version: int = ABI_VERSION
    magic: bytes = MAGIC

    def pack(self) -> bytes:
        return _HEADER.pack(
            self.magic,
            self.format_version,
            self.abi_version,
            self.flags,
            self.source_size,
            self.source_mtime_ns,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "CacheHeader | None":
        if len(data) < HEADER_SIZE:
            return None
        magic, format_version, abi_version, flags, size, mtime = _HEADER.unpack_from(data)
        if magic != MAGIC:
            return None
        return cls(flags, size, mtime, format_version, abi_version, magic)


def cache_flags(*, short_tags: bool, templating_used: bool) -> int:
    return (FLAG_SHORT_TAGS if short_tags else 0) | (FLAG_TEMPLATING if templating_used else 0)


def cache_path_for(source: Path) -> Path:
    return source.with_suffix(CACHE_SUFFIX)


def header_for_source(source: Path, flags: int) -> CacheHeader:
    stat = source.stat()
    return CacheHeader(flags, stat.st_size, stat.st_mtime_ns)


def load_cached_body(cache_path: Path, expected: CacheHeader) -> bytes | None:
    try:
        data = cache_path.read_bytes()
    except OSError:
        return None
    if CacheHeader.unpack(data) != expected:
        return None
    return data[HEADER_SIZE:]


def write_cache(cache_path: Path, header: CacheHeader, body: bytes) -> None:
    cache_path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="wb",
        dir=cache_path.parent,
        prefix=f"{cache_path.name}.",
        suffix=".tmp",
        delete=False,
    ) as temp_file:
        temp_path = Path(temp_file.name)
        try:
            temp_file.write(header.pack())
            temp_file.write(body)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        except OSError:
            temp_file.close()
            temp_path.unlink(missing_ok=True)
            raise
    temp_path.replace(cache_path)
