"""
Unix ``ar`` archive reader/writer.

Reads the GNU, BSD and MSVC (.lib) variants: linker members (``/``,
``/SYM64/``, ``__.SYMDEF``) are skipped, long names are resolved through the
``//`` table or the BSD ``#1/<len>`` prefix. Writes GNU format with a ``/``
symbol index and zeroed timestamps/ids so identical inputs give identical
output.
"""
from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from linkguard.core.errors import UnreadableArtifact

AR_MAGIC = b"!<arch>\n"
THIN_MAGIC = b"!<thin>\n"
_HEADER = struct.Struct("16s12s6s6s8s10s2s")
_FMAG = b"`\n"

_LINKER_MEMBERS = {"/", "/SYM64/", "__.SYMDEF", "__.SYMDEF SORTED", "__.SYMDEF_64", "__.SYMDEF_64 SORTED"}


@dataclass(frozen=True)
class ArchiveMember:
    name: str
    data: bytes


def is_archive(head: bytes) -> bool:
    return head.startswith(AR_MAGIC) or head.startswith(THIN_MAGIC)


def parse_archive(blob: bytes, *, path: str = "<memory>") -> List[ArchiveMember]:
    if blob.startswith(THIN_MAGIC):
        raise UnreadableArtifact(path, "thin archives reference external files and are not supported")
    if not blob.startswith(AR_MAGIC):
        raise UnreadableArtifact(path, "missing ar magic")

    members: List[ArchiveMember] = []
    long_names = b""
    pos = len(AR_MAGIC)

    while pos < len(blob):
        if blob[pos:pos + 1] == b"\n":
            # stray padding byte
            pos += 1
            continue
        if pos + _HEADER.size > len(blob):
            raise UnreadableArtifact(path, f"truncated member header at offset {pos}")

        raw_name, _mtime, _uid, _gid, _mode, raw_size, fmag = _HEADER.unpack_from(blob, pos)
        if fmag != _FMAG:
            raise UnreadableArtifact(path, f"bad member header terminator at offset {pos}")
        try:
            size = int(raw_size.decode("ascii").strip() or "0")
        except ValueError:
            raise UnreadableArtifact(path, f"bad member size at offset {pos}")

        start = pos + _HEADER.size
        end = start + size
        if end > len(blob):
            raise UnreadableArtifact(path, f"member at offset {pos} runs past end of archive")
        data = blob[start:end]
        pos = end + (size & 1)

        name = raw_name.decode("latin-1").rstrip(" ")

        if name in _LINKER_MEMBERS:
            continue
        if name == "//":
            long_names = data
            continue
        if name.startswith("#1/"):
            # BSD: real name is stored in front of the data
            try:
                name_len = int(name[3:])
            except ValueError:
                raise UnreadableArtifact(path, f"bad BSD long name {name!r}")
            name = data[:name_len].decode("utf-8", errors="replace").rstrip("\0")
            data = data[name_len:]
        elif name.startswith("/") and name[1:].isdigit():
            off = int(name[1:])
            if off >= len(long_names):
                raise UnreadableArtifact(path, f"long name offset {off} outside name table")
            # GNU terminates entries with "/\n", MSVC with NUL
            entry = long_names[off:]
            cut = min((i for i in (entry.find(b"\n"), entry.find(b"\0")) if i >= 0), default=len(entry))
            name = entry[:cut].decode("utf-8", errors="replace").rstrip("/")
        elif name.endswith("/"):
            name = name[:-1]

        members.append(ArchiveMember(name=name, data=data))

    return members


def read_archive(path: Path) -> List[ArchiveMember]:
    try:
        blob = path.read_bytes()
    except OSError as e:
        raise UnreadableArtifact(str(path), f"cannot read file: {e}")
    return parse_archive(blob, path=str(path))


def _header(name: bytes, size: int, mode: bytes = b"644") -> bytes:
    return _HEADER.pack(
        name.ljust(16),
        b"0".ljust(12),
        b"0".ljust(6),
        b"0".ljust(6),
        mode.ljust(8),
        str(size).encode("ascii").ljust(10),
        _FMAG,
    )


def _pad(data: bytes) -> bytes:
    return data + (b"\n" if len(data) & 1 else b"")


def write_archive(
    path: Path,
    members: Sequence[ArchiveMember],
    symbols: Sequence[Tuple[str, int]] = (),
) -> None:
    """Write members in order; symbols are (name, member index) pairs."""
    long_table = b""
    encoded_names: List[bytes] = []
    for m in members:
        raw = m.name.encode("utf-8")
        if len(raw) <= 15 and b"/" not in raw and b" " not in raw:
            encoded_names.append(raw + b"/")
        else:
            encoded_names.append(b"/" + str(len(long_table)).encode("ascii"))
            long_table += raw + b"/\n"

    sym_names = b"".join(name.encode("utf-8") + b"\0" for name, _ in symbols)
    symtab_size = 4 + 4 * len(symbols) + len(sym_names)

    offset = len(AR_MAGIC)
    if symbols:
        offset += _HEADER.size + symtab_size + (symtab_size & 1)
    if long_table:
        offset += _HEADER.size + len(long_table) + (len(long_table) & 1)

    member_offsets: Dict[int, int] = {}
    for i, m in enumerate(members):
        member_offsets[i] = offset
        offset += _HEADER.size + len(m.data) + (len(m.data) & 1)

    tmp = path.with_name(path.name + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)
    with tmp.open("wb") as f:
        f.write(AR_MAGIC)
        if symbols:
            body = struct.pack(">I", len(symbols))
            body += b"".join(struct.pack(">I", member_offsets[idx]) for _, idx in symbols)
            body += sym_names
            f.write(_header(b"/", len(body), mode=b"0"))
            f.write(_pad(body))
        if long_table:
            f.write(_header(b"//", len(long_table), mode=b""))
            f.write(_pad(long_table))
        for name, m in zip(encoded_names, members):
            f.write(_header(name, len(m.data)))
            f.write(_pad(m.data))
    os.replace(tmp, path)
