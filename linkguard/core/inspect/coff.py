"""COFF relocatable objects (plain and /bigobj) and MSVC short import objects."""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Dict, List, Set, Tuple

from linkguard.core.errors import UnreadableArtifact
from linkguard.core.inspect.directives import parse_directives, runtime_labels
from linkguard.core.inspect.models import MemberInfo

_MACHINES = {
    0x014C: "i386",
    0x01C4: "armnt",
    0x8664: "amd64",
    0xAA64: "arm64",
    0xA641: "arm64ec",
}

_FILE_HEADER = struct.Struct("<HHIIIHH")
# sig1 sig2 version machine timestamp class_id size_of_data flags meta_size meta_off nsections symptr nsyms
_BIGOBJ_HEADER = struct.Struct("<HHHHI16sIIIIIII")
_IMPORT_HEADER = struct.Struct("<HHHHIIHH")
_SECTION = struct.Struct("<8sIIIIIIHHI")
_SYMBOL = struct.Struct("<8sIhHBB")
_SYMBOL_BIG = struct.Struct("<8sIiHBB")

# {D1BAA1C7-BAEE-4ba9-AF20-FAF66AA4DCB8}
BIGOBJ_CLASS_ID = bytes.fromhex("c7a1bad1eebaa94baf20faf66aa4dcb8")

IMAGE_SCN_LNK_COMDAT = 0x00001000

IMAGE_SYM_CLASS_EXTERNAL = 2
IMAGE_SYM_CLASS_STATIC = 3
IMAGE_SYM_CLASS_WEAK_EXTERNAL = 105

IMAGE_COMDAT_SELECT_NODUPLICATES = 1

_ANON_SIG = b"\x00\x00\xff\xff"


@dataclass(frozen=True)
class _Section:
    name: str
    size: int
    offset: int
    characteristics: int


def looks_like_coff(data: bytes) -> bool:
    if len(data) < _FILE_HEADER.size:
        return False
    if data[:4] == _ANON_SIG:
        return True
    machine, nsections, _ts, symptr, nsyms, opt_size, _chars = _FILE_HEADER.unpack_from(data, 0)
    if machine not in _MACHINES or opt_size != 0:
        return False
    if _FILE_HEADER.size + nsections * _SECTION.size > len(data):
        return False
    return nsyms == 0 or symptr + nsyms * _SYMBOL.size <= len(data)


def _cstr(blob: bytes, off: int) -> str:
    end = blob.find(b"\0", off)
    return blob[off:end if end >= 0 else len(blob)].decode("utf-8", errors="replace")


def _read_import(data: bytes, name: str) -> MemberInfo:
    if len(data) < _IMPORT_HEADER.size:
        raise UnreadableArtifact(name, "truncated import object header")
    _s1, _s2, _ver, _machine, _ts, size, _hint, type_bits = _IMPORT_HEADER.unpack_from(data, 0)
    body = data[_IMPORT_HEADER.size:_IMPORT_HEADER.size + size]
    symbol = _cstr(body, 0)
    if not symbol:
        raise UnreadableArtifact(name, "import object without a symbol name")
    defined = {"__imp_" + symbol}
    if type_bits & 0x3 == 0:
        # IMPORT_CODE also provides the thunk
        defined.add(symbol)
    return MemberInfo(name=name, fmt="coff-import", defined_symbols=frozenset(defined))


def read_coff(data: bytes, name: str) -> MemberInfo:
    bigobj = False
    if data[:4] == _ANON_SIG:
        version = struct.unpack_from("<H", data, 4)[0]
        if version == 0:
            return _read_import(data, name)
        if len(data) >= _BIGOBJ_HEADER.size and data[12:28] == BIGOBJ_CLASS_ID:
            bigobj = True
        else:
            raise UnreadableArtifact(name, "anonymous COFF object (e.g. /GL link-time code); directives are not inspectable")

    try:
        if bigobj:
            fields = _BIGOBJ_HEADER.unpack_from(data, 0)
            nsections, symptr, nsyms = fields[10], fields[11], fields[12]
            sections_at = _BIGOBJ_HEADER.size
            sym_struct = _SYMBOL_BIG
        else:
            _m, nsections, _ts, symptr, nsyms, opt_size, _c = _FILE_HEADER.unpack_from(data, 0)
            sections_at = _FILE_HEADER.size + opt_size
            sym_struct = _SYMBOL

        strtab = b""
        if nsyms:
            strtab_at = symptr + nsyms * sym_struct.size
            if strtab_at + 4 <= len(data):
                strtab_size = struct.unpack_from("<I", data, strtab_at)[0]
                strtab = data[strtab_at:strtab_at + max(4, strtab_size)]

        sections = _read_sections(data, sections_at, nsections, strtab, name)
        defined, strong = _read_symbols(data, symptr, nsyms, sym_struct, sections, strtab, name)
    except (struct.error, IndexError) as e:
        raise UnreadableArtifact(name, f"truncated COFF structure: {e}") from e

    directives: List[Tuple[str, str]] = []
    for sec in sections:
        if sec.name == ".drectve":
            if sec.offset + sec.size > len(data):
                raise UnreadableArtifact(name, ".drectve section runs past end of object")
            directives.extend(parse_directives(data[sec.offset:sec.offset + sec.size]))

    return MemberInfo(
        name=name,
        fmt="coff-bigobj" if bigobj else "coff",
        labels=runtime_labels(directives),
        defined_symbols=frozenset(defined),
        strong_symbols=frozenset(strong),
        directives=tuple(directives),
    )


def _read_sections(data: bytes, at: int, count: int, strtab: bytes, name: str) -> List[_Section]:
    if at + count * _SECTION.size > len(data):
        raise UnreadableArtifact(name, "section table runs past end of object")
    out: List[_Section] = []
    for i in range(count):
        raw_name, _vsize, _vaddr, size, offset, _rel, _ln, _nrel, _nln, chars = _SECTION.unpack_from(
            data, at + i * _SECTION.size
        )
        sec_name = raw_name.rstrip(b"\0").decode("utf-8", errors="replace")
        if sec_name.startswith("/") and sec_name[1:].isdigit():
            sec_name = _cstr(strtab, int(sec_name[1:]))
        out.append(_Section(name=sec_name, size=size, offset=offset, characteristics=chars))
    return out


def _symbol_name(raw: bytes, strtab: bytes) -> str:
    if raw[:4] == b"\0\0\0\0":
        off = struct.unpack_from("<I", raw, 4)[0]
        return _cstr(strtab, off)
    return raw.rstrip(b"\0").decode("utf-8", errors="replace")


def _read_symbols(
    data: bytes,
    symptr: int,
    nsyms: int,
    sym_struct: struct.Struct,
    sections: List[_Section],
    strtab: bytes,
    name: str,
) -> Tuple[Set[str], Set[str]]:
    if nsyms and symptr + nsyms * sym_struct.size > len(data):
        raise UnreadableArtifact(name, "symbol table runs past end of object")

    selection: Dict[int, int] = {}
    externals: List[Tuple[str, int, int, int]] = []

    i = 0
    while i < nsyms:
        off = symptr + i * sym_struct.size
        raw_name, value, secnum, _type, sclass, naux = sym_struct.unpack_from(data, off)
        if i + 1 + naux > nsyms:
            raise UnreadableArtifact(name, f"auxiliary records of symbol {i} run past the symbol table")

        if (
            sclass == IMAGE_SYM_CLASS_STATIC
            and naux >= 1
            and value == 0
            and 0 < secnum <= len(sections)
            and sections[secnum - 1].characteristics & IMAGE_SCN_LNK_COMDAT
            and secnum not in selection
        ):
            # section definition aux record: Selection is byte 14
            selection[secnum] = data[off + sym_struct.size + 14]
        elif sclass in (IMAGE_SYM_CLASS_EXTERNAL, IMAGE_SYM_CLASS_WEAK_EXTERNAL):
            externals.append((_symbol_name(raw_name, strtab), secnum, value, sclass))

        i += 1 + naux

    defined: Set[str] = set()
    strong: Set[str] = set()
    for sym, secnum, value, sclass in externals:
        if sclass == IMAGE_SYM_CLASS_WEAK_EXTERNAL:
            defined.add(sym)
        elif secnum > 0:
            if secnum > len(sections):
                raise UnreadableArtifact(name, f"symbol {sym!r} references section {secnum} of {len(sections)}")
            defined.add(sym)
            sec = sections[secnum - 1]
            comdat = sec.characteristics & IMAGE_SCN_LNK_COMDAT
            if not comdat or selection.get(secnum) == IMAGE_COMDAT_SELECT_NODUPLICATES:
                strong.add(sym)
        elif secnum == 0 and value > 0:
            # common symbol: merged by the linker
            defined.add(sym)
        elif secnum == -1:
            defined.add(sym)
            strong.add(sym)
    return defined, strong
