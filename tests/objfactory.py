"""Synthetic COFF / ELF / ar fixtures.

Just enough structure for the inspector: headers, section tables, symbol
tables, string tables and the directive payloads.
"""
from __future__ import annotations

import struct
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

AMD64 = 0x8664

STATIC_RELEASE = "MT_StaticRelease"
STATIC_DEBUG = "MTd_StaticDebug"
DYNAMIC_RELEASE = "MD_DynamicRelease"
DYNAMIC_DEBUG = "MDd_DynamicDebug"

_DEFAULTLIB = {
    STATIC_RELEASE: "LIBCMT",
    STATIC_DEBUG: "LIBCMTD",
    DYNAMIC_RELEASE: "MSVCRT",
    DYNAMIC_DEBUG: "MSVCRTD",
}

BIGOBJ_CLASS_ID = bytes.fromhex("c7a1bad1eebaa94baf20faf66aa4dcb8")


def drectve(label: Optional[str], *, failifmismatch: bool = True) -> bytes:
    if label is None:
        return b""
    parts = []
    if failifmismatch:
        parts.append(f'/FAILIFMISMATCH:"RuntimeLibrary={label}"')
    parts.append(f'/DEFAULTLIB:"{_DEFAULTLIB[label]}"')
    parts.append('/DEFAULTLIB:"OLDNAMES"')
    return (" " + " ".join(parts) + " ").encode("ascii")


# ---------------------------------------------------------------- COFF

_SCN_TEXT = 0x60000020
_SCN_DRECTVE = 0x00100A00
_SCN_COMDAT = 0x00001000


def coff_object(
    label: Optional[str] = None,
    *,
    strong: Sequence[str] = (),
    comdat: Sequence[str] = (),
    comdat_selection: int = 2,
    common: Sequence[str] = (),
    weak: Sequence[str] = (),
    raw_directives: Optional[bytes] = None,
    bigobj: bool = False,
    failifmismatch: bool = True,
) -> bytes:
    """One object: .text, optional .drectve, one COMDAT section per `comdat` symbol."""
    directive_bytes = raw_directives if raw_directives is not None else drectve(label, failifmismatch=failifmismatch)

    sections: List[Tuple[bytes, bytes, int]] = [(b".text", b"\xc3" * 8, _SCN_TEXT)]
    if directive_bytes:
        sections.append((b".drectve", directive_bytes, _SCN_DRECTVE))
    comdat_index: Dict[str, int] = {}
    for sym in comdat:
        sections.append((b".text$mn", b"\xc3" * 4, _SCN_TEXT | _SCN_COMDAT))
        comdat_index[sym] = len(sections)

    strtab = bytearray()

    def sym_name(name: str) -> bytes:
        raw = name.encode("ascii")
        if len(raw) <= 8:
            return raw.ljust(8, b"\0")
        off = 4 + len(strtab)
        strtab.extend(raw + b"\0")
        return b"\0\0\0\0" + struct.pack("<I", off)

    sym_fmt = struct.Struct("<8sIiHBB" if bigobj else "<8sIhHBB")
    aux_len = sym_fmt.size
    records: List[bytes] = []

    for sym, secnum in comdat_index.items():
        records.append(sym_fmt.pack(b".text$mn", 0, secnum, 0, 3, 1))
        aux = bytearray(aux_len)
        struct.pack_into("<I", aux, 0, 4)
        aux[14] = comdat_selection
        records.append(bytes(aux))
    for sym in strong:
        records.append(sym_fmt.pack(sym_name(sym), 0, 1, 0x20, 2, 0))
    for sym, secnum in comdat_index.items():
        records.append(sym_fmt.pack(sym_name(sym), 0, secnum, 0x20, 2, 0))
    for sym in common:
        records.append(sym_fmt.pack(sym_name(sym), 16, 0, 0, 2, 0))
    for sym in weak:
        records.append(sym_fmt.pack(sym_name(sym), 0, 0, 0, 105, 1))
        records.append(bytes(aux_len))
    # an undefined reference is never a definition
    records.append(sym_fmt.pack(sym_name("__imp_ExitProcess"), 0, 0, 0x20, 2, 0))

    header_size = 56 if bigobj else 20
    data_at = header_size + 40 * len(sections)
    raw_data = bytearray()
    section_headers = bytearray()
    for name, payload, chars in sections:
        offset = data_at + len(raw_data)
        raw_data.extend(payload)
        section_headers.extend(struct.pack("<8sIIIIIIHHI", name.ljust(8, b"\0"), 0, 0, len(payload), offset, 0, 0, 0, 0, chars))

    symptr = data_at + len(raw_data)
    nsyms = len(records)
    if bigobj:
        header = struct.pack(
            "<HHHHI16sIIIIIII",
            0, 0xFFFF, 2, AMD64, 0, BIGOBJ_CLASS_ID, 0, 0, 0, 0, len(sections), symptr, nsyms,
        )
    else:
        header = struct.pack("<HHIIIHH", AMD64, len(sections), 0, symptr, nsyms, 0, 0)

    string_table = struct.pack("<I", 4 + len(strtab)) + bytes(strtab)
    return header + bytes(section_headers) + bytes(raw_data) + b"".join(records) + string_table


def import_object(symbol: str, dll: str = "kernel32.dll", *, code: bool = True) -> bytes:
    body = symbol.encode("ascii") + b"\0" + dll.encode("ascii") + b"\0"
    type_bits = 0 if code else 1
    return struct.pack("<HHHHIIHH", 0, 0xFFFF, 0, AMD64, 0, len(body), 0, type_bits) + body


def ltcg_object() -> bytes:
    # anonymous object with a non-bigobj class id, as emitted under /GL
    return struct.pack("<HHHHI16s", 0, 0xFFFF, 1, AMD64, 0, b"\x11" * 16) + b"\0" * 32


def truncated_comdat_object() -> bytes:
    """78 bytes: one COMDAT section and one section symbol whose aux record was cut off."""
    header = struct.pack("<HHIIIHH", AMD64, 1, 0, 60, 1, 0, 0)
    section = struct.pack("<8sIIIIIIHHI", b".text$mn", 0, 0, 0, 0, 0, 0, 0, 0, _SCN_TEXT | _SCN_COMDAT)
    symbol = struct.pack("<8sIhHBB", b".text$mn", 0, 1, 0, 3, 1)
    return header + section + symbol


# ---------------------------------------------------------------- ar

def _ar_header(name: bytes, size: int) -> bytes:
    return (
        name.ljust(16)
        + b"0".ljust(12)
        + b"0".ljust(6)
        + b"0".ljust(6)
        + b"644".ljust(8)
        + str(size).encode("ascii").ljust(10)
        + b"`\n"
    )


def _ar_member(name: bytes, data: bytes) -> bytes:
    return _ar_header(name, len(data)) + data + (b"\n" if len(data) & 1 else b"")


def ar_archive(members: Iterable[Tuple[str, bytes]], *, style: str = "gnu") -> bytes:
    """style: "gnu" ("name/", "//" table), "bsd" ("#1/len"), "msvc" (two linker members, NUL-terminated long names)."""
    members = list(members)
    out = bytearray(b"!<arch>\n")

    if style == "bsd":
        out += _ar_member(b"__.SYMDEF SORTED", struct.pack("<I", 0) + struct.pack("<I", 0))
        for name, data in members:
            raw = name.encode("utf-8")
            padded = raw + b"\0" * (-len(raw) % 4)
            out += _ar_member(f"#1/{len(padded)}".encode("ascii"), padded + data)
        return bytes(out)

    terminator = b"\0" if style == "msvc" else b"/\n"
    long_table = bytearray()
    names: List[bytes] = []
    for name, _ in members:
        raw = name.encode("utf-8")
        if len(raw) < 16 and b"/" not in raw:
            names.append(raw + b"/")
        else:
            names.append(b"/" + str(len(long_table)).encode("ascii"))
            long_table += raw + terminator

    out += _ar_member(b"/", struct.pack(">I", 0))
    if style == "msvc":
        out += _ar_member(b"/", struct.pack("<I", 0) + struct.pack("<I", 0))
    if long_table:
        out += _ar_member(b"//", bytes(long_table))
    for encoded, (_, data) in zip(names, members):
        out += _ar_member(encoded, data)
    return bytes(out)


def write(path: Path, blob: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(blob)
    return path


def static_lib(path: Path, label: Optional[str], objects: Dict[str, Sequence[str]], *, style: str = "msvc") -> Path:
    """Archive of COFF objects, every one declaring `label`; objects maps member name -> strong symbols."""
    return write(path, ar_archive([(name, coff_object(label, strong=syms)) for name, syms in objects.items()], style=style))


def mixed_lib(path: Path) -> Path:
    return write(
        path,
        ar_archive(
            [
                ("a.obj", coff_object(STATIC_RELEASE, strong=["a_fn"])),
                ("b.obj", coff_object(DYNAMIC_RELEASE, strong=["b_fn"])),
            ],
            style="msvc",
        ),
    )


# ---------------------------------------------------------------- ELF

_EHDR = struct.Struct("<16sHHIQQQIHHHHHH")
_SHDR = struct.Struct("<IIQQQQIIQQ")
_SYM = struct.Struct("<IBBHQQ")
_DYN = struct.Struct("<qQ")

SHT_PROGBITS = 1
SHT_SYMTAB = 2
SHT_STRTAB = 3
SHT_DYNAMIC = 6
SHT_DYNSYM = 11
SHT_GROUP = 17

ET_REL = 1
ET_DYN = 3

SHN_COMMON = 0xFFF2


class _Strings:
    def __init__(self):
        self.blob = bytearray(b"\0")

    def add(self, s: str) -> int:
        off = len(self.blob)
        self.blob.extend(s.encode("utf-8") + b"\0")
        return off


def _elf(e_type: int, sections: List[dict]) -> bytes:
    """sections: dicts with name, type, data and optional link (section name), entsize, info."""
    shstr = _Strings()
    names = [s["name"] for s in sections] + [".shstrtab"]
    index = {n: i + 1 for i, n in enumerate(names)}
    all_sections = sections + [{"name": ".shstrtab", "type": SHT_STRTAB, "data": None}]
    name_offsets = [shstr.add(n) for n in names]
    all_sections[-1]["data"] = bytes(shstr.blob)

    body = bytearray()
    offsets = []
    for s in all_sections:
        body.extend(b"\0" * (-(_EHDR.size + len(body)) % 8))
        offsets.append(_EHDR.size + len(body))
        body.extend(s["data"])
    body.extend(b"\0" * (-(_EHDR.size + len(body)) % 8))
    shoff = _EHDR.size + len(body)

    shdrs = bytearray(_SHDR.size)
    for s, off, name_off in zip(all_sections, offsets, name_offsets):
        link = index[s["link"]] if s.get("link") else 0
        shdrs.extend(
            _SHDR.pack(name_off, s["type"], 0, 0, off, len(s["data"]), link, s.get("info", 0), 8 if s["type"] != SHT_STRTAB else 1, s.get("entsize", 0))
        )

    ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + b"\0" * 8
    header = _EHDR.pack(ident, e_type, 62, 1, 0, 0, shoff, 0, _EHDR.size, 0, 0, _SHDR.size, len(all_sections) + 1, len(all_sections))
    return header + bytes(body) + bytes(shdrs)


def _symtab(strings: _Strings, entries: List[Tuple[str, int, int]]) -> bytes:
    """entries: (name, bind, shndx); bind 1 = GLOBAL, 2 = WEAK."""
    out = bytearray(_SYM.size)
    for name, bind, shndx in entries:
        out.extend(_SYM.pack(strings.add(name), (bind << 4) | 2, 0, shndx, 0, 8))
    return bytes(out)


def elf_object(
    label: Optional[str] = None,
    *,
    strong: Sequence[str] = (),
    weak: Sequence[str] = (),
    common: Sequence[str] = (),
    comdat: Sequence[str] = (),
) -> bytes:
    sections: List[dict] = [{"name": ".text", "type": SHT_PROGBITS, "data": b"\xc3" * 8}]
    if label:
        sections.append({"name": ".drectve", "type": SHT_PROGBITS, "data": drectve(label)})
    text_idx = 1
    comdat_idx: Dict[str, int] = {}
    for sym in comdat:
        sections.append({"name": f".text.{sym}", "type": SHT_PROGBITS, "data": b"\xc3" * 4})
        comdat_idx[sym] = len(sections)
    for sym in comdat:
        sections.append(
            {"name": f".group.{sym}", "type": SHT_GROUP, "data": struct.pack("<II", 1, comdat_idx[sym]), "link": ".symtab", "entsize": 4}
        )

    strings = _Strings()
    entries: List[Tuple[str, int, int]] = []
    entries += [(s, 1, text_idx) for s in strong]
    entries += [(s, 2, text_idx) for s in weak]
    entries += [(s, 1, SHN_COMMON) for s in common]
    entries += [(s, 1, comdat_idx[s]) for s in comdat]
    entries.append(("undefined_ref", 1, 0))
    sections.append({"name": ".symtab", "type": SHT_SYMTAB, "data": _symtab(strings, entries), "link": ".strtab", "entsize": _SYM.size, "info": 1})
    sections.append({"name": ".strtab", "type": SHT_STRTAB, "data": bytes(strings.blob)})
    return _elf(ET_REL, sections)


def elf_shared(
    *,
    needed: Sequence[str] = (),
    exports: Sequence[str] = (),
    debug: bool = False,
    label: Optional[str] = None,
) -> bytes:
    dynstr = _Strings()
    needed_offsets = [dynstr.add(n) for n in needed]
    dynsym = _symtab(dynstr, [(s, 1, 1) for s in exports])

    dynamic = bytearray()
    for off in needed_offsets:
        dynamic.extend(_DYN.pack(1, off))
    dynamic.extend(_DYN.pack(0, 0))

    sections: List[dict] = [
        {"name": ".text", "type": SHT_PROGBITS, "data": b"\xc3" * 8},
        {"name": ".dynsym", "type": SHT_DYNSYM, "data": dynsym, "link": ".dynstr", "entsize": _SYM.size, "info": 1},
        {"name": ".dynstr", "type": SHT_STRTAB, "data": bytes(dynstr.blob)},
        {"name": ".dynamic", "type": SHT_DYNAMIC, "data": bytes(dynamic), "link": ".dynstr", "entsize": _DYN.size},
    ]
    if debug:
        sections.append({"name": ".debug_info", "type": SHT_PROGBITS, "data": b"\0" * 16})
    if label:
        sections.append({"name": ".drectve", "type": SHT_PROGBITS, "data": drectve(label)})
    return _elf(ET_DYN, sections)
