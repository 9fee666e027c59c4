"""ELF relocatable and shared objects, read with pyelftools."""
from __future__ import annotations

import io
import logging
import struct
from typing import List, Set, Tuple

from elftools.elf.dynamic import DynamicSection
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection

from linkguard.core.errors import UnreadableArtifact
from linkguard.core.inspect.directives import parse_directives, runtime_labels
from linkguard.core.inspect.models import MemberInfo
from linkguard.core.policy.models import Configuration, RuntimeMode, label_for

logger = logging.getLogger("linkguard.inspect")

ELF_MAGIC = b"\x7fELF"

# shared C/C++ runtimes whose presence in DT_NEEDED means dynamic runtime linkage
_DYNAMIC_RUNTIMES = ("libstdc++.so", "libc++.so", "libc++abi.so", "libgcc_s.so")

GRP_COMDAT = 0x1


def is_elf(head: bytes) -> bool:
    return head.startswith(ELF_MAGIC)


def _open(data: bytes, name: str) -> ELFFile:
    try:
        return ELFFile(io.BytesIO(data))
    except Exception as e:
        raise UnreadableArtifact(name, f"invalid ELF: {e}") from e


def elf_type(data: bytes, name: str) -> str:
    return _open(data, name).header["e_type"]


def _comdat_sections(elf: ELFFile) -> Set[int]:
    fmt = "<" if elf.little_endian else ">"
    out: Set[int] = set()
    for section in elf.iter_sections():
        if section["sh_type"] != "SHT_GROUP":
            continue
        raw = section.data()
        words = struct.unpack(f"{fmt}{len(raw) // 4}I", raw[: len(raw) // 4 * 4])
        if words and words[0] & GRP_COMDAT:
            out.update(words[1:])
    return out


def _symbols(elf: ELFFile, table: str) -> Tuple[Set[str], Set[str]]:
    defined: Set[str] = set()
    strong: Set[str] = set()
    section = elf.get_section_by_name(table)
    if not isinstance(section, SymbolTableSection):
        return defined, strong

    comdat = _comdat_sections(elf)
    for sym in section.iter_symbols():
        bind = sym["st_info"]["bind"]
        shndx = sym["st_shndx"]
        if not sym.name or bind not in ("STB_GLOBAL", "STB_WEAK") or shndx == "SHN_UNDEF":
            continue
        defined.add(sym.name)
        if bind == "STB_GLOBAL" and shndx != "SHN_COMMON" and not (isinstance(shndx, int) and shndx in comdat):
            strong.add(sym.name)
    return defined, strong


def _drectve(elf: ELFFile) -> List[Tuple[str, str]]:
    section = elf.get_section_by_name(".drectve")
    if section is None:
        return []
    return parse_directives(section.data())


def read_elf_object(data: bytes, name: str) -> MemberInfo:
    elf = _open(data, name)
    try:
        directives = _drectve(elf)
        defined, strong = _symbols(elf, ".symtab")
    except UnreadableArtifact:
        raise
    except Exception as e:
        raise UnreadableArtifact(name, f"corrupt ELF object: {e}") from e

    return MemberInfo(
        name=name,
        fmt="elf",
        labels=runtime_labels(directives),
        defined_symbols=frozenset(defined),
        strong_symbols=frozenset(strong),
        directives=tuple(directives),
    )


def read_elf_shared(data: bytes, name: str) -> MemberInfo:
    """Derive the runtime label of a linked ELF shared object.

    An explicit .drectve wins. Otherwise DT_NEEDED decides the runtime mode
    and .debug_* section presence decides the configuration.
    """
    elf = _open(data, name)
    try:
        directives = _drectve(elf)
        needed: List[str] = []
        has_debug = False
        for section in elf.iter_sections():
            if section.name.startswith(".debug_"):
                has_debug = True
            if isinstance(section, DynamicSection):
                for tag in section.iter_tags():
                    if tag.entry.d_tag == "DT_NEEDED":
                        needed.append(tag.needed)
        defined, strong = _symbols(elf, ".dynsym")
    except Exception as e:
        raise UnreadableArtifact(name, f"corrupt ELF shared object: {e}") from e

    labels = runtime_labels(directives)
    if not labels:
        dynamic = any(lib.startswith(_DYNAMIC_RUNTIMES) for lib in needed)
        labels = (
            label_for(
                RuntimeMode.DYNAMIC if dynamic else RuntimeMode.STATIC,
                Configuration.DEBUG if has_debug else Configuration.RELEASE,
            ),
        )
        logger.debug("derived %s for %s from needed=%s debug=%s", labels[0], name, needed, has_debug)

    return MemberInfo(
        name=name,
        fmt="elf-shared",
        labels=labels,
        defined_symbols=frozenset(defined),
        strong_symbols=frozenset(strong),
        directives=tuple(directives),
    )
