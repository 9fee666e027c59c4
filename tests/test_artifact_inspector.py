from pathlib import Path

import pytest

from objfactory import (
    DYNAMIC_DEBUG,
    DYNAMIC_RELEASE,
    STATIC_DEBUG,
    STATIC_RELEASE,
    ar_archive,
    coff_object,
    elf_object,
    elf_shared,
    import_object,
    ltcg_object,
    mixed_lib,
    truncated_comdat_object,
    write,
)

from linkguard.core.errors import UnreadableArtifact
from linkguard.core.inspect.directives import parse_directives, runtime_labels
from linkguard.core.inspect.inspector import inspect_artifact
from linkguard.core.inspect.models import ArtifactKind


def test_homogeneous_static_library(tmp_path: Path):
    lib = write(
        tmp_path / "zlib.lib",
        ar_archive(
            [
                ("adler32.obj", coff_object(STATIC_RELEASE, strong=["adler32"])),
                ("crc32.obj", coff_object(STATIC_RELEASE, strong=["crc32", "get_crc_table"])),
            ],
            style="msvc",
        ),
    )
    a = inspect_artifact(lib)

    assert a.kind == ArtifactKind.ARCHIVE
    assert a.directives == (STATIC_RELEASE,)
    assert a.homogeneous and not a.mixed
    assert [m.name for m in a.members] == ["zlib.lib(adler32.obj)", "zlib.lib(crc32.obj)"]
    assert a.members[1].strong_symbols == frozenset({"crc32", "get_crc_table"})


def test_mixed_runtime_library(tmp_path: Path):
    a = inspect_artifact(mixed_lib(tmp_path / "z.lib"))

    assert a.directives == (STATIC_RELEASE, DYNAMIC_RELEASE)
    assert not a.homogeneous


def test_members_without_directives_do_not_break_homogeneity(tmp_path: Path):
    lib = write(
        tmp_path / "k.lib",
        ar_archive(
            [
                ("a.obj", coff_object(STATIC_DEBUG, strong=["a"])),
                ("data.obj", coff_object(None, strong=["table"])),
                ("kernel32.dll", import_object("ExitProcess")),
            ]
        ),
    )
    a = inspect_artifact(lib)

    assert a.homogeneous
    assert a.directives == (STATIC_DEBUG,)
    assert a.undeclared_members == ["k.lib(data.obj)", "k.lib(kernel32.dll)"]


def test_defaultlib_implies_label_without_failifmismatch(tmp_path: Path):
    obj = write(tmp_path / "c.obj", coff_object(DYNAMIC_DEBUG, failifmismatch=False, strong=["f"]))
    a = inspect_artifact(obj)
    assert a.kind == ArtifactKind.OBJECT
    assert a.directives == (DYNAMIC_DEBUG,)


def test_bigobj_is_read(tmp_path: Path):
    obj = write(tmp_path / "big.obj", coff_object(STATIC_RELEASE, strong=["big_fn_with_long_name"], bigobj=True))
    a = inspect_artifact(obj)
    assert a.members[0].fmt == "coff-bigobj"
    assert a.directives == (STATIC_RELEASE,)
    assert "big_fn_with_long_name" in a.members[0].strong_symbols


def test_symbol_strength_rules(tmp_path: Path):
    obj = write(
        tmp_path / "s.obj",
        coff_object(
            STATIC_RELEASE,
            strong=["plain_function"],
            comdat=["inline_fn"],
            common=["shared_counter"],
            weak=["weak_alias"],
        ),
    )
    m = inspect_artifact(obj).members[0]

    assert m.defined_symbols == frozenset({"plain_function", "inline_fn", "shared_counter", "weak_alias"})
    assert m.strong_symbols == frozenset({"plain_function"})


def test_comdat_noduplicates_is_strong(tmp_path: Path):
    obj = write(tmp_path / "n.obj", coff_object(STATIC_RELEASE, comdat=["must_be_unique"], comdat_selection=1))
    assert inspect_artifact(obj).members[0].strong_symbols == frozenset({"must_be_unique"})


def test_import_object_defines_thunk_and_pointer(tmp_path: Path):
    lib = write(tmp_path / "user32.lib", ar_archive([("user32.dll", import_object("MessageBoxW", "user32.dll"))]))
    m = inspect_artifact(lib).members[0]
    assert m.fmt == "coff-import"
    assert m.defined_symbols == frozenset({"MessageBoxW", "__imp_MessageBoxW"})
    assert m.strong_symbols == frozenset()


def test_quoted_directives_parse():
    raw = b'\xef\xbb\xbf /FAILIFMISMATCH:"_MSC_VER=1900" /FAILIFMISMATCH:"RuntimeLibrary=MD_DynamicRelease" -defaultlib:msvcprt\0'
    directives = parse_directives(raw)
    assert ("FAILIFMISMATCH", "RuntimeLibrary=MD_DynamicRelease") in directives
    assert ("DEFAULTLIB", "msvcprt") in directives
    assert runtime_labels(directives) == (DYNAMIC_RELEASE,)


def test_elf_relocatable_object(tmp_path: Path):
    obj = write(
        tmp_path / "x.o",
        elf_object(STATIC_RELEASE, strong=["x_init"], weak=["x_hook"], common=["x_buf"], comdat=["x_inline"]),
    )
    a = inspect_artifact(obj)
    m = a.members[0]

    assert a.kind == ArtifactKind.OBJECT
    assert a.directives == (STATIC_RELEASE,)
    assert m.defined_symbols == frozenset({"x_init", "x_hook", "x_buf", "x_inline"})
    assert m.strong_symbols == frozenset({"x_init"})


def test_gnu_archive_of_elf_objects(tmp_path: Path):
    lib = write(
        tmp_path / "libz.a",
        ar_archive([("a.o", elf_object(STATIC_DEBUG, strong=["a"])), ("b.o", elf_object(STATIC_DEBUG, strong=["b"]))]),
    )
    a = inspect_artifact(lib)
    assert a.directives == (STATIC_DEBUG,)
    assert len(a.members) == 2


@pytest.mark.parametrize(
    "needed,debug,expected",
    [
        (["libstdc++.so.6", "libc.so.6"], False, DYNAMIC_RELEASE),
        (["libc++.so.1"], True, DYNAMIC_DEBUG),
        (["libc.so.6"], False, STATIC_RELEASE),
        ([], True, STATIC_DEBUG),
    ],
)
def test_shared_object_label_is_derived(tmp_path: Path, needed, debug, expected):
    so = write(tmp_path / "libx.so", elf_shared(needed=needed, exports=["x_api"], debug=debug))
    a = inspect_artifact(so)

    assert a.kind == ArtifactKind.SHARED_OBJECT
    assert a.directives == (expected,)
    assert a.members[0].defined_symbols == frozenset({"x_api"})


def test_shared_object_explicit_directive_wins(tmp_path: Path):
    so = write(tmp_path / "liby.so", elf_shared(needed=["libstdc++.so.6"], label=STATIC_RELEASE))
    assert inspect_artifact(so).directives == (STATIC_RELEASE,)


def test_unreadable_inputs(tmp_path: Path):
    with pytest.raises(UnreadableArtifact):
        inspect_artifact(tmp_path / "missing.lib")
    with pytest.raises(UnreadableArtifact):
        inspect_artifact(tmp_path)
    with pytest.raises(UnreadableArtifact):
        inspect_artifact(write(tmp_path / "notes.txt", b"hello world, not an object"))
    with pytest.raises(UnreadableArtifact):
        inspect_artifact(write(tmp_path / "app.exe", b"MZ" + b"\0" * 200))
    with pytest.raises(UnreadableArtifact):
        inspect_artifact(write(tmp_path / "lto.obj", ltcg_object()))
    with pytest.raises(UnreadableArtifact):
        inspect_artifact(write(tmp_path / "bad.o", b"\x7fELF" + b"\x02\x01\x01" + b"\0" * 9))


def test_archive_with_garbage_member(tmp_path: Path):
    lib = write(tmp_path / "g.lib", ar_archive([("a.obj", coff_object(STATIC_RELEASE)), ("junk.obj", b"junk")]))
    with pytest.raises(UnreadableArtifact):
        inspect_artifact(lib)


def test_truncated_comdat_aux_record_is_unreadable(tmp_path: Path):
    blob = truncated_comdat_object()
    assert len(blob) == 78

    with pytest.raises(UnreadableArtifact) as ei:
        inspect_artifact(write(tmp_path / "cut.obj", blob))
    assert "auxiliary records" in ei.value.reason

    with pytest.raises(UnreadableArtifact):
        inspect_artifact(write(tmp_path / "cut.lib", ar_archive([("cut.obj", blob)])))
