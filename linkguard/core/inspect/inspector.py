from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence, Union

from linkguard.core.errors import UnreadableArtifact
from linkguard.core.inspect.archive import is_archive, parse_archive
from linkguard.core.inspect.coff import looks_like_coff, read_coff
from linkguard.core.inspect.elf import elf_type, is_elf, read_elf_object, read_elf_shared
from linkguard.core.inspect.models import Artifact, ArtifactKind, MemberInfo

logger = logging.getLogger("linkguard.inspect")

_PE_MAGIC = b"MZ"


def _read_member(data: bytes, name: str) -> MemberInfo:
    if is_elf(data):
        return read_elf_object(data, name)
    if looks_like_coff(data):
        return read_coff(data, name)
    raise UnreadableArtifact(name, "unrecognized object format")


def aggregate_labels(members: Sequence[MemberInfo]) -> List[str]:
    """Distinct labels across members, first-seen order."""
    out: List[str] = []
    for m in members:
        for label in m.labels:
            if label not in out:
                out.append(label)
    return out


def inspect_artifact(path: Union[str, Path]) -> Artifact:
    """Read an artifact's directive set without touching node state.

    Archives aggregate over every object member; members that declare no
    runtime directive (import stubs, data-only objects) do not count toward
    homogeneity.
    """
    p = Path(path)
    if not p.exists():
        raise UnreadableArtifact(str(p), "artifact missing")
    if not p.is_file():
        raise UnreadableArtifact(str(p), "artifact is not a file")

    try:
        blob = p.read_bytes()
    except OSError as e:
        raise UnreadableArtifact(str(p), f"cannot read file: {e}") from e

    if is_archive(blob):
        kind = ArtifactKind.ARCHIVE
        members = [
            _read_member(m.data, f"{p.name}({m.name})")
            for m in parse_archive(blob, path=str(p))
        ]
    elif is_elf(blob):
        if elf_type(blob, str(p)) == "ET_DYN":
            kind = ArtifactKind.SHARED_OBJECT
            members = [read_elf_shared(blob, p.name)]
        else:
            kind = ArtifactKind.OBJECT
            members = [read_elf_object(blob, p.name)]
    elif blob.startswith(_PE_MAGIC):
        raise UnreadableArtifact(str(p), "PE images are not inspected; inspect the import or static library instead")
    elif looks_like_coff(blob):
        kind = ArtifactKind.OBJECT
        members = [read_coff(blob, p.name)]
    else:
        raise UnreadableArtifact(str(p), "unrecognized artifact format")

    labels = aggregate_labels(members)
    artifact = Artifact(
        path=p,
        kind=kind,
        directives=tuple(labels),
        homogeneous=len(labels) <= 1,
        members=tuple(members),
    )
    logger.debug(
        "inspected %s kind=%s directives=%s members=%d",
        p, kind.value, list(labels), len(members),
    )
    return artifact
