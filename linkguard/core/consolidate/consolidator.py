from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Sequence, Set, Tuple

from linkguard.core.errors import ConsolidationError, DuplicateSymbolError, UnreadableArtifact
from linkguard.core.graph.models import ConsolidationGroup
from linkguard.core.inspect.archive import ArchiveMember, read_archive, write_archive
from linkguard.core.inspect.models import Artifact, ArtifactKind
from linkguard.core.verify.verifier import VerificationReport

logger = logging.getLogger("linkguard.consolidate")


def archive_symbols(artifact: Artifact) -> FrozenSet[str]:
    out: Set[str] = set()
    for m in artifact.members:
        out.update(m.defined_symbols)
    return frozenset(out)


def _strong_owners(group: ConsolidationGroup, artifacts: Mapping[str, Sequence[Artifact]]) -> Dict[str, List[str]]:
    owners: Dict[str, List[str]] = {}
    for node_id in group.members:
        seen: Set[str] = set()
        for artifact in artifacts[node_id]:
            for m in artifact.members:
                seen.update(m.strong_symbols)
        for sym in seen:
            owners.setdefault(sym, []).append(node_id)
    return {sym: nodes for sym, nodes in owners.items() if len(nodes) > 1}


def _check_preconditions(
    group: ConsolidationGroup,
    artifacts: Mapping[str, Sequence[Artifact]],
    reports: Mapping[str, Sequence[VerificationReport]],
) -> None:
    labels: Dict[str, str] = {}
    for node_id in group.members:
        node_artifacts = artifacts.get(node_id)
        node_reports = reports.get(node_id)
        if not node_artifacts or not node_reports:
            raise ConsolidationError(group.name, f"member {node_id!r} has no verified artifacts")
        failed = [r.artifact_path for r in node_reports if not r.passed]
        if failed or len(node_reports) != len(node_artifacts):
            raise ConsolidationError(
                group.name,
                f"member {node_id!r} is not verified against the active policy",
                details={"member": node_id, "failed": failed},
            )
        for a in node_artifacts:
            if a.kind == ArtifactKind.SHARED_OBJECT:
                raise ConsolidationError(group.name, f"member {node_id!r} produced a shared object: {a.path}")
        for r in node_reports:
            labels.setdefault(node_id, r.expected_label)

    if len(set(labels.values())) > 1:
        raise ConsolidationError(group.name, "members were verified against different labels", details={"labels": labels})


def _collect_members(
    group: ConsolidationGroup,
    artifacts: Mapping[str, Sequence[Artifact]],
) -> Tuple[List[ArchiveMember], List[Tuple[str, int]]]:
    out: List[ArchiveMember] = []
    symbols: List[Tuple[str, int]] = []
    names: Set[str] = set()

    for node_id in group.members:
        for artifact in artifacts[node_id]:
            try:
                if artifact.kind == ArtifactKind.ARCHIVE:
                    raw = read_archive(artifact.path)
                else:
                    raw = [ArchiveMember(name=artifact.path.name, data=artifact.path.read_bytes())]
            except UnreadableArtifact as e:
                raise ConsolidationError(group.name, e.message, details={"member": node_id, "path": e.path}) from e
            except OSError as e:
                raise ConsolidationError(
                    group.name, f"cannot read {artifact.path}: {e}", details={"member": node_id, "path": str(artifact.path)}
                ) from e

            if len(raw) != len(artifact.members):
                raise ConsolidationError(group.name, f"{artifact.path} changed since it was inspected")

            for member, info in zip(raw, artifact.members):
                name = member.name
                if name in names:
                    name = f"{node_id}__{member.name}"
                    n = 1
                    while name in names:
                        n += 1
                        name = f"{node_id}__{n}__{member.name}"
                names.add(name)

                idx = len(out)
                out.append(ArchiveMember(name=name, data=member.data))
                symbols.extend((sym, idx) for sym in sorted(info.defined_symbols))
    return out, symbols


def consolidate(
    group: ConsolidationGroup,
    artifacts: Mapping[str, Sequence[Artifact]],
    reports: Mapping[str, Sequence[VerificationReport]],
) -> Path:
    """Merge every member's artifacts into group.output.

    Members must arrive Built-and-Verified; nothing here repairs policy drift.
    Two members defining the same strong symbol is a DuplicateSymbolError.
    """
    _check_preconditions(group, artifacts, reports)

    conflicts = _strong_owners(group, artifacts)
    if conflicts:
        logger.error("group %s: %d duplicate strong symbols", group.name, len(conflicts))
        raise DuplicateSymbolError(group.name, conflicts)

    members, symbols = _collect_members(group, artifacts)
    try:
        write_archive(group.output, members, symbols)
    except OSError as e:
        raise ConsolidationError(group.name, f"cannot write {group.output}: {e}") from e
    logger.info(
        "consolidated group %s: %d members, %d symbols -> %s",
        group.name, len(members), len(symbols), group.output,
    )
    return group.output
