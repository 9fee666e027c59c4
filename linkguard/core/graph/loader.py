"""
Build description loader.

A description is a YAML (or JSON) document:

    policy:
      runtime: Static
      configuration: Release
    workers: 4
    max_verification_retries: 1
    nodes:
      - id: zlib
        source: deps/zlib
        command: ["cmake", "--build", "{output_dir}", "--config", "{configuration}"]
        artifacts: ["{output_dir}/zlib.lib"]
      - id: png
        source: deps/libpng
        depends_on: [zlib]
        command: "build.cmd {runtime_flag}"
        artifacts: ["{output_dir}/png.lib"]
    overrides:
      - node: png
        configuration: Debug
        reconciles: [zlib]
    groups:
      - name: imaging
        output: dist/imaging.lib
        members: [zlib, png]

Relative `source` and `output` paths resolve against the description's directory.
"""
from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from linkguard.core.errors import ConfigError
from linkguard.core.graph.models import NODE_ID_RE, ConsolidationGroup, DependencyGraph, DependencyNode
from linkguard.core.policy.models import Configuration, LinkagePolicy, NodeOverride, RuntimeMode


class PolicySpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    runtime: str = "Static"
    configuration: str = "Release"


class NodeSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    source: str
    depends_on: List[str] = Field(default_factory=list)
    command: Union[str, List[str]] = Field(default_factory=list)
    artifacts: List[str] = Field(default_factory=list)
    output_dir: str = "out"

    @field_validator("id")
    @classmethod
    def _id_is_file_safe(cls, v: str) -> str:
        if not NODE_ID_RE.match(v):
            raise ValueError("node id may only contain letters, digits, '_', '.' and '-'")
        return v

    @field_validator("output_dir")
    @classmethod
    def _output_inside_source(cls, v: str) -> str:
        p = Path(v)
        if p.is_absolute() or not p.parts or ".." in p.parts:
            raise ValueError("output_dir must be a sub-directory of the node source")
        return v

    def argv(self) -> List[str]:
        if isinstance(self.command, str):
            return shlex.split(self.command)
        return list(self.command)


class OverrideSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    node: str
    runtime: Optional[str] = None
    configuration: Optional[str] = None
    reconciles: List[str] = Field(default_factory=list)


class GroupSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    output: str
    members: List[str] = Field(default_factory=list)


class BuildDescription(BaseModel):
    model_config = ConfigDict(extra="forbid")

    policy: PolicySpec = Field(default_factory=PolicySpec)
    nodes: List[NodeSpec] = Field(default_factory=list)
    overrides: List[OverrideSpec] = Field(default_factory=list)
    groups: List[GroupSpec] = Field(default_factory=list)

    workers: Optional[int] = Field(default=None, ge=1)
    max_verification_retries: Optional[int] = Field(default=None, ge=0)
    backend: str = "subprocess"


@dataclass
class BuildPlan:
    graph: DependencyGraph
    policy: LinkagePolicy
    groups: List[ConsolidationGroup]
    description: BuildDescription


def parse_description(raw: Mapping[str, Any]) -> BuildDescription:
    if not isinstance(raw, Mapping):
        raise ConfigError("build description must be a mapping")
    try:
        return BuildDescription.model_validate(dict(raw))
    except ValidationError as e:
        errors = [{"loc": ".".join(str(x) for x in err["loc"]), "msg": err["msg"]} for err in e.errors()]
        raise ConfigError("invalid build description", details={"errors": errors}) from e


def load_description(path: Union[str, Path]) -> BuildDescription:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read build description {p}: {e}") from e
    try:
        # YAML is a superset of JSON
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"malformed build description {p}: {e}") from e
    return parse_description(raw or {})


def _resolve(base_dir: Path, value: str) -> Path:
    p = Path(value).expanduser()
    return p if p.is_absolute() else (base_dir / p)


def build_policy(desc: BuildDescription) -> LinkagePolicy:
    overrides: Dict[str, NodeOverride] = {}
    for ov in desc.overrides:
        if ov.node in overrides:
            raise ConfigError(f"more than one override for node {ov.node!r}")
        overrides[ov.node] = NodeOverride(
            runtime=RuntimeMode.parse(ov.runtime) if ov.runtime else None,
            configuration=Configuration.parse(ov.configuration) if ov.configuration else None,
            reconciles=frozenset(ov.reconciles),
        )
    return LinkagePolicy(
        runtime=RuntimeMode.parse(desc.policy.runtime),
        configuration=Configuration.parse(desc.policy.configuration),
        overrides=overrides,
    )


def build_graph(desc: BuildDescription, *, base_dir: Path) -> DependencyGraph:
    graph = DependencyGraph()
    for spec in desc.nodes:
        graph.add_node(
            DependencyNode(
                node_id=spec.id,
                source_dir=_resolve(base_dir, spec.source),
                depends_on=list(dict.fromkeys(spec.depends_on)),
                command=spec.argv(),
                artifacts=list(spec.artifacts),
                output_dir=spec.output_dir,
            )
        )
    graph.validate()
    return graph


def build_groups(desc: BuildDescription, *, base_dir: Path) -> List[ConsolidationGroup]:
    return [
        ConsolidationGroup(name=g.name, output=_resolve(base_dir, g.output), members=tuple(g.members))
        for g in desc.groups
    ]


def plan_from_description(desc: BuildDescription, *, base_dir: Path) -> BuildPlan:
    return BuildPlan(
        graph=build_graph(desc, base_dir=base_dir),
        policy=build_policy(desc),
        groups=build_groups(desc, base_dir=base_dir),
        description=desc,
    )


def load_plan(path: Union[str, Path]) -> BuildPlan:
    p = Path(path)
    return plan_from_description(load_description(p), base_dir=p.resolve().parent)
