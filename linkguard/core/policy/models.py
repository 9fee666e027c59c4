from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional

from linkguard.core.errors import ConfigError


class RuntimeMode(str, Enum):
    STATIC = "Static"
    DYNAMIC = "Dynamic"

    @classmethod
    def parse(cls, value: Any) -> "RuntimeMode":
        if isinstance(value, cls):
            return value
        v = str(value or "").strip().lower()
        if v in ("static", "mt", "/mt"):
            return cls.STATIC
        if v in ("dynamic", "md", "/md", "shared"):
            return cls.DYNAMIC
        raise ConfigError(f"unknown runtime mode: {value!r}", details={"allowed": [m.value for m in cls]})


class Configuration(str, Enum):
    RELEASE = "Release"
    DEBUG = "Debug"

    @classmethod
    def parse(cls, value: Any) -> "Configuration":
        if isinstance(value, cls):
            return value
        v = str(value or "").strip().lower()
        if v == "release":
            return cls.RELEASE
        if v == "debug":
            return cls.DEBUG
        raise ConfigError(f"unknown build configuration: {value!r}", details={"allowed": [c.value for c in cls]})


# MSVC RuntimeLibrary values as they appear in /FAILIFMISMATCH directives
_LABELS: Dict[tuple, str] = {
    (RuntimeMode.STATIC, Configuration.RELEASE): "MT_StaticRelease",
    (RuntimeMode.STATIC, Configuration.DEBUG): "MTd_StaticDebug",
    (RuntimeMode.DYNAMIC, Configuration.RELEASE): "MD_DynamicRelease",
    (RuntimeMode.DYNAMIC, Configuration.DEBUG): "MDd_DynamicDebug",
}

_FLAGS: Dict[tuple, str] = {
    (RuntimeMode.STATIC, Configuration.RELEASE): "/MT",
    (RuntimeMode.STATIC, Configuration.DEBUG): "/MTd",
    (RuntimeMode.DYNAMIC, Configuration.RELEASE): "/MD",
    (RuntimeMode.DYNAMIC, Configuration.DEBUG): "/MDd",
}


def label_for(runtime: RuntimeMode, configuration: Configuration) -> str:
    return _LABELS[(runtime, configuration)]


@dataclass(frozen=True)
class EffectivePolicy:
    runtime: RuntimeMode
    configuration: Configuration

    @property
    def label(self) -> str:
        return label_for(self.runtime, self.configuration)

    @property
    def runtime_flag(self) -> str:
        return _FLAGS[(self.runtime, self.configuration)]

    def snapshot(self) -> Dict[str, str]:
        return {"runtime": self.runtime.value, "configuration": self.configuration.value}

    @staticmethod
    def from_snapshot(d: Optional[Mapping[str, Any]]) -> Optional["EffectivePolicy"]:
        if not d:
            return None
        try:
            return EffectivePolicy(
                runtime=RuntimeMode.parse(d.get("runtime")),
                configuration=Configuration.parse(d.get("configuration")),
            )
        except ConfigError:
            return None


@dataclass(frozen=True)
class NodeOverride:
    runtime: Optional[RuntimeMode] = None
    configuration: Optional[Configuration] = None
    # dependencies whose differing policy is an accepted boundary ("*" = all)
    reconciles: FrozenSet[str] = frozenset()

    def reconciles_with(self, dep_id: str) -> bool:
        return "*" in self.reconciles or dep_id in self.reconciles


@dataclass(frozen=True)
class LinkagePolicy:
    runtime: RuntimeMode
    configuration: Configuration
    overrides: Mapping[str, NodeOverride] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "overrides", MappingProxyType(dict(self.overrides)))

    @property
    def base(self) -> EffectivePolicy:
        return EffectivePolicy(runtime=self.runtime, configuration=self.configuration)

    @property
    def label(self) -> str:
        return self.base.label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runtime": self.runtime.value,
            "configuration": self.configuration.value,
            "overrides": {
                node_id: {
                    "runtime": ov.runtime.value if ov.runtime else None,
                    "configuration": ov.configuration.value if ov.configuration else None,
                    "reconciles": sorted(ov.reconciles),
                }
                for node_id, ov in sorted(self.overrides.items())
            },
        }
