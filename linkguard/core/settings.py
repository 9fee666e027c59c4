from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class Settings:
    env: str = "dev"

    # Worker pool for independent node builds
    workers: int = 4

    # Clean rebuilds allowed after a failed verification before the node fails
    max_verification_retries: int = 1

    # Registry, logs and events live here
    state_dir: Path = Path(".linkguard")

    # None => no timeout on the external build tool
    build_timeout_seconds: Optional[float] = None

    # API requests may only name paths under this directory
    workspace_root: Path = Path(".")

    host: str = "0.0.0.0"
    port: int = 8001

    def with_overrides(self, **kwargs) -> "Settings":
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except (TypeError, ValueError):
        return default


def _env_float(key: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def load_settings() -> Settings:
    env = (os.getenv("LINKGUARD_ENV") or "dev").strip().lower()
    workers = max(1, _env_int("LINKGUARD_WORKERS", os.cpu_count() or 1))
    retries = max(0, _env_int("LINKGUARD_MAX_VERIFICATION_RETRIES", 1))
    state_dir = Path(os.getenv("LINKGUARD_STATE_DIR") or ".linkguard")
    timeout = _env_float("LINKGUARD_BUILD_TIMEOUT_SECONDS", None)
    if timeout is not None and timeout <= 0:
        timeout = None

    return Settings(
        env=env,
        workers=workers,
        max_verification_retries=retries,
        state_dir=state_dir,
        build_timeout_seconds=timeout,
        workspace_root=Path(os.getenv("LINKGUARD_WORKSPACE_ROOT") or "."),
        host=os.getenv("LINKGUARD_HOST", "0.0.0.0"),
        port=_env_int("LINKGUARD_PORT", 8001),
    )
