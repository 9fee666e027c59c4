from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from fastapi import HTTPException

from linkguard.core.settings import load_settings


def workspace_root() -> Path:
    return load_settings().workspace_root.resolve()


def within_workspace(value: Union[str, Path], *, field: str, root: Optional[Path] = None) -> Path:
    """Resolve value (relative to the workspace root) and refuse anything outside it."""
    root = (root or workspace_root()).resolve()
    p = Path(value).expanduser()
    if not p.is_absolute():
        p = root / p
    resolved = p.resolve()
    try:
        resolved.relative_to(root)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {field}: must be within the allowed workspace root",
        )
    return resolved
