from .base import BuildBackend, BuildOutcome
from .subprocess_backend import SubprocessBackend

BACKENDS = {
    "subprocess": SubprocessBackend(),
}

__all__ = ["BACKENDS", "BuildBackend", "BuildOutcome", "SubprocessBackend"]
