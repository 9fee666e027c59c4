from .models import Configuration, EffectivePolicy, LinkagePolicy, NodeOverride, RuntimeMode
from .propagator import resolve_policies, validate_groups

__all__ = [
    "Configuration",
    "EffectivePolicy",
    "LinkagePolicy",
    "NodeOverride",
    "RuntimeMode",
    "resolve_policies",
    "validate_groups",
]
