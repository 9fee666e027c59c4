from __future__ import annotations

import re
from typing import Dict, List, Tuple

# /NAME or -NAME, optionally :value where value may be quoted
_DIRECTIVE_RE = re.compile(r'(?:^|(?<=\s))[/-]([A-Za-z_]+)(?::("[^"]*"|[^\s"]+))?')

# C/C++ runtime default libraries -> RuntimeLibrary label
_DEFAULTLIB_LABELS: Dict[str, str] = {
    "libcmt": "MT_StaticRelease",
    "libcmtd": "MTd_StaticDebug",
    "libcpmt": "MT_StaticRelease",
    "libcpmtd": "MTd_StaticDebug",
    "msvcrt": "MD_DynamicRelease",
    "msvcrtd": "MDd_DynamicDebug",
    "msvcprt": "MD_DynamicRelease",
    "msvcprtd": "MDd_DynamicDebug",
}


def parse_directives(raw: bytes) -> List[Tuple[str, str]]:
    """Split a .drectve payload into (NAME, value) pairs, NAME upper-cased."""
    if raw.startswith(b"\xef\xbb\xbf"):
        raw = raw[3:]
    text = raw.decode("utf-8", errors="replace").replace("\0", " ")
    out: List[Tuple[str, str]] = []
    for m in _DIRECTIVE_RE.finditer(text):
        value = m.group(2) or ""
        if value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        out.append((m.group(1).upper(), value))
    return out


def _defaultlib_key(value: str) -> str:
    v = value.strip().lower()
    if v.endswith(".lib"):
        v = v[:-4]
    return v


def runtime_labels(directives: List[Tuple[str, str]]) -> Tuple[str, ...]:
    """Runtime labels declared by one object, in first-seen order.

    /FAILIFMISMATCH:RuntimeLibrary=... is authoritative; /DEFAULTLIB is only
    consulted when no such directive exists.
    """
    explicit: List[str] = []
    implied: List[str] = []
    for name, value in directives:
        if name == "FAILIFMISMATCH":
            key, _, val = value.partition("=")
            if key.strip() == "RuntimeLibrary" and val.strip():
                label = val.strip()
                if label not in explicit:
                    explicit.append(label)
        elif name == "DEFAULTLIB":
            label = _DEFAULTLIB_LABELS.get(_defaultlib_key(value))
            if label and label not in implied:
                implied.append(label)
    return tuple(explicit or implied)
