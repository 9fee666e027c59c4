from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# ---- sys.path bootstrap ----
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
# ----------------------------

from linkguard.core.build.report import ExitCode  # noqa: E402
from linkguard.core.errors import LinkguardError  # noqa: E402
from linkguard.core.inspect.inspector import inspect_artifact  # noqa: E402
from linkguard.core.policy.models import Configuration, EffectivePolicy, RuntimeMode  # noqa: E402
from linkguard.core.verify.verifier import verify_artifact  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Print the runtime directives of an archive or object file")
    ap.add_argument("path")
    ap.add_argument("--runtime", default=None, help="Also verify against Static/Dynamic")
    ap.add_argument("--configuration", default="Release", help="Release/Debug (with --runtime)")
    args = ap.parse_args(argv)

    try:
        artifact = inspect_artifact(args.path)
        out = {"artifact": artifact.to_dict()}
        if args.runtime:
            policy = EffectivePolicy(RuntimeMode.parse(args.runtime), Configuration.parse(args.configuration))
            out["report"] = verify_artifact(artifact, policy).to_dict()
    except LinkguardError as e:
        print(json.dumps(e.to_dict(), indent=2))
        return int(ExitCode.CONFIG_ERROR if e.kind == "ConfigError" else ExitCode.BUILD_FAILED)

    print(json.dumps(out, indent=2))
    if "report" in out and not out["report"]["passed"]:
        return int(ExitCode.VERIFICATION_FAILED)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
