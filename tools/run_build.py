from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# ---- sys.path bootstrap ----
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
# ----------------------------

from linkguard.core.observability.events import close_event_logs  # noqa: E402
from linkguard.core.run import run_build  # noqa: E402
from linkguard.core.settings import load_settings  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Build, verify and consolidate a dependency graph under one linkage policy")
    ap.add_argument("description", help="Build description (YAML or JSON)")
    ap.add_argument("--workers", type=int, default=None, help="Parallel node builds (default: CPU count)")
    ap.add_argument("--state-dir", default=None, help="Node registry, logs and events (default .linkguard)")
    ap.add_argument("--retry", action="append", default=[], metavar="NODE", help="Allow a previously failed node to rebuild")
    ap.add_argument("--max-retries", type=int, default=None, help="Clean rebuilds after a failed verification")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings().with_overrides(state_dir=Path(args.state_dir) if args.state_dir else None)
    # flags win over the description's workers and max_verification_retries
    overrides = {"workers": args.workers, "max_verification_retries": args.max_retries}
    try:
        report = run_build(args.description, settings=settings, retry=args.retry, overrides=overrides)
    finally:
        close_event_logs()

    print(json.dumps(report.to_dict(), indent=2, sort_keys=True))
    return int(report.exit_code)


if __name__ == "__main__":
    raise SystemExit(main())
