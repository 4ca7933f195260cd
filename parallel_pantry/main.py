from __future__ import annotations

import argparse
import asyncio
import json

from parallel_pantry.config import DEFAULT_ENV_FILE, load_settings
from parallel_pantry.infra import get_logger
from parallel_pantry.runtime.app import run_main
from parallel_pantry.service import ReliefService


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="ParallelPantry relief payout service")
    ap.add_argument("--env-file", default=DEFAULT_ENV_FILE)
    sub = ap.add_subparsers(dest="cmd")
    sub.add_parser("serve", help="run API and round scheduler (default)")
    sub.add_parser("settle", help="run one settlement round now")
    sub.add_parser("queue", help="print pending payouts")
    sub.add_parser("resubmit", help="re-admit dead-lettered payouts")
    args = ap.parse_args(argv)

    settings = load_settings(args.env_file)
    if args.cmd in (None, "serve"):
        run_main(settings)
        return 0

    get_logger("parallel_pantry", settings.log_level)
    service = ReliefService.from_settings(settings)
    if args.cmd == "settle":
        result = asyncio.run(service.settle())
        _print(result.to_dict())
        return 1 if result.status == "error" else 0
    if args.cmd == "queue":
        _print([r.to_dict() for r in service.pending()])
        return 0
    accepted, kept = service.resubmit_dead_letters()
    _print({"requeued": [r.id for r in accepted], "kept": len(kept)})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
