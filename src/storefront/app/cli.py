from __future__ import annotations

import argparse
import sys

from storefront.app.runner import run


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="storefront-sim")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Simulate storefront visitors")
    p_run.add_argument("--config", default="config/storefront.yaml")
    p_run.add_argument("--visitors", type=int, default=None, help="Override simulation.visitors")
    p_run.add_argument(
        "--horizon-s", type=float, default=None, help="Override simulation.horizon_s"
    )

    args = parser.parse_args(argv)

    if args.cmd == "run":
        result = run(args.config, visitors=args.visitors, horizon_s=args.horizon_s)
        personalize = "on" if result.ctx.personalize_configured else "off"
        print(
            f"run_id={result.ctx.run_id} visitors={result.visitors} "
            f"personalize={personalize} duckdb={result.duckdb_path}"
        )
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
