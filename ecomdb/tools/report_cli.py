"""
Report CLI tool for ecomdb.

Builds a store (persisted or in-memory per settings), optionally applies a
seed file, then prints one report as a JSON array.

Usage:
    ecomdb-report --seed shop.yaml top-spenders --limit 3
    ecomdb-report --seed shop.yaml low-stock --threshold 20
    ecomdb-report --seed shop.yaml orders-by-type --account-type Business
    ECOMDB_DATA_DIR=/var/lib/ecomdb ecomdb-report catalog

Invariants:
    - Exit code 0 on success, 1 on seed or store errors, 2 on usage errors
    - Rows are printed in report order, keys sorted
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence

from ..bootstrap import load_seed, load_seed_file
from ..config import Settings, create_store
from ..errors import EcomDbError
from ..logging_config import setup_logging
from ..query import REPORTS, ReportService
from ..schema import codec

logger = logging.getLogger(__name__)


class ReportCLI:
    """Runs reports and renders their rows.

    Example:
        >>> cli = ReportCLI(Settings())
        >>> cli.seed("shop.yaml")
        >>> print(cli.render(cli.run("catalog")))
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.store = create_store(settings)
        self.service = ReportService(self.store, settings)

    def seed(self, path: str) -> dict[str, Any]:
        """Apply a seed file to the store; returns the alias map."""
        return load_seed(self.store, load_seed_file(path))

    def run(self, name: str, **params: Any) -> List[Any]:
        return self.service.run(name, **params)

    @staticmethod
    def render(rows: List[Any]) -> str:
        """Render report rows as a JSON array."""
        return json.dumps(
            [codec.encode(dataclasses.asdict(row)) for row in rows],
            indent=2,
            sort_keys=True,
        )


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ecomdb-report", description="Run an ecomdb report and print it as JSON"
    )
    parser.add_argument("report", choices=sorted(REPORTS), help="Report to run")
    parser.add_argument("--seed", help="YAML or JSON seed file applied before the report")
    parser.add_argument("--threshold", type=_decimal, help="Threshold for orders-above and low-stock")
    parser.add_argument("--limit", type=int, help="N for top-spenders")
    parser.add_argument("--account-type", help="Account type for orders-by-type")
    parser.add_argument("--log-level", help="Override ECOMDB_LOG_LEVEL")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for the report tool."""
    args = build_parser().parse_args(argv)

    overrides = {"log_level": args.log_level} if args.log_level else {}
    settings = Settings(**overrides)
    setup_logging(settings)

    params: dict[str, Any] = {"limit": args.limit, "account_type": args.account_type}
    if args.threshold is not None:
        params["threshold"] = args.threshold if args.report == "orders-above" else int(args.threshold)

    try:
        cli = ReportCLI(settings)
        if args.seed:
            cli.seed(args.seed)
        rows = cli.run(args.report, **params)
    except (EcomDbError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(cli.render(rows))
    return 0


if __name__ == "__main__":
    sys.exit(main())
