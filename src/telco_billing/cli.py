"""Telco billing batch CLI (load, reconcile, bill, pay)."""

from __future__ import annotations

import argparse
from datetime import date
import json
import logging
from pathlib import Path
from typing import Any, Sequence

from .billing import BillingEngine, PaymentProcessor
from .config import TelcoBillingProfile
from .errors import TelcoBillingError
from .ledger import ImportLedger
from .logging_utils import configure_logging, run_log_path
from .reconcile import Reconciler
from .staging import ENTITY_ORDER, StagingLoader


DEFAULT_PROFILE = "config/telco_billing/local.yaml"

logger = logging.getLogger("telco_billing.cli")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    base = argparse.ArgumentParser(add_help=False)
    base.add_argument("--profile", default=DEFAULT_PROFILE, help="Path to telco billing profile YAML")
    base.add_argument("--log-level", default="INFO")

    parser = argparse.ArgumentParser(description="Telco billing batch CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    load_parser = subparsers.add_parser("load", parents=[base], help="Load one entity extract into staging")
    load_parser.add_argument("--entity", required=True, choices=list(ENTITY_ORDER))
    load_parser.add_argument("--run-date", type=date.fromisoformat, default=None)

    load_all_parser = subparsers.add_parser("load-all", parents=[base], help="Load every entity extract in order")
    load_all_parser.add_argument("--run-date", type=date.fromisoformat, default=None)
    load_all_parser.add_argument("--clear-staging", action="store_true")

    reconcile_parser = subparsers.add_parser("reconcile", parents=[base], help="Merge one staged entity")
    reconcile_parser.add_argument("--entity", required=True, choices=list(ENTITY_ORDER))

    subparsers.add_parser("reconcile-all", parents=[base], help="Merge every staged entity, then clear staging")

    bill_parser = subparsers.add_parser("bill", parents=[base], help="Generate invoices for a calendar month")
    bill_parser.add_argument("--billing-date", required=True, type=date.fromisoformat)

    pay_parser = subparsers.add_parser("pay", parents=[base], help="Record a payment against an invoice")
    pay_parser.add_argument("--invoice-id", required=True)
    pay_parser.add_argument("--amount", required=True)
    pay_parser.add_argument("--method", required=True)
    pay_parser.add_argument("--payment-date", type=date.fromisoformat, default=None)

    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> dict[str, Any]:
    profile = TelcoBillingProfile.load(Path(args.profile))
    ledger = ImportLedger(profile.ledger_dsn)

    if args.command == "load":
        loader = StagingLoader.from_profile(profile, ledger=ledger)
        return loader.load_entity(args.entity, run_date=args.run_date).as_dict()
    if args.command == "load-all":
        loader = StagingLoader.from_profile(profile, ledger=ledger)
        return loader.load_all(run_date=args.run_date, clear_staging=args.clear_staging).as_dict()
    if args.command == "reconcile":
        return Reconciler.from_profile(profile, ledger=ledger).reconcile_entity(args.entity).as_dict()
    if args.command == "reconcile-all":
        return Reconciler.from_profile(profile, ledger=ledger).reconcile_all().as_dict()
    if args.command == "bill":
        return BillingEngine.from_profile(profile, ledger=ledger).generate_monthly_bills(args.billing_date).as_dict()
    if args.command == "pay":
        processor = PaymentProcessor.from_profile(profile, ledger=ledger)
        result = processor.record_payment(
            args.invoice_id,
            args.payment_date or date.today(),
            args.amount,
            args.method,
        )
        return result.as_dict()
    raise SystemExit(f"unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        log_paths=[run_log_path(args.command)],
    )
    try:
        payload = run(args)
    except TelcoBillingError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(json.dumps({"command": args.command, "status": "FAILURE", "reason_code": exc.code}, ensure_ascii=True))
        raise SystemExit(2) from exc
    print(json.dumps({"command": args.command, **payload}, sort_keys=True, ensure_ascii=True))


if __name__ == "__main__":
    main()
