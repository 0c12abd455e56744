"""Profile loader (wiring + policy) for staging, reconciliation and billing runs."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
import re
from typing import Any, Mapping

import yaml

from .db import BACKEND_SQLITE, backend_for, sqlite_path


_ENV_PATTERN = re.compile(r"^\$\{([^}:]+)(?::-([^}]*))?\}$")

DEFAULT_EXTRACT_NAMES: dict[str, str] = {
    "subscribers": "subscriber_data_{run_date:%Y%m%d}.csv",
    "tariff_plans": "tariff_plan_data_{run_date:%Y%m%d}.csv",
    "subscriber_plans": "subscriber_plan_data_{run_date:%Y%m%d}.csv",
    "cdrs": "cdr_data_{run_date:%Y%m%d}.csv",
}


@dataclass(frozen=True)
class BillingPolicy:
    batch_size: int = 10000
    billing_checkpoint_every: int = 100
    invoice_due_days: int = 14
    notification_channel: str = "SMS"
    changed_by: str = "telco_billing"
    isolate_billing_failures: bool = False
    skip_already_billed: bool = True
    report_referential_gaps: bool = False


@dataclass(frozen=True)
class TelcoBillingProfile:
    profile_id: str
    warehouse_dsn: str
    ledger_dsn: str
    extract_root: Path
    archive_root: Path | None
    extract_names: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_EXTRACT_NAMES))
    policy: BillingPolicy = field(default_factory=BillingPolicy)

    @classmethod
    def load(cls, path: Path) -> "TelcoBillingProfile":
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, Mapping):
            raise ValueError(f"PROFILE_INVALID:{path}")
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TelcoBillingProfile":
        wiring = _section(data, "wiring")
        policy = _section(data, "policy")
        warehouse_dsn = _required(_env(wiring.get("warehouse_dsn")), "wiring.warehouse_dsn")
        ledger_dsn = _required(_env(wiring.get("ledger_dsn")), "wiring.ledger_dsn")
        _reject_shared_sqlite(warehouse_dsn, ledger_dsn)

        names = dict(DEFAULT_EXTRACT_NAMES)
        overrides = wiring.get("extract_names")
        if isinstance(overrides, Mapping):
            for entity, template in overrides.items():
                if entity not in DEFAULT_EXTRACT_NAMES:
                    raise ValueError(f"PROFILE_UNKNOWN_ENTITY:{entity}")
                names[str(entity)] = str(_env(template))

        archive_root = _none_if_blank(_env(wiring.get("archive_root")))
        return cls(
            profile_id=str(data.get("profile_id") or "local").strip() or "local",
            warehouse_dsn=warehouse_dsn,
            ledger_dsn=ledger_dsn,
            extract_root=Path(str(_env(wiring.get("extract_root")) or "data/extract")),
            archive_root=Path(archive_root) if archive_root else None,
            extract_names=names,
            policy=BillingPolicy(
                batch_size=_positive_int(policy.get("batch_size"), 10000, "policy.batch_size"),
                billing_checkpoint_every=_positive_int(
                    policy.get("billing_checkpoint_every"), 100, "policy.billing_checkpoint_every"
                ),
                invoice_due_days=_positive_int(policy.get("invoice_due_days"), 14, "policy.invoice_due_days"),
                notification_channel=str(_env(policy.get("notification_channel")) or "SMS").strip().upper(),
                changed_by=str(_env(policy.get("changed_by")) or "telco_billing").strip(),
                isolate_billing_failures=_flag(policy.get("isolate_billing_failures"), False),
                skip_already_billed=_flag(policy.get("skip_already_billed"), True),
                report_referential_gaps=_flag(policy.get("report_referential_gaps"), False),
            ),
        )


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, Mapping) else {}


def _reject_shared_sqlite(warehouse_dsn: str, ledger_dsn: str) -> None:
    if backend_for(warehouse_dsn) != BACKEND_SQLITE or backend_for(ledger_dsn) != BACKEND_SQLITE:
        return
    warehouse = Path(sqlite_path(warehouse_dsn)).resolve()
    ledger = Path(sqlite_path(ledger_dsn)).resolve()
    if warehouse == ledger:
        raise ValueError("LEDGER_SHARES_WAREHOUSE_SQLITE: ledger_dsn needs its own sqlite file")


def _env(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    match = _ENV_PATTERN.fullmatch(value.strip())
    if not match:
        return value
    return os.getenv(match.group(1), match.group(2) or "")


def _required(value: Any, name: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValueError(f"PROFILE_MISSING:{name}")
    return text


def _none_if_blank(value: Any) -> str | None:
    text = str(value or "").strip()
    return text or None


def _positive_int(value: Any, default: int, name: str) -> int:
    raw = _env(value)
    if raw in (None, ""):
        return default
    parsed = int(raw)
    if parsed <= 0:
        raise ValueError(f"PROFILE_INVALID:{name} must be positive")
    return parsed


def _flag(value: Any, default: bool) -> bool:
    raw = _env(value)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "yes", "y"}
