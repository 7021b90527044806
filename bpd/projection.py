"""
bpd.projection — Flat store rows → nested, validated API objects.

Pure functions. No I/O, no logging, no store access. Rows are any
sequence of mappings (column name → value) in store order.

    to_api_citizen(rows)                   → BPDCitizen
    to_api_awards(fiscal_code, rows)       → AwardsList
    to_api_transactions(rows)              → BPDTransactionList

Datetime values are converted to canonical ISO-8601 strings before
validation; every other value passes through untouched. Schema
failures raise ProjectionError carrying a readable_report().
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from bpd.errors import NotFoundError, ProjectionError
from bpd.schemas import AwardsList, BPDCitizen, BPDTransactionList, PaymentMethod

Row = Mapping[str, Any]

_M = TypeVar("_M", bound=BaseModel)


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------


def to_iso_timestamp(value: Any) -> Any:
    """Render datetimes as UTC `YYYY-MM-DDTHH:MM:SS.mmmZ`. Naive values are taken as UTC.

    Non-date values are returned unchanged so the schema can reject them.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}Z"
    if isinstance(value, date):
        return f"{value.isoformat()}T00:00:00.000Z"
    return value


def _with_iso_dates(row: Row) -> dict[str, Any]:
    return {key: to_iso_timestamp(value) for key, value in row.items()}


def readable_report(exc: ValidationError) -> str:
    """One `path: constraint` line per violation, in schema declaration order.

    Input values are never included.
    """
    lines = []
    for err in exc.errors(include_url=False):
        path = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        lines.append(f"{path}: {err.get('msg', 'invalid value')}")
    return "\n".join(lines)


def _validate(model: type[_M], payload: Any, title: str) -> _M:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ProjectionError(title, readable_report(exc)) from None


# ---------------------------------------------------------------------------
# Citizen profile
# ---------------------------------------------------------------------------


def is_payment_method(row: Row) -> bool:
    """True if the row also describes a payment instrument."""
    try:
        PaymentMethod.model_validate(_with_iso_dates(row))
    except ValidationError:
        return False
    return True


def _pay_off_instr(row: Row) -> dict[str, Any] | None:
    payoff_instr = row.get("payoff_instr")
    payoff_instr_type = row.get("payoff_instr_type")
    if payoff_instr is None and payoff_instr_type is None:
        return None
    return {"payoff_instr": payoff_instr, "payoff_instr_type": payoff_instr_type}


def fold_citizen_rows(rows: Sequence[Row]) -> dict[str, Any] | None:
    """Left fold: the first row seeds the scalars, every payment-method row is collected.

    Returns None for an empty sequence.
    """
    acc: dict[str, Any] | None = None
    for raw in rows:
        row = _with_iso_dates(raw)
        if acc is None:
            acc = {
                "citizen_enabled": row.get("citizen_enabled"),
                "fiscal_code": row.get("fiscal_code"),
                "onboarding_date": row.get("onboarding_date"),
                "onboarding_issuer_id": row.get("onboarding_issuer_id"),
                "payment_methods": [],
                "timestamp_tc": row.get("timestamp_tc"),
                "update_date": row.get("update_date"),
                "update_user": row.get("update_user"),
                "pay_off_instr": _pay_off_instr(row),
            }
        if is_payment_method(row):
            acc["payment_methods"].append(row)
    return acc


def to_api_citizen(rows: Sequence[Row]) -> BPDCitizen:
    """Raises NotFoundError on no rows, ProjectionError on schema failure."""
    folded = fold_citizen_rows(rows)
    if folded is None:
        raise NotFoundError()
    return _validate(BPDCitizen, folded, "Invalid BPDCitizen object")


# ---------------------------------------------------------------------------
# Awards and transactions
# ---------------------------------------------------------------------------


def has_award(row: Row) -> bool:
    """False for the placeholder row the award view yields for a citizen with no periods."""
    return any(value is not None for key, value in row.items() if key != "fiscal_code")


def to_api_awards(fiscal_code: str, rows: Sequence[Row]) -> AwardsList:
    payload = {
        "fiscal_code": fiscal_code,
        "awards": [_with_iso_dates(row) for row in rows if has_award(row)],
    }
    return _validate(AwardsList, payload, "Invalid AwardsList object")


def to_api_transactions(rows: Sequence[Row]) -> BPDTransactionList:
    payload = {"transactions": [_with_iso_dates(row) for row in rows]}
    return _validate(BPDTransactionList, payload, "Invalid BPDTransactionList object")
