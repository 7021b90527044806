"""
bpd.schemas — External API response models.

These are the outward contract. Every payload is validated against one
of these models before it leaves the service; a row that cannot be
projected onto them is a validation failure, never a silent partial.

Field declaration order is the order validation failures are reported in.
All timestamps are canonical ISO-8601 strings (see projection.to_iso_timestamp).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, Field, Strict, StrictBool, StrictInt

from bpd.constants import FISCAL_CODE_RE

ISO_TIMESTAMP_PATTERN = r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{3})?Z$"

IsoTimestamp = Annotated[str, Field(pattern=ISO_TIMESTAMP_PATTERN)]
FiscalCodeStr = Annotated[str, Field(pattern=FISCAL_CODE_RE.pattern)]
NonEmptyStr = Annotated[str, Field(min_length=1)]


def _decimal_to_float(value: Any) -> Any:
    return float(value) if isinstance(value, Decimal) else value


# Numeric columns arrive as Decimal. Numeric strings are still rejected.
Amount = Annotated[float, Strict(), BeforeValidator(_decimal_to_float)]


class _ApiModel(BaseModel):
    model_config = {"extra": "ignore"}


# ---------------------------------------------------------------------------
# Citizen profile
# ---------------------------------------------------------------------------


class PaymentMethod(_ApiModel):
    """A payment instrument enrolled by the citizen."""

    payment_instrument_hpan: NonEmptyStr
    payment_instrument_status: NonEmptyStr
    payment_instrument_enabled: Optional[StrictBool] = None
    payment_instrument_channel: Optional[str] = None
    payment_instrument_insert_date: Optional[IsoTimestamp] = None
    payment_instrument_insert_user: Optional[str] = None
    payment_instrument_update_date: Optional[IsoTimestamp] = None
    payment_instrument_update_user: Optional[str] = None


class PayOffInstr(_ApiModel):
    """Where the citizen's cashback is paid out."""

    payoff_instr: Optional[str] = None
    payoff_instr_type: Optional[str] = None


class BPDCitizen(_ApiModel):
    citizen_enabled: StrictBool
    fiscal_code: FiscalCodeStr
    onboarding_date: Optional[IsoTimestamp] = None
    onboarding_issuer_id: Optional[str] = None
    payment_methods: List[PaymentMethod]
    timestamp_tc: IsoTimestamp
    update_date: Optional[IsoTimestamp] = None
    update_user: Optional[str] = None
    pay_off_instr: Optional[PayOffInstr] = None


# ---------------------------------------------------------------------------
# Awards
# ---------------------------------------------------------------------------


class Award(_ApiModel):
    award_winner_id: StrictInt
    award_winner_amount: Amount
    award_period_id: StrictInt
    award_period_start: IsoTimestamp
    award_period_end: IsoTimestamp
    award_period_grace_period: StrictInt
    award_period_amount_max: Optional[Amount] = None
    award_period_cashback_perc: Optional[Amount] = None
    award_period_cashback_max: Optional[Amount] = None
    award_period_ranking_min: Optional[Amount] = None
    award_period_trx_cashback_max: Optional[Amount] = None
    award_period_trx_eval_max: Optional[Amount] = None
    award_period_trx_volume_min: Optional[Amount] = None


class AwardsList(_ApiModel):
    fiscal_code: FiscalCodeStr
    awards: List[Award]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class BPDTransaction(_ApiModel):
    acquirer: NonEmptyStr
    circuit_type: NonEmptyStr
    operation_type: NonEmptyStr
    hpan: NonEmptyStr
    id_trx_acquirer: NonEmptyStr
    trx_timestamp: IsoTimestamp
    insert_date: Optional[IsoTimestamp] = None
    update_date: Optional[IsoTimestamp] = None
    amount: Optional[Amount] = None
    amount_currency: Optional[str] = None
    merchant_id: Optional[str] = None
    mcc: Optional[str] = None
    correlation_id: Optional[str] = None
    award_period_id: Optional[StrictInt] = None


class BPDTransactionList(_ApiModel):
    transactions: List[BPDTransaction]
