"""
bpd.models — SQLAlchemy mappings of the BPD read views.

The service only ever reads these relations; it never writes to them.
v_bpd_citizen joins a citizen with each enrolled payment instrument, so
one citizen yields one row per instrument (or a single row with null
instrument columns).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from bpd.constants import AWARD_VIEW, CITIZEN_VIEW, TRANSACTION_TABLE


class Base(DeclarativeBase):
    pass


class Citizen(Base):
    __tablename__ = CITIZEN_VIEW

    fiscal_code: Mapped[str] = mapped_column(String(16), primary_key=True)
    payment_instrument_hpan: Mapped[Optional[str]] = mapped_column(String(64), primary_key=True, nullable=True)
    citizen_enabled: Mapped[Optional[bool]] = mapped_column(Boolean)
    onboarding_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    onboarding_issuer_id: Mapped[Optional[str]] = mapped_column(String(32))
    timestamp_tc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    update_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    update_user: Mapped[Optional[str]] = mapped_column(String(40))
    payoff_instr: Mapped[Optional[str]] = mapped_column(String(27))
    payoff_instr_type: Mapped[Optional[str]] = mapped_column(String(4))
    payment_instrument_status: Mapped[Optional[str]] = mapped_column(String(10))
    payment_instrument_enabled: Mapped[Optional[bool]] = mapped_column(Boolean)
    payment_instrument_channel: Mapped[Optional[str]] = mapped_column(String(20))
    payment_instrument_insert_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    payment_instrument_insert_user: Mapped[Optional[str]] = mapped_column(String(40))
    payment_instrument_update_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    payment_instrument_update_user: Mapped[Optional[str]] = mapped_column(String(40))


class Award(Base):
    __tablename__ = AWARD_VIEW

    fiscal_code: Mapped[str] = mapped_column(String(16), primary_key=True)
    award_period_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    award_winner_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    award_winner_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric)
    award_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    award_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    award_period_grace_period: Mapped[Optional[int]] = mapped_column(BigInteger)
    award_period_amount_max: Mapped[Optional[Decimal]] = mapped_column(Numeric)
    award_period_cashback_perc: Mapped[Optional[Decimal]] = mapped_column(Numeric)
    award_period_cashback_max: Mapped[Optional[Decimal]] = mapped_column(Numeric)
    award_period_ranking_min: Mapped[Optional[Decimal]] = mapped_column(Numeric)
    award_period_trx_cashback_max: Mapped[Optional[Decimal]] = mapped_column(Numeric)
    award_period_trx_eval_max: Mapped[Optional[Decimal]] = mapped_column(Numeric)
    award_period_trx_volume_min: Mapped[Optional[Decimal]] = mapped_column(Numeric)


class Transaction(Base):
    __tablename__ = TRANSACTION_TABLE

    id_trx_acquirer: Mapped[str] = mapped_column(String(255), primary_key=True)
    acquirer: Mapped[str] = mapped_column(String(20), primary_key=True)
    trx_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    fiscal_code: Mapped[Optional[str]] = mapped_column(String(16), index=True)
    hpan: Mapped[Optional[str]] = mapped_column(String(64))
    circuit_type: Mapped[Optional[str]] = mapped_column(String(5))
    operation_type: Mapped[Optional[str]] = mapped_column(String(5))
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric)
    amount_currency: Mapped[Optional[str]] = mapped_column(String(3))
    merchant_id: Mapped[Optional[str]] = mapped_column(String(255))
    mcc: Mapped[Optional[str]] = mapped_column(String(5))
    correlation_id: Mapped[Optional[str]] = mapped_column(String(255))
    award_period_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    insert_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    update_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
