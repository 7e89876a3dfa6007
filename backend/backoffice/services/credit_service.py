# Overview: Service-layer operations for credit origination and installment schedules.

"""
Credit Origination

A CREDIT sale gets exactly one Credit with N equal installments:

    installment = round_half_up(total / N)
    due_date(n) = start_date + n * INSTALLMENT_PERIOD_DAYS

ROUNDING: installment * N can miss the total by a few cents. The last
installment absorbs the difference, so Σ installment.amount == total always.
A total that cannot give every installment at least one cent is rejected
(InvalidInstallmentCount), and a zero total never becomes a credit.

OVERDUE: derived on read from due_date and remaining balance.
mark_overdue_installments() persists it for listings; nothing depends on it.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy import func

from ..errors import CreditNotFound, InvalidAmount, InvalidInstallmentCount, LedgerError
from ..extensions import db
from ..models import Credit, Installment, Sale
from ..models.credit import (
    CREDIT_STATUS_ACTIVE,
    INSTALLMENT_STATUS_OVERDUE,
    INSTALLMENT_STATUS_PARTIAL,
    INSTALLMENT_STATUS_PENDING,
)
from ..models.sales import PAYMENT_KIND_CREDIT
from ..money import div_half_up, format_cents
from ..time_utils import today
from .concurrency import run_in_transaction

logger = logging.getLogger(__name__)


def validate_installment_count(installment_count) -> int:
    max_installments = current_app.config.get("MAX_INSTALLMENTS", 24)
    if (
        isinstance(installment_count, bool)
        or not isinstance(installment_count, int)
        or not 1 <= installment_count <= max_installments
    ):
        raise InvalidInstallmentCount(
            f"Credit sales require between 1 and {max_installments} installments",
            details={"installment_count": installment_count, "max_installments": max_installments},
        )
    return installment_count


def build_schedule(
    total_cents: int,
    installment_count: int,
    start_date: date,
    period_days: int = 30,
) -> list[tuple[int, int, date]]:
    """
    Return [(sequence_number, amount_cents, due_date), ...] for a credit.

    Every installment is round_half_up(total / N) except the last, which
    takes whatever is left so the amounts sum to the total exactly.

    Raises InvalidInstallmentCount when the total is too small to split into
    N installments that are all at least one cent (e.g. 36 cents over 24
    rounds to 2 each and would leave the last one at -10).
    """
    installment_cents = div_half_up(total_cents, installment_count)
    last_cents = total_cents - installment_cents * (installment_count - 1)
    if installment_cents < 1 or last_cents < 1:
        raise InvalidInstallmentCount(
            f"A total of {format_cents(total_cents)} cannot be split into {installment_count} installments",
            details={"total_cents": total_cents, "installment_count": installment_count},
        )

    schedule = []
    for n in range(1, installment_count + 1):
        amount = last_cents if n == installment_count else installment_cents
        schedule.append((n, amount, start_date + timedelta(days=period_days * n)))
    return schedule


def originate_credit(sale: Sale, installment_count: int, start_date: date | None = None) -> Credit:
    """
    Create the credit and its installments inside the caller's transaction.
    """
    validate_installment_count(installment_count)

    if sale.payment_kind != PAYMENT_KIND_CREDIT:
        raise LedgerError("Only CREDIT sales can carry a credit", details={"sale_id": sale.id})

    existing = db.session.query(Credit.id).filter_by(sale_id=sale.id).first()
    if existing is not None:
        raise LedgerError("Sale already has a credit", details={"sale_id": sale.id, "credit_id": existing.id})

    if sale.total_cents <= 0:
        raise InvalidAmount(
            "Credit sales require a positive total",
            details={"sale_id": sale.id, "total_cents": sale.total_cents},
        )

    start = start_date or today()
    period_days = current_app.config.get("INSTALLMENT_PERIOD_DAYS", 30)
    schedule = build_schedule(sale.total_cents, installment_count, start, period_days)

    credit = Credit(
        sale_id=sale.id,
        customer_id=sale.customer_id,
        total_cents=sale.total_cents,
        remaining_cents=sale.total_cents,
        installment_count=installment_count,
        installment_cents=div_half_up(sale.total_cents, installment_count),
        start_date=start,
        status=CREDIT_STATUS_ACTIVE,
    )
    db.session.add(credit)
    db.session.flush()

    for sequence_number, amount, due_date in schedule:
        db.session.add(Installment(
            credit_id=credit.id,
            sequence_number=sequence_number,
            amount_cents=amount,
            paid_cents=0,
            remaining_cents=amount,
            due_date=due_date,
            status=INSTALLMENT_STATUS_PENDING,
        ))
    db.session.flush()

    logger.info(
        "Credit %s originated for sale %s: %s cents in %s installments",
        credit.id, sale.number, credit.total_cents, installment_count,
    )
    return credit


# =============================================================================
# READS
# =============================================================================

def get_credit(credit_id: int) -> Credit:
    credit = db.session.get(Credit, credit_id)
    if credit is None:
        raise CreditNotFound(f"Credit {credit_id} not found", details={"credit_id": credit_id})
    return credit


def get_credit_for_sale(sale_id: int) -> Credit | None:
    return db.session.query(Credit).filter_by(sale_id=sale_id).first()


def list_installments(credit_id: int) -> list[Installment]:
    get_credit(credit_id)
    return (
        db.session.query(Installment)
        .filter_by(credit_id=credit_id)
        .order_by(Installment.sequence_number)
        .all()
    )


def customer_outstanding_cents(customer_id: int) -> int:
    """Total still owed by a customer across active credits."""
    total = db.session.query(
        func.coalesce(func.sum(Credit.remaining_cents), 0)
    ).filter(
        Credit.customer_id == customer_id,
        Credit.status == CREDIT_STATUS_ACTIVE,
    ).scalar()
    return int(total or 0)


def list_overdue_installments(as_of: date | None = None) -> list[Installment]:
    as_of = as_of or today()
    return (
        db.session.query(Installment)
        .join(Credit, Credit.id == Installment.credit_id)
        .filter(
            Credit.status == CREDIT_STATUS_ACTIVE,
            Installment.remaining_cents > 0,
            Installment.due_date < as_of,
        )
        .order_by(Installment.due_date, Installment.id)
        .all()
    )


# =============================================================================
# BATCH
# =============================================================================

def mark_overdue_installments(as_of: date | None = None) -> int:
    """
    Persist OVERDUE on installments past due with a balance.

    Best-effort: effective_status() already derives OVERDUE on read.
    Returns the number of installments updated.
    """
    as_of = as_of or today()

    def _op() -> int:
        updated = 0
        for installment in list_overdue_installments(as_of):
            if installment.status in (INSTALLMENT_STATUS_PENDING, INSTALLMENT_STATUS_PARTIAL):
                installment.status = INSTALLMENT_STATUS_OVERDUE
                updated += 1
        return updated

    updated = run_in_transaction(_op)
    logger.info("Marked %s installments overdue as of %s", updated, as_of.isoformat())
    return updated
