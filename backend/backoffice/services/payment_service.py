# Overview: Service-layer operations for payments; distributes abonos across credit installments.

"""
Payment Distribution

WHY: A single abono can touch many installments. Each touch is recorded as a
PaymentAllocation so the split is reconstructable from the audit trail alone.

DISTRIBUTION (even split, repeated until the money is used up):

    pending = installments with a balance, by sequence_number
    while amount > 0 and pending:
        share = max(1 cent, round_half_up(amount / len(pending)))
        for each installment in order:
            applied = min(share, installment.remaining, amount)
            ...
        drop installments that reached zero

A single pass can leave money unapplied when share exceeds a nearly-paid
installment's balance; the extra passes hand that residual to the
installments still open. Since amount <= credit.remaining == Σ remaining,
the loop always ends with amount == 0, so
Σ allocation.amount_applied == payment.amount exactly.

CONCURRENCY: the credit row is locked (FOR UPDATE / BEGIN IMMEDIATE) for the
whole call and carries a version_id, so two abonos against the same credit
serialize instead of both reading the same balance.
"""

from __future__ import annotations

import logging
from datetime import date

from ..errors import (
    CreditNotActive,
    CreditNotFound,
    InvalidAmount,
    InvalidPaymentMethod,
    LedgerSystemError,
    PaymentExceedsBalance,
)
from ..extensions import db
from ..models import Credit, Installment, Payment, PaymentAllocation, Sale
from ..models.credit import CREDIT_STATUS_ACTIVE, CREDIT_STATUS_COMPLETED
from ..models.sales import VALID_PAYMENT_METHODS
from ..money import div_half_up, format_cents
from ..time_utils import today, utcnow
from .concurrency import lock_for_update, run_in_transaction
from .lookup_service import require_user

logger = logging.getLogger(__name__)


def _validate_amount(amount_cents) -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvalidAmount("Payment amount must be a positive number of cents", details={"amount_cents": amount_cents})


def _validate_method(method: str) -> None:
    if method not in VALID_PAYMENT_METHODS:
        raise InvalidPaymentMethod(
            f"Invalid payment method: {method}. Must be one of {list(VALID_PAYMENT_METHODS)}",
            details={"method": method},
        )


def distribute(amount_cents: int, installments: list[Installment], as_of: date | None = None) -> tuple[dict, int]:
    """
    Apply amount_cents to installments in place.

    Returns ({installment: applied_cents}, residual_cents). Installments are
    updated (paid/remaining/status) as the money lands on them.
    """
    as_of = as_of or today()
    applied_by_installment: dict[Installment, int] = {}
    amount = amount_cents

    pending = sorted(
        (i for i in installments if i.remaining_cents > 0),
        key=lambda i: i.sequence_number,
    )
    while amount > 0 and pending:
        share = max(1, div_half_up(amount, len(pending)))
        for installment in pending:
            if amount <= 0:
                break
            applied = min(share, installment.remaining_cents, amount)
            if applied <= 0:
                continue
            installment.paid_cents += applied
            installment.remaining_cents -= applied
            installment.recompute_status(as_of)
            amount -= applied
            applied_by_installment[installment] = applied_by_installment.get(installment, 0) + applied
        pending = [i for i in pending if i.remaining_cents > 0]

    return applied_by_installment, amount


def _refresh_credit_balance(credit: Credit, installments: list[Installment]) -> None:
    credit.remaining_cents = sum(i.remaining_cents for i in installments)
    if credit.remaining_cents == 0:
        credit.status = CREDIT_STATUS_COMPLETED


def apply_payment_in_transaction(
    credit: Credit,
    amount_cents: int,
    method: str,
    actor_id: int,
    reference: str | None = None,
) -> tuple[Payment, list[PaymentAllocation]]:
    """
    Record a payment against a credit inside the caller's transaction.

    The caller must hold the credit row lock (apply_payment does; settlement
    creates the credit in the same transaction).
    """
    if credit.status != CREDIT_STATUS_ACTIVE:
        raise CreditNotActive(
            f"Credit {credit.id} is not active",
            details={"credit_id": credit.id, "status": credit.status},
        )
    _validate_amount(amount_cents)
    _validate_method(method)
    if amount_cents > credit.remaining_cents:
        raise PaymentExceedsBalance(
            f"Payment of {format_cents(amount_cents)} exceeds the pending balance of {format_cents(credit.remaining_cents)}",
            details={
                "credit_id": credit.id,
                "amount_cents": amount_cents,
                "remaining_cents": credit.remaining_cents,
            },
        )
    require_user(actor_id)

    payment = Payment(
        sale_id=credit.sale_id,
        credit_id=credit.id,
        amount_cents=amount_cents,
        method=method,
        reference=reference,
        cashier_id=actor_id,
        created_at=utcnow(),
    )
    db.session.add(payment)
    db.session.flush()  # Get payment ID

    installments = (
        db.session.query(Installment)
        .filter_by(credit_id=credit.id)
        .order_by(Installment.sequence_number)
        .all()
    )
    applied_by_installment, residual = distribute(amount_cents, installments)
    if residual:
        raise LedgerSystemError(
            f"Credit {credit.id} balance is out of sync with its installments "
            f"({residual} cents could not be applied)"
        )

    allocations = []
    for installment, applied in applied_by_installment.items():
        allocation = PaymentAllocation(
            payment_id=payment.id,
            installment_id=installment.id,
            amount_applied_cents=applied,
        )
        db.session.add(allocation)
        allocations.append(allocation)

    _refresh_credit_balance(credit, installments)
    db.session.flush()

    logger.info(
        "Payment %s of %s applied to credit %s across %s installments; remaining %s",
        payment.id, format_cents(amount_cents), credit.id, len(allocations),
        format_cents(credit.remaining_cents),
    )
    return payment, allocations


def apply_payment(
    credit_id: int,
    amount_cents: int,
    method: str,
    reference: str | None = None,
    actor_id: int | None = None,
) -> tuple[Payment, list[PaymentAllocation]]:
    """
    Register an abono against an existing credit.

    Raises:
        CreditNotFound, CreditNotActive, InvalidAmount, InvalidPaymentMethod,
        PaymentExceedsBalance, UserNotFound. Nothing changes on failure.
    """
    def _op():
        credit = lock_for_update(db.session.query(Credit).filter_by(id=credit_id)).first()
        if credit is None:
            raise CreditNotFound(f"Credit {credit_id} not found", details={"credit_id": credit_id})
        return apply_payment_in_transaction(credit, amount_cents, method, actor_id, reference=reference)

    return run_in_transaction(_op)


def record_cash_payment(
    sale: Sale,
    amount_cents: int,
    method: str,
    cashier_id: int,
    reference: str | None = None,
) -> Payment:
    """Persist a payment on a CASH sale. Cash payments are never allocated."""
    _validate_amount(amount_cents)
    _validate_method(method)

    payment = Payment(
        sale_id=sale.id,
        credit_id=None,
        amount_cents=amount_cents,
        method=method,
        reference=reference,
        cashier_id=cashier_id,
        created_at=utcnow(),
    )
    db.session.add(payment)
    db.session.flush()
    return payment


# =============================================================================
# READS
# =============================================================================

def payment_history(credit_id: int) -> list[Payment]:
    """Payments against a credit, oldest first, with allocations loaded."""
    if db.session.get(Credit, credit_id) is None:
        raise CreditNotFound(f"Credit {credit_id} not found", details={"credit_id": credit_id})
    return (
        db.session.query(Payment)
        .filter_by(credit_id=credit_id)
        .order_by(Payment.id)
        .all()
    )


def allocations_for_installment(installment_id: int) -> list[PaymentAllocation]:
    return (
        db.session.query(PaymentAllocation)
        .filter_by(installment_id=installment_id)
        .order_by(PaymentAllocation.id)
        .all()
    )
