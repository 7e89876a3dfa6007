# Overview: Service-layer operations for sale reversal; voids a sale and restores its stock.

"""
Reversal

A void is a compensating event, never an edit:
- each SaleLine produces a new RETURN movement (stock back in)
- the sale flips COMPLETED -> VOIDED with voided_at / voided_by_user_id
- a CREDIT sale's credit flips to VOIDED

RULE: a credit that has ever received money cannot be voided
(total != remaining -> HasOutstandingPayments). The money has to be returned
first. A credit whose payments were later refunded back to zero passes this
check; that is accepted.

All of it happens in one transaction: either every line's stock is restored
and both sale and credit are VOIDED, or nothing changes.
"""

from __future__ import annotations

import logging

from ..errors import HasOutstandingPayments, SaleNotCompleted, SaleNotFound
from ..extensions import db
from ..models import Credit, Sale, SaleLine
from ..models.credit import CREDIT_STATUS_VOIDED
from ..models.inventory import REASON_RETURN
from ..models.sales import PAYMENT_KIND_CREDIT, SALE_STATUS_COMPLETED, SALE_STATUS_VOIDED
from ..time_utils import utcnow
from . import stock_ledger
from .concurrency import lock_for_update, run_in_transaction
from .lookup_service import require_user

logger = logging.getLogger(__name__)


def _void_credit_locked(sale: Sale) -> Credit | None:
    credit = lock_for_update(db.session.query(Credit).filter_by(sale_id=sale.id)).first()
    if credit is None:
        return None

    if credit.total_cents != credit.remaining_cents:
        raise HasOutstandingPayments(
            "The credit has payments applied; return the money before voiding",
            details={
                "sale_id": sale.id,
                "credit_id": credit.id,
                "total_cents": credit.total_cents,
                "remaining_cents": credit.remaining_cents,
            },
        )

    credit.status = CREDIT_STATUS_VOIDED
    return credit


def void_sale(sale_id: int, actor_id: int) -> Sale:
    """
    Void a completed sale and restore its stock.

    Raises:
        SaleNotFound, SaleNotCompleted, HasOutstandingPayments, UserNotFound
    """
    def _op() -> Sale:
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})

        if sale.status != SALE_STATUS_COMPLETED:
            raise SaleNotCompleted(
                f"Sale {sale.number} is {sale.status}; only COMPLETED sales can be voided",
                details={"sale_id": sale.id, "status": sale.status},
            )

        require_user(actor_id)

        if sale.payment_kind == PAYMENT_KIND_CREDIT:
            _void_credit_locked(sale)

        lines = db.session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id).all()
        for line in lines:
            stock_ledger.credit(
                line.product_id,
                line.quantity,
                REASON_RETURN,
                actor_id,
                ref_id=sale.id,
                note=f"Void sale {sale.number}",
            )

        sale.status = SALE_STATUS_VOIDED
        sale.voided_at = utcnow()
        sale.voided_by_user_id = actor_id
        return sale

    sale = run_in_transaction(_op)
    logger.info("Sale %s voided by user %s", sale.number, actor_id)
    return sale
