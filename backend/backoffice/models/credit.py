from __future__ import annotations

from datetime import date

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date, today


CREDIT_STATUS_ACTIVE = "ACTIVE"
CREDIT_STATUS_COMPLETED = "COMPLETED"
CREDIT_STATUS_VOIDED = "VOIDED"

INSTALLMENT_STATUS_PENDING = "PENDING"
INSTALLMENT_STATUS_PARTIAL = "PARTIAL"
INSTALLMENT_STATUS_PAID = "PAID"
INSTALLMENT_STATUS_OVERDUE = "OVERDUE"


class Credit(db.Model):
    """
    Installment plan attached to a CREDIT sale (one-to-one).

    INVARIANTS:
    - remaining_cents == Σ installment.remaining_cents
    - status == COMPLETED  <=>  remaining_cents == 0
    - Σ installment.amount_cents == total_cents (last installment absorbs rounding)
    """
    __tablename__ = "credits"
    __table_args__ = (
        db.CheckConstraint("remaining_cents >= 0", name="ck_credits_remaining_non_negative"),
        db.CheckConstraint("remaining_cents <= total_cents", name="ck_credits_remaining_le_total"),
        db.Index("ix_credits_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    total_cents = db.Column(db.Integer, nullable=False)
    remaining_cents = db.Column(db.Integer, nullable=False)

    installment_count = db.Column(db.Integer, nullable=False)
    installment_cents = db.Column(db.Integer, nullable=False)

    start_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=CREDIT_STATUS_ACTIVE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    installments = db.relationship("Installment", lazy=True, order_by="Installment.sequence_number")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == CREDIT_STATUS_ACTIVE

    @property
    def paid_cents(self) -> int:
        return self.total_cents - self.remaining_cents

    def next_due_date(self) -> date | None:
        pending = [i.due_date for i in self.installments if i.remaining_cents > 0]
        return min(pending) if pending else None

    def to_dict(self, include_installments: bool = True, as_of: date | None = None) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "total_cents": self.total_cents,
            "remaining_cents": self.remaining_cents,
            "paid_cents": self.paid_cents,
            "installment_count": self.installment_count,
            "installment_cents": self.installment_cents,
            "start_date": to_iso_date(self.start_date),
            "next_due_date": to_iso_date(self.next_due_date()),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_installments:
            data["installments"] = [i.to_dict(as_of=as_of) for i in self.installments]
        return data


class Installment(db.Model):
    """
    One scheduled slice of a credit.

    INVARIANT: amount_cents == paid_cents + remaining_cents

    STATUS:
    The stored status is maintained on every payment (PAID / PARTIAL /
    PENDING-or-OVERDUE). OVERDUE also depends on the calendar, so readers
    should use effective_status(); the stored value may lag until the
    mark-overdue batch runs.
    """
    __tablename__ = "installments"
    __table_args__ = (
        db.UniqueConstraint("credit_id", "sequence_number", name="uq_installments_credit_seq"),
        db.CheckConstraint("paid_cents >= 0", name="ck_installments_paid_non_negative"),
        db.CheckConstraint("remaining_cents >= 0", name="ck_installments_remaining_non_negative"),
        db.CheckConstraint("amount_cents = paid_cents + remaining_cents", name="ck_installments_balance"),
        db.Index("ix_installments_due_status", "due_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("credits.id"), nullable=False, index=True)
    sequence_number = db.Column(db.Integer, nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_cents = db.Column(db.Integer, nullable=False)

    due_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=INSTALLMENT_STATUS_PENDING, index=True)

    def is_overdue(self, as_of: date | None = None) -> bool:
        as_of = as_of or today()
        return self.remaining_cents > 0 and self.due_date < as_of

    def recompute_status(self, as_of: date | None = None) -> str:
        if self.remaining_cents == 0:
            self.status = INSTALLMENT_STATUS_PAID
        elif self.paid_cents > 0:
            self.status = INSTALLMENT_STATUS_PARTIAL
        elif self.is_overdue(as_of):
            self.status = INSTALLMENT_STATUS_OVERDUE
        else:
            self.status = INSTALLMENT_STATUS_PENDING
        return self.status

    def effective_status(self, as_of: date | None = None) -> str:
        if self.remaining_cents == 0:
            return INSTALLMENT_STATUS_PAID
        if self.is_overdue(as_of):
            return INSTALLMENT_STATUS_OVERDUE
        if self.paid_cents > 0:
            return INSTALLMENT_STATUS_PARTIAL
        return INSTALLMENT_STATUS_PENDING

    def to_dict(self, as_of: date | None = None) -> dict:
        return {
            "id": self.id,
            "credit_id": self.credit_id,
            "sequence_number": self.sequence_number,
            "amount_cents": self.amount_cents,
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "due_date": to_iso_date(self.due_date),
            "status": self.effective_status(as_of),
        }
