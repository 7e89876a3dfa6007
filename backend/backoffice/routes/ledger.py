# Overview: Flask API routes over the settlement and credit ledger; parses input and returns JSON responses.

# backend/backoffice/routes/ledger.py
"""
Ledger API routes

Thin presentation layer over the ledger services:
- Domain errors (LedgerError) become 4xx with {"error", "code", "details"}
- Storage/system failures become 500 and are logged with a traceback
- Actor ids are explicit in the request body; there is no ambient user

Amounts are integer cents throughout.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import credit_service, payment_service, reversal_service, settlement_service, stock_ledger


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _ledger_error(e: LedgerError):
    return jsonify(e.to_dict()), e.http_status


def _missing(data: dict, *fields: str) -> str | None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        return f"{', '.join(missing)} required"
    return None


# =============================================================================
# SALES
# =============================================================================

@ledger_bp.post("/sales")
def settle_sale_route():
    """
    Settle a sale.

    Request body:
    {
        "customer_id": 1,
        "cashier_id": 2,
        "payment_kind": "CREDIT",
        "installment_count": 12,
        "discount_cents": 0,
        "shipping_cents": 0,
        "lines": [{"product_id": 5, "quantity": 2, "line_discount_cents": 0}],
        "payments": [{"amount_cents": 10000, "method": "CASH", "reference": null}]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        error = _missing(data, "customer_id", "cashier_id", "payment_kind")
        if error:
            return jsonify({"error": error}), 400

        sale = settlement_service.settle_sale(
            customer_id=data["customer_id"],
            cashier_id=data["cashier_id"],
            lines=data.get("lines") or [],
            payment_kind=data["payment_kind"],
            installment_count=data.get("installment_count"),
            payments=data.get("payments") or [],
            discount_cents=data.get("discount_cents") or 0,
            shipping_cents=data.get("shipping_cents") or 0,
        )

        credit = credit_service.get_credit_for_sale(sale.id)
        return jsonify({
            "sale": sale.to_dict(),
            "credit": credit.to_dict() if credit else None,
        }), 201

    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to settle sale")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/sales/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = settlement_service.get_sale(sale_id)
        credit = credit_service.get_credit_for_sale(sale.id)
        return jsonify({
            "sale": sale.to_dict(),
            "credit": credit.to_dict() if credit else None,
        }), 200
    except LedgerError as e:
        return _ledger_error(e)


@ledger_bp.post("/sales/<int:sale_id>/void")
def void_sale_route(sale_id: int):
    """
    Void a completed sale and restore its stock.

    Request body: {"actor_id": 2}
    """
    try:
        data = request.get_json(silent=True) or {}
        error = _missing(data, "actor_id")
        if error:
            return jsonify({"error": error}), 400

        sale = reversal_service.void_sale(sale_id, data["actor_id"])
        return jsonify({"sale": sale.to_dict()}), 200

    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CREDITS
# =============================================================================

@ledger_bp.get("/credits/<int:credit_id>")
def get_credit_route(credit_id: int):
    try:
        credit = credit_service.get_credit(credit_id)
        return jsonify({"credit": credit.to_dict()}), 200
    except LedgerError as e:
        return _ledger_error(e)


@ledger_bp.post("/credits/<int:credit_id>/payments")
def apply_payment_route(credit_id: int):
    """
    Register an abono against a credit.

    Request body:
    {
        "amount_cents": 30000,
        "method": "CASH",
        "reference": "OP-123",  (optional)
        "actor_id": 2
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        error = _missing(data, "amount_cents", "method", "actor_id")
        if error:
            return jsonify({"error": error}), 400

        payment, allocations = payment_service.apply_payment(
            credit_id,
            data["amount_cents"],
            data["method"],
            reference=data.get("reference"),
            actor_id=data["actor_id"],
        )
        credit = credit_service.get_credit(credit_id)

        return jsonify({
            "payment": payment.to_dict(),
            "allocations": [a.to_dict() for a in allocations],
            "credit": credit.to_dict(),
        }), 201

    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to apply payment")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/credits/<int:credit_id>/payments")
def payment_history_route(credit_id: int):
    try:
        payments = payment_service.payment_history(credit_id)
        return jsonify({"payments": [p.to_dict(include_allocations=True) for p in payments]}), 200
    except LedgerError as e:
        return _ledger_error(e)


# =============================================================================
# STOCK
# =============================================================================

def _stock_route(product_id: int, operation):
    try:
        data = request.get_json(silent=True) or {}
        error = _missing(data, "quantity", "reason", "actor_id")
        if error:
            return jsonify({"error": error}), 400

        movement = operation(
            product_id,
            data["quantity"],
            data["reason"],
            data["actor_id"],
            ref_id=data.get("reference_id"),
            note=data.get("note"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to move stock")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.post("/stock/<int:product_id>/debit")
def debit_stock_route(product_id: int):
    """Request body: {"quantity": 3, "reason": "LOSS", "actor_id": 2, "note": "..."}"""
    return _stock_route(product_id, stock_ledger.debit_stock)


@ledger_bp.post("/stock/<int:product_id>/credit")
def credit_stock_route(product_id: int):
    """Request body: {"quantity": 10, "reason": "PURCHASE", "actor_id": 2}"""
    return _stock_route(product_id, stock_ledger.credit_stock)


@ledger_bp.get("/stock/<int:product_id>/movements")
def list_movements_route(product_id: int):
    try:
        limit = request.args.get("limit", type=int)
        movements = stock_ledger.list_movements(product_id, limit=limit)
        return jsonify({
            "product_id": product_id,
            "stock_on_hand": stock_ledger.get_stock_on_hand(product_id),
            "movements": [m.to_dict() for m in movements],
        }), 200
    except LedgerError as e:
        return _ledger_error(e)
