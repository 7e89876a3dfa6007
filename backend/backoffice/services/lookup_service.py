# Overview: Existence checks and lookups against catalog, customer and user collaborators.

from __future__ import annotations

from ..errors import CustomerNotFound, ProductNotFound, UserNotFound
from ..extensions import db
from ..models import Customer, Product, User
from .concurrency import lock_for_update


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def require_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id) if customer_id is not None else None
    if customer is None or not customer.is_active:
        raise CustomerNotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def require_user(user_id: int) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or not user.is_active:
        raise UserNotFound(f"User {user_id} not found", details={"user_id": user_id})
    return user
