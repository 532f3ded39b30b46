# Overview: Lookups of externally managed master data (stores, products, suppliers, users).

from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, Store, Supplier, User


def _require(model, object_id, label: str, *, active: bool):
    if object_id is None:
        raise ValidationError(f"{label}_id is required")
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFoundError(f"{label.capitalize()} {object_id} not found")
    if active and not obj.is_active:
        raise ValidationError(f"{label.capitalize()} {object_id} is inactive")
    return obj


def require_store(store_id, *, active: bool = True) -> Store:
    return _require(Store, store_id, "store", active=active)


def require_product(product_id, *, active: bool = False) -> Product:
    return _require(Product, product_id, "product", active=active)


def require_supplier(supplier_id, *, active: bool = True) -> Supplier:
    return _require(Supplier, supplier_id, "supplier", active=active)


def require_user(user_id, *, active: bool = True) -> User:
    return _require(User, user_id, "user", active=active)
