# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/bakery/services/inventory_service.py
"""
Bakery Inventory Invariants (authoritative)

Stock model:
- Product.current_stock holds the live quantity on hand.
- Every change to current_stock is recorded as one InventoryMovement row in
  the same transaction, with previous_stock/new_stock snapshots.
- For every product: current_stock == initial stock + SUM(new_stock - previous_stock).

Movement types:
- entry, production: +quantity
- exit, waste: -quantity, rejected if stock would go below zero
- adjustment: written only by set_stock/bulk_adjust, quantity = abs(diff)

Mutability:
- The movement log is append-only, except that adjustment rows may have
  their reason edited, and may be deleted, which re-applies the inverse
  of their signed effect to the product stock.

Time:
- All datetimes are UTC-naive; occurred_at comes from the injected clock.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import case, func, or_

from ..errors import (
    BulkAdjustmentError,
    ConflictError,
    InsufficientStockError,
    InvalidStateError,
    NoOpError,
    NotFoundError,
    ValidationError,
)
from ..models import InventoryMovement, MOVEMENT_SIGNS, MOVEMENT_TYPES, Category, Product
from ..time_utils import SystemClock
from ..validation import (
    optional_text,
    parse_date_filter,
    parse_int,
    parse_money,
    parse_page,
    parse_sort,
    require_choice,
)

logger = logging.getLogger(__name__)

DEFAULT_ADJUSTMENT_REASON = "Ajuste de inventario"

MOVEMENT_SORT_FIELDS = {
    "id": InventoryMovement.id,
    "occurred_at": InventoryMovement.occurred_at,
    "type": InventoryMovement.type,
    "quantity": InventoryMovement.quantity,
}

INVENTORY_SORT_FIELDS = {
    "id": Product.id,
    "name": Product.name,
    "current_stock": Product.current_stock,
    "min_stock": Product.min_stock,
    "category": Category.name,
}


def restock_priority(current_stock: int, min_stock: int) -> str:
    if current_stock <= 0:
        return "critical"
    if current_stock <= min_stock * 0.5:
        return "high"
    if current_stock <= min_stock:
        return "medium"
    return "low"


def stock_status(current_stock: int, min_stock: int) -> str:
    if current_stock <= 0:
        return "out_of_stock"
    if current_stock <= min_stock:
        return "low_stock"
    return "normal"


def _percentage_of_minimum(current_stock: int, min_stock: int) -> float:
    if min_stock <= 0:
        return 0.0
    return round(current_stock / min_stock * 100, 2)


class ProductCatalog:
    """Product lookups used by the ledger and the sales engine, plus bootstrap creation."""

    def __init__(self, gateway):
        self.gateway = gateway

    def get(self, product_id: int, *, lock: bool = False) -> Product:
        query = self.gateway.query(Product).filter(Product.id == product_id)
        if lock:
            query = self.gateway.lock_for_update(query)
        product = query.first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
        return product

    def exists(self, product_id: int) -> bool:
        return self.gateway.query(Product.id).filter(Product.id == product_id).first() is not None

    def get_stock(self, product_id: int) -> int:
        return self.get(product_id).current_stock

    def lock_many(self, product_ids) -> dict[int, Product]:
        """Lock products in ascending id order; raises NotFoundError for the first missing id."""
        ids = sorted(set(product_ids))
        query = self.gateway.lock_for_update(
            self.gateway.query(Product).filter(Product.id.in_(ids)).order_by(Product.id)
        )
        found = {p.id: p for p in query.all()}
        for product_id in ids:
            if product_id not in found:
                raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
        return found

    # ------------------------------------------------------------------
    # Bootstrap (CLI and seed data)
    # ------------------------------------------------------------------

    def create_category(self, name: str, description: str | None = None) -> Category:
        name = optional_text(name, "name", max_length=120)
        if name is None:
            raise ValidationError("name is required", field="name")

        def _op():
            existing = self.gateway.query(Category).filter(Category.name == name).first()
            if existing is not None:
                return existing
            category = Category(name=name, description=optional_text(description, "description"))
            self.gateway.session.add(category)
            self.gateway.session.flush()
            return category

        return self.gateway.run_in_transaction(_op)

    def create(
        self,
        *,
        code: str,
        name: str,
        price,
        cost=0,
        current_stock=0,
        min_stock=0,
        unit: str = "unidad",
        category_id: int | None = None,
        description: str | None = None,
    ) -> Product:
        """
        Create an active product.

        The starting stock is the product's opening balance; every later
        change goes through the ledger.
        """
        code = optional_text(code, "code", max_length=64)
        name = optional_text(name, "name")
        if code is None or name is None:
            raise ValidationError("code and name are required")
        fields = {
            "code": code,
            "name": name,
            "price": parse_money(price, "price"),
            "cost": parse_money(cost, "cost"),
            "current_stock": parse_int(current_stock, "current_stock", minimum=0),
            "min_stock": parse_int(min_stock, "min_stock", minimum=0),
            "unit": optional_text(unit, "unit", max_length=32) or "unidad",
            "category_id": category_id,
            "description": optional_text(description, "description", max_length=2000),
            "status": "active",
        }

        def _op():
            if self.gateway.query(Product.id).filter(Product.code == code).first():
                raise ConflictError(f"Product code {code} already exists", {"code": code})
            product = Product(**fields)
            self.gateway.session.add(product)
            self.gateway.session.flush()
            return product

        product = self.gateway.run_in_transaction(_op)
        logger.info("Created product %s (%s) with opening stock %d", product.id, code, product.current_stock)
        return product


class InventoryLedger:
    def __init__(self, gateway, clock=None, catalog: ProductCatalog | None = None):
        self.gateway = gateway
        self.clock = clock or SystemClock()
        self.catalog = catalog or ProductCatalog(gateway)

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_movement(movement_type, quantity) -> tuple[str, int]:
        movement_type = require_choice(movement_type, "type", MOVEMENT_TYPES)
        if movement_type == "adjustment":
            raise ValidationError(
                "Adjustments are recorded by setting the stock level, not as movements",
                field="type",
            )
        quantity = parse_int(quantity, "quantity", minimum=1)
        return movement_type, quantity

    def apply_movement(
        self,
        product_id: int,
        movement_type: str,
        quantity: int,
        reason: str | None = None,
        *,
        reference_id: int | None = None,
        actor_id: int | None = None,
        product: Product | None = None,
    ) -> InventoryMovement:
        """
        Apply a movement inside the caller's transaction (flush, no commit).

        Pass an already-locked product to skip the lookup.
        """
        movement_type, quantity = self._validate_movement(movement_type, quantity)
        if product is None:
            product = self.catalog.get(product_id, lock=True)

        previous_stock = product.current_stock
        new_stock = previous_stock + MOVEMENT_SIGNS[movement_type] * quantity
        if new_stock < 0:
            logger.warning(
                "Rejected %s of %d for product %s: only %d in stock",
                movement_type, quantity, product.id, previous_stock,
            )
            raise InsufficientStockError(product.id, previous_stock, quantity, product.name)

        product.current_stock = new_stock
        movement = InventoryMovement(
            product_id=product.id,
            type=movement_type,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=optional_text(reason, "reason"),
            reference_id=reference_id,
            actor_id=actor_id,
            occurred_at=self.clock.now(),
        )
        self.gateway.session.add(movement)
        self.gateway.session.flush()
        return movement

    def record_movement(
        self,
        product_id,
        movement_type,
        quantity,
        reason: str | None = None,
        *,
        reference_id: int | None = None,
        actor_id: int | None = None,
    ) -> InventoryMovement:
        """Append a movement and update stock atomically."""
        product_id = parse_int(product_id, "product_id", minimum=1)
        movement_type, quantity = self._validate_movement(movement_type, quantity)

        movement = self.gateway.run_in_transaction(
            lambda: self.apply_movement(
                product_id,
                movement_type,
                quantity,
                reason,
                reference_id=reference_id,
                actor_id=actor_id,
            )
        )
        logger.info(
            "Recorded %s movement %s for product %s: %d -> %d",
            movement.type, movement.id, movement.product_id,
            movement.previous_stock, movement.new_stock,
        )
        return movement

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    def _set_stock_inner(self, product_id: int, new_stock: int, reason, actor_id) -> dict:
        product = self.catalog.get(product_id, lock=True)
        old_stock = product.current_stock
        diff = new_stock - old_stock
        if diff == 0:
            raise NoOpError(
                f"Stock for product {product_id} is already {new_stock}",
                {"product_id": product_id, "current_stock": old_stock},
            )

        product.current_stock = new_stock
        movement = InventoryMovement(
            product_id=product.id,
            type="adjustment",
            quantity=abs(diff),
            previous_stock=old_stock,
            new_stock=new_stock,
            reason=optional_text(reason, "reason") or DEFAULT_ADJUSTMENT_REASON,
            actor_id=actor_id,
            occurred_at=self.clock.now(),
        )
        self.gateway.session.add(movement)
        self.gateway.session.flush()
        return {
            "product_id": product.id,
            "product_name": product.name,
            "old_stock": old_stock,
            "new_stock": new_stock,
            "difference": diff,
            "movement_id": movement.id,
        }

    def set_stock(self, product_id, new_stock, reason: str | None = None, *, actor_id: int | None = None) -> dict:
        """
        Set a product's stock to an absolute level and log one adjustment.

        Raises NoOpError (nothing written) when the level is unchanged.
        """
        product_id = parse_int(product_id, "product_id", minimum=1)
        new_stock = parse_int(new_stock, "new_stock", minimum=0)

        result = self.gateway.run_in_transaction(
            lambda: self._set_stock_inner(product_id, new_stock, reason, actor_id)
        )
        logger.info(
            "Adjusted stock for product %s: %d -> %d (movement %s)",
            product_id, result["old_stock"], result["new_stock"], result["movement_id"],
        )
        return result

    def bulk_adjust(self, items, *, actor_id: int | None = None) -> dict:
        """
        Apply many stock adjustments in one transaction.

        Each item runs in its own savepoint; failures are collected by index.
        If nothing succeeds the whole batch is rolled back and
        BulkAdjustmentError lists every failure.
        """
        if not isinstance(items, list) or not items:
            raise ValidationError("adjustments must be a non-empty list", field="adjustments")

        def _op():
            applied: list[dict] = []
            failed: list[dict] = []
            for index, item in enumerate(items):
                product_id = item.get("product_id") if isinstance(item, dict) else None
                try:
                    if not isinstance(item, dict):
                        raise ValidationError("Each adjustment must be an object")
                    parsed_id = parse_int(item.get("product_id"), "product_id", minimum=1)
                    new_stock = parse_int(item.get("new_stock"), "new_stock", minimum=0)
                    with self.gateway.savepoint():
                        applied.append(
                            self._set_stock_inner(parsed_id, new_stock, item.get("reason"), actor_id)
                        )
                except (ValidationError, NotFoundError, NoOpError) as exc:
                    failed.append({
                        "index": index,
                        "product_id": product_id,
                        "error": exc.message,
                        "code": exc.code,
                    })

            if not applied:
                raise BulkAdjustmentError(failed)
            return applied, failed

        try:
            applied, failed = self.gateway.run_in_transaction(_op)
        except BulkAdjustmentError as exc:
            logger.warning("Bulk adjustment rejected: all %d items failed", len(exc.failed))
            raise

        logger.info("Bulk adjustment applied %d of %d items", len(applied), len(items))
        return {
            "applied": applied,
            "failed": failed,
            "summary": {
                "total_processed": len(items),
                "successful": len(applied),
                "failed": len(failed),
            },
        }

    # ------------------------------------------------------------------
    # Adjustment row maintenance
    # ------------------------------------------------------------------

    def _get_movement(self, movement_id: int, *, lock: bool = False) -> InventoryMovement:
        query = self.gateway.query(InventoryMovement).filter(InventoryMovement.id == movement_id)
        if lock:
            query = self.gateway.lock_for_update(query)
        movement = query.first()
        if movement is None:
            raise NotFoundError(f"Movement {movement_id} not found", {"movement_id": movement_id})
        return movement

    def get_movement(self, movement_id) -> InventoryMovement:
        return self._get_movement(parse_int(movement_id, "movement_id", minimum=1))

    def update_movement_reason(self, movement_id, reason) -> InventoryMovement:
        movement_id = parse_int(movement_id, "movement_id", minimum=1)
        reason = optional_text(reason, "reason")
        if reason is None:
            raise ValidationError("reason is required", field="reason")

        def _op():
            movement = self._get_movement(movement_id, lock=True)
            if movement.type != "adjustment":
                raise InvalidStateError(
                    "Only adjustment movements can be edited",
                    {"movement_id": movement_id, "type": movement.type},
                )
            movement.reason = reason
            self.gateway.session.flush()
            return movement

        return self.gateway.run_in_transaction(_op)

    def delete_adjustment(self, movement_id, *, actor_id: int | None = None) -> dict:
        """
        Delete an adjustment row and undo its effect on stock.

        The inverse applied is previous_stock - new_stock of the row, added
        to the product's stock as it is now.
        """
        movement_id = parse_int(movement_id, "movement_id", minimum=1)

        def _op():
            movement = self._get_movement(movement_id, lock=True)
            if movement.type != "adjustment":
                raise InvalidStateError(
                    "Only adjustment movements can be deleted",
                    {"movement_id": movement_id, "type": movement.type},
                )
            product = self.catalog.get(movement.product_id, lock=True)
            inverse = movement.previous_stock - movement.new_stock
            restored = product.current_stock + inverse
            if restored < 0:
                raise InsufficientStockError(product.id, product.current_stock, -inverse, product.name)

            old_stock = product.current_stock
            product.current_stock = restored
            self.gateway.session.delete(movement)
            self.gateway.session.flush()
            return {
                "movement_id": movement_id,
                "product_id": product.id,
                "old_stock": old_stock,
                "new_stock": restored,
                "difference": inverse,
            }

        result = self.gateway.run_in_transaction(_op)
        logger.info(
            "Deleted adjustment %s by employee %s; product %s stock %d -> %d",
            movement_id, actor_id, result["product_id"], result["old_stock"], result["new_stock"],
        )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current_stock(self, product_id) -> int:
        return self.catalog.get_stock(parse_int(product_id, "product_id", minimum=1))

    def list_movements(
        self,
        *,
        product_id=None,
        movement_type=None,
        date_from=None,
        date_to=None,
        sort=None,
        order=None,
        page=None,
        limit=None,
        default_limit: int = 10,
        max_limit: int = 100,
    ) -> dict:
        query = self.gateway.query(InventoryMovement)
        filters: dict = {}
        if product_id not in (None, ""):
            filters["product_id"] = parse_int(product_id, "product_id", minimum=1)
            query = query.filter(InventoryMovement.product_id == filters["product_id"])
        if movement_type not in (None, ""):
            filters["type"] = require_choice(movement_type, "type", MOVEMENT_TYPES)
            query = query.filter(InventoryMovement.type == filters["type"])
        start = parse_date_filter(date_from, "date_from")
        end = parse_date_filter(date_to, "date_to")
        if start is not None:
            query = query.filter(func.date(InventoryMovement.occurred_at) >= start.date().isoformat())
        if end is not None:
            query = query.filter(func.date(InventoryMovement.occurred_at) <= end.date().isoformat())

        sort_key, direction, column = parse_sort(sort, order, MOVEMENT_SORT_FIELDS, default="occurred_at")
        paging = parse_page(page, limit, default_limit=default_limit, max_limit=max_limit)

        total = query.count()
        ordering = column.asc() if direction == "asc" else column.desc()
        rows = (
            query.order_by(ordering, InventoryMovement.id.desc())
            .offset(paging.offset)
            .limit(paging.limit)
            .all()
        )
        return {
            "movements": [m.to_dict() for m in rows],
            "pagination": paging.meta(total),
            "filters": {
                **filters,
                "date_from": date_from or None,
                "date_to": date_to or None,
                "sort": sort_key,
                "order": direction,
            },
        }

    def _active_products(self):
        return self.gateway.query(Product).filter(Product.status == "active")

    def inventory_status(
        self,
        *,
        search=None,
        category_id=None,
        low_stock_only: bool = False,
        sort=None,
        order=None,
        page=None,
        limit=None,
        default_limit: int = 10,
        max_limit: int = 100,
    ) -> dict:
        query = self._active_products().outerjoin(Category, Product.category_id == Category.id)
        if search:
            like = f"%{search.strip()}%"
            query = query.filter(or_(Product.name.ilike(like), Product.code.ilike(like)))
        if category_id not in (None, ""):
            query = query.filter(Product.category_id == parse_int(category_id, "category", minimum=1))
        if low_stock_only:
            query = query.filter(Product.current_stock <= Product.min_stock)

        sort_key, direction, column = parse_sort(
            sort, order, INVENTORY_SORT_FIELDS, default="name", default_order="asc"
        )
        paging = parse_page(page, limit, default_limit=default_limit, max_limit=max_limit)
        total = query.count()
        ordering = column.asc() if direction == "asc" else column.desc()
        products = query.order_by(ordering, Product.id).offset(paging.offset).limit(paging.limit).all()

        items = []
        for product in products:
            data = product.to_dict()
            data.update({
                "stock_status": stock_status(product.current_stock, product.min_stock),
                "percentage_of_minimum": _percentage_of_minimum(product.current_stock, product.min_stock),
                "inventory_value": f"{product.current_stock * product.price:.2f}",
                "is_low_stock": product.current_stock <= product.min_stock,
                "is_out_of_stock": product.current_stock <= 0,
            })
            items.append(data)

        return {
            "inventory": items,
            "pagination": paging.meta(total),
            "filters": {
                "search": search or None,
                "category": category_id or None,
                "low_stock": bool(low_stock_only),
                "sort": sort_key,
                "order": direction,
            },
            "statistics": self.statistics(),
        }

    def statistics(self) -> dict:
        row = self.gateway.session.query(
            func.count(Product.id),
            func.coalesce(func.sum(case((Product.current_stock <= 0, 1), else_=0)), 0),
            func.coalesce(func.sum(case(
                ((Product.current_stock > 0) & (Product.current_stock <= Product.min_stock), 1),
                else_=0,
            )), 0),
            func.coalesce(func.sum(case((Product.current_stock > Product.min_stock, 1), else_=0)), 0),
        ).filter(Product.status == "active").one()
        return {
            "total_products": int(row[0] or 0),
            "out_of_stock": int(row[1] or 0),
            "low_stock": int(row[2] or 0),
            "normal_stock": int(row[3] or 0),
        }

    def list_low_stock(self) -> dict:
        """Active products at or below their minimum, most urgent first."""
        products = self._active_products().filter(Product.current_stock <= Product.min_stock).all()

        items = []
        total_cost = Decimal("0")
        for product in products:
            deficit = max(0, product.min_stock - product.current_stock)
            restock_cost = product.cost * deficit
            total_cost += restock_cost
            items.append({
                "id": product.id,
                "code": product.code,
                "name": product.name,
                "category_name": product.category.name if product.category else None,
                "current_stock": product.current_stock,
                "min_stock": product.min_stock,
                "unit": product.unit,
                "price": f"{product.price:.2f}",
                "deficit": deficit,
                "percentage_of_minimum": _percentage_of_minimum(product.current_stock, product.min_stock),
                "estimated_cost_to_restock": f"{restock_cost:.2f}",
                "priority": restock_priority(product.current_stock, product.min_stock),
            })
        items.sort(key=lambda i: (i["percentage_of_minimum"], i["name"]))

        return {
            "low_stock_products": items,
            "total_products": len(items),
            "estimated_total_cost": f"{total_cost:.2f}",
        }

    def stock_alerts(self) -> dict:
        products = self._active_products().filter(Product.current_stock <= Product.min_stock).all()

        alerts = []
        for product in products:
            level = "critical" if product.current_stock <= 0 else "warning"
            if level == "critical":
                message = f"Out of stock: {product.name} has no units left"
            else:
                message = (
                    f"Low stock: {product.name} is at or below its minimum "
                    f"({product.current_stock}/{product.min_stock})"
                )
            alerts.append({
                "product_id": product.id,
                "code": product.code,
                "name": product.name,
                "current_stock": product.current_stock,
                "min_stock": product.min_stock,
                "unit": product.unit,
                "alert_level": level,
                "deficit": max(0, product.min_stock - product.current_stock),
                "message": message,
            })
        alerts.sort(key=lambda a: (0 if a["alert_level"] == "critical" else 1, a["name"]))

        return {
            "alerts": alerts,
            "total_alerts": len(alerts),
            "critical_count": sum(1 for a in alerts if a["alert_level"] == "critical"),
            "warning_count": sum(1 for a in alerts if a["alert_level"] == "warning"),
        }
