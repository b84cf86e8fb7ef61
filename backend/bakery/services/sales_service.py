# Overview: Service-layer operations for sales; encapsulates business logic and database work.

"""
Sales engine.

Lifecycle:
    pending  -> completed   (complete_sale: stock is checked and decremented)
    pending  -> deleted     (delete_sale: header and lines removed, stock untouched)
    pending  -> cancelled   (cancel_sale: stock untouched)
    completed -> cancelled  (cancel_sale: one compensating entry movement per line)
    completed -> refunded   (reserved; no operation moves a sale there yet)

cancelled and refunded are terminal.

Every state change runs in one gateway transaction. Product rows touched by
a sale are locked in ascending id order and stock is checked for the whole
sale (quantities summed per product) before anything is written, so a
rejected sale leaves no header, lines or movements behind.
"""

from __future__ import annotations

import logging
import secrets
from decimal import Decimal

from sqlalchemy import case, func, or_

from ..errors import (
    AlreadyCancelledError,
    ConflictError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..models import PAYMENT_METHODS, SALE_STATUSES, Sale, SaleLine
from ..time_utils import SystemClock
from ..validation import (
    ModelValidationPolicy,
    optional_text,
    parse_date_filter,
    parse_int,
    parse_money,
    parse_page,
    parse_sort,
    quantize_money,
    require_choice,
    validate_payload,
)

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "FAC"
SALE_REASON = "Venta"
CANCEL_REASON = "Cancelación de venta"

# Statuses a new sale may be created with
INITIAL_STATUSES = ("pending", "completed")

SALE_SORT_FIELDS = {
    "id": Sale.id,
    "invoice_number": Sale.invoice_number,
    "total": Sale.total,
    "created_at": Sale.created_at,
    "status": Sale.status,
}

SALE_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_name",
        "customer_phone",
        "payment_method",
        "notes",
        "subtotal",
        "tax",
        "total",
    },
)


def _parse_lines(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("A sale must include at least one item", field="items")

    lines = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object", field="items")
        missing = [k for k in ("product_id", "quantity", "unit_price") if item.get(k) in (None, "")]
        if missing:
            raise ValidationError(
                f"items[{index}] must include product_id, quantity and unit_price",
                field="items",
                details={"index": index, "missing": missing},
            )
        quantity = parse_int(item["quantity"], "quantity", minimum=1)
        unit_price = parse_money(item["unit_price"], "unit_price")
        lines.append({
            "product_id": parse_int(item["product_id"], "product_id", minimum=1),
            "quantity": quantity,
            "unit_price": unit_price,
            "line_subtotal": quantize_money(unit_price * quantity),
        })
    return lines


def _requested_by_product(lines) -> dict[int, int]:
    requested: dict[int, int] = {}
    for line in lines:
        requested[line["product_id"]] = requested.get(line["product_id"], 0) + line["quantity"]
    return requested


def _resolve_totals(header: dict, lines_subtotal: Decimal) -> dict:
    """subtotal defaults to the line sum, tax to 0, total to subtotal + tax."""
    if header.get("subtotal") not in (None, ""):
        subtotal = parse_money(header["subtotal"], "subtotal")
        if subtotal != lines_subtotal:
            raise ValidationError(
                "subtotal must equal the sum of line subtotals",
                field="subtotal",
                details={"expected": f"{lines_subtotal:.2f}", "received": f"{subtotal:.2f}"},
            )
    else:
        subtotal = lines_subtotal

    tax = parse_money(header["tax"], "tax") if header.get("tax") not in (None, "") else Decimal("0.00")
    expected_total = quantize_money(subtotal + tax)

    if header.get("total") not in (None, ""):
        total = parse_money(header["total"], "total")
        if total != expected_total:
            raise ValidationError(
                "total must equal subtotal + tax",
                field="total",
                details={"expected": f"{expected_total:.2f}", "received": f"{total:.2f}"},
            )
    else:
        total = expected_total

    return {"subtotal": subtotal, "tax": tax, "total": total}


class SalesEngine:
    def __init__(self, gateway, ledger, clock=None, company_info: dict | None = None):
        self.gateway = gateway
        self.ledger = ledger
        self.clock = clock or SystemClock()
        self.company_info = company_info or {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parse_header(self, header) -> dict:
        if header is None:
            header = {}
        if not isinstance(header, dict):
            raise ValidationError("Invalid sale payload")
        if not header.get("payment_method"):
            raise ValidationError("payment_method is required", field="payment_method")
        return {
            "payment_method": require_choice(header["payment_method"], "payment_method", PAYMENT_METHODS),
            "invoice_number": optional_text(header.get("invoice_number"), "invoice_number", max_length=64),
            "customer_name": optional_text(header.get("customer_name"), "customer_name"),
            "customer_phone": optional_text(header.get("customer_phone"), "customer_phone", max_length=32),
            "notes": optional_text(header.get("notes"), "notes", max_length=2000),
        }

    def _invoice_exists(self, invoice_number: str) -> bool:
        return (
            self.gateway.query(Sale.id).filter(Sale.invoice_number == invoice_number).first()
            is not None
        )

    def _next_invoice_number(self) -> str:
        stamp = self.clock.now().strftime("%Y%m%d")
        while True:
            candidate = f"{INVOICE_PREFIX}-{stamp}-{secrets.token_hex(3).upper()}"
            if not self._invoice_exists(candidate):
                return candidate

    def _assign_invoice_number(self, requested: str | None) -> str:
        if requested is None:
            return self._next_invoice_number()
        if self._invoice_exists(requested):
            raise ConflictError(
                f"Invoice number {requested} already exists",
                {"invoice_number": requested},
            )
        return requested

    def _check_stock(self, requested: dict[int, int], products) -> None:
        for product_id in sorted(requested):
            product = products[product_id]
            if product.current_stock < requested[product_id]:
                logger.warning(
                    "Sale rejected: product %s has %d in stock, %d requested",
                    product_id, product.current_stock, requested[product_id],
                )
                raise InsufficientStockError(
                    product_id, product.current_stock, requested[product_id], product.name
                )

    def _post_exits(self, sale: Sale, products, actor_id) -> None:
        for line in sale.lines:
            self.ledger.apply_movement(
                line.product_id,
                "exit",
                line.quantity,
                SALE_REASON,
                reference_id=sale.id,
                actor_id=actor_id,
                product=products[line.product_id],
            )

    def _get_sale(self, sale_id: int, *, lock: bool = False) -> Sale:
        query = self.gateway.query(Sale).filter(Sale.id == sale_id)
        if lock:
            query = self.gateway.lock_for_update(query)
        sale = query.first()
        if sale is None:
            raise NotFoundError(f"Sale {sale_id} not found", {"sale_id": sale_id})
        return sale

    @staticmethod
    def _require_pending(sale: Sale, action: str) -> None:
        if sale.status != "pending":
            raise InvalidStateError(
                f"Only pending sales can be {action}",
                {"sale_id": sale.id, "status": sale.status},
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def process_sale(self, header, items, *, actor_id: int | None = None) -> Sale:
        """
        Create a sale with its lines in one transaction.

        A completed sale (the default) decrements stock and writes one exit
        movement per line; a pending sale stores the lines only.
        """
        lines = _parse_lines(items)
        fields = self._parse_header(header)
        header = header or {}
        status = header.get("status") or "completed"
        status = require_choice(status, "status", INITIAL_STATUSES)
        lines_subtotal = quantize_money(sum((line["line_subtotal"] for line in lines), Decimal("0")))
        fields.update(_resolve_totals(header, lines_subtotal))
        requested = _requested_by_product(lines)

        def _op():
            products = self.ledger.catalog.lock_many(requested.keys())
            if status == "completed":
                self._check_stock(requested, products)

            now = self.clock.now()
            sale = Sale(
                employee_id=actor_id,
                status=status,
                created_at=now,
                completed_at=now if status == "completed" else None,
                **fields,
            )
            sale.invoice_number = self._assign_invoice_number(fields["invoice_number"])
            for line in lines:
                sale.lines.append(SaleLine(**line))
            self.gateway.session.add(sale)
            self.gateway.session.flush()

            if status == "completed":
                self._post_exits(sale, products, actor_id)
            return sale

        sale = self.gateway.run_in_transaction(_op)
        logger.info(
            "Processed sale %s (%s) status=%s total=%s lines=%d by employee %s",
            sale.id, sale.invoice_number, sale.status, sale.total, len(lines), actor_id,
        )
        return sale

    def create_sale(self, header, *, actor_id: int | None = None) -> Sale:
        """Create an empty pending sale header."""
        fields = self._parse_header(header)
        header = header or {}
        if header.get("subtotal") not in (None, ""):
            subtotal = parse_money(header["subtotal"], "subtotal")
        else:
            subtotal = Decimal("0.00")
        fields.update(_resolve_totals({**header, "subtotal": None}, subtotal))

        def _op():
            sale = Sale(employee_id=actor_id, status="pending", created_at=self.clock.now(), **fields)
            sale.invoice_number = self._assign_invoice_number(fields["invoice_number"])
            self.gateway.session.add(sale)
            self.gateway.session.flush()
            return sale

        sale = self.gateway.run_in_transaction(_op)
        logger.info("Created pending sale %s (%s)", sale.id, sale.invoice_number)
        return sale

    def complete_sale(self, sale_id, *, actor_id: int | None = None) -> Sale:
        sale_id = parse_int(sale_id, "sale_id", minimum=1)

        def _op():
            sale = self._get_sale(sale_id, lock=True)
            self._require_pending(sale, "completed")
            if not sale.lines:
                raise ValidationError("A sale must include at least one item", field="items")

            requested = _requested_by_product(
                {"product_id": line.product_id, "quantity": line.quantity} for line in sale.lines
            )
            products = self.ledger.catalog.lock_many(requested.keys())
            self._check_stock(requested, products)

            now = self.clock.now()
            sale.status = "completed"
            sale.completed_at = now
            sale.updated_at = now
            self._post_exits(sale, products, actor_id)
            return sale

        sale = self.gateway.run_in_transaction(_op)
        logger.info("Completed sale %s by employee %s", sale.id, actor_id)
        return sale

    def cancel_sale(self, sale_id, *, actor_id: int | None = None) -> Sale:
        """
        Cancel a pending or completed sale.

        A completed sale gets one compensating entry movement per line so
        stock returns exactly to its pre-sale level.
        """
        sale_id = parse_int(sale_id, "sale_id", minimum=1)

        def _op():
            sale = self._get_sale(sale_id, lock=True)
            if sale.status == "cancelled":
                raise AlreadyCancelledError("Sale is already cancelled", {"sale_id": sale_id})
            if sale.status == "refunded":
                raise InvalidStateError(
                    "Refunded sales cannot be cancelled",
                    {"sale_id": sale_id, "status": sale.status},
                )

            restore = sale.status == "completed"
            now = self.clock.now()
            sale.status = "cancelled"
            sale.cancelled_at = now
            sale.updated_at = now

            if restore and sale.lines:
                products = self.ledger.catalog.lock_many(line.product_id for line in sale.lines)
                for line in sale.lines:
                    self.ledger.apply_movement(
                        line.product_id,
                        "entry",
                        line.quantity,
                        CANCEL_REASON,
                        reference_id=sale.id,
                        actor_id=actor_id,
                        product=products[line.product_id],
                    )
            self.gateway.session.flush()
            return sale, restore

        sale, restored = self.gateway.run_in_transaction(_op)
        logger.info(
            "Cancelled sale %s by employee %s (inventory restored: %s)",
            sale.id, actor_id, restored,
        )
        return sale

    def update_sale(self, sale_id, header) -> Sale:
        """
        Edit header fields of a pending sale; lines are not editable.

        A sale with lines keeps subtotal equal to their sum; only a sale
        without lines takes a free subtotal.
        """
        sale_id = parse_int(sale_id, "sale_id", minimum=1)
        patch = validate_payload(model=Sale, payload=header, policy=SALE_UPDATE_POLICY)
        if "payment_method" in patch:
            patch["payment_method"] = require_choice(patch["payment_method"], "payment_method", PAYMENT_METHODS)

        def _op():
            sale = self._get_sale(sale_id, lock=True)
            self._require_pending(sale, "updated")

            for key in ("customer_name", "customer_phone", "notes"):
                if key in patch:
                    setattr(sale, key, patch[key] or None)
            if "payment_method" in patch:
                sale.payment_method = patch["payment_method"]

            if sale.lines:
                subtotal = quantize_money(sum((line.line_subtotal for line in sale.lines), Decimal("0")))
                if "subtotal" in patch and patch["subtotal"] != subtotal:
                    raise ValidationError(
                        "subtotal must equal the sum of line subtotals",
                        field="subtotal",
                        details={"expected": f"{subtotal:.2f}", "received": f"{patch['subtotal']:.2f}"},
                    )
            else:
                subtotal = patch.get("subtotal", sale.subtotal)
            tax = patch.get("tax", sale.tax)
            expected_total = quantize_money(Decimal(subtotal) + Decimal(tax))
            if "total" in patch and patch["total"] != expected_total:
                raise ValidationError(
                    "total must equal subtotal + tax",
                    field="total",
                    details={"expected": f"{expected_total:.2f}", "received": f"{patch['total']:.2f}"},
                )
            sale.subtotal = subtotal
            sale.tax = tax
            sale.total = expected_total
            sale.updated_at = self.clock.now()
            self.gateway.session.flush()
            return sale

        sale = self.gateway.run_in_transaction(_op)
        logger.info("Updated pending sale %s", sale.id)
        return sale

    def delete_sale(self, sale_id) -> None:
        sale_id = parse_int(sale_id, "sale_id", minimum=1)

        def _op():
            sale = self._get_sale(sale_id, lock=True)
            self._require_pending(sale, "deleted")
            # lines go first through the delete-orphan cascade
            self.gateway.session.delete(sale)
            self.gateway.session.flush()

        self.gateway.run_in_transaction(_op)
        logger.info("Deleted pending sale %s", sale_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_sale(self, sale_id) -> Sale:
        return self._get_sale(parse_int(sale_id, "sale_id", minimum=1))

    def _filtered_query(self, *, search, status, employee_id, payment_method, date_from, date_to):
        query = self.gateway.query(Sale)
        filters: dict = {}
        if search:
            filters["search"] = search.strip()
            like = f"%{filters['search']}%"
            query = query.filter(or_(Sale.invoice_number.ilike(like), Sale.customer_name.ilike(like)))
        if status:
            filters["status"] = require_choice(status, "status", SALE_STATUSES)
            query = query.filter(Sale.status == filters["status"])
        if employee_id not in (None, ""):
            filters["employee"] = parse_int(employee_id, "employee", minimum=1)
            query = query.filter(Sale.employee_id == filters["employee"])
        if payment_method:
            filters["payment_method"] = require_choice(payment_method, "payment_method", PAYMENT_METHODS)
            query = query.filter(Sale.payment_method == filters["payment_method"])
        start = parse_date_filter(date_from, "date_from")
        end = parse_date_filter(date_to, "date_to")
        if start is not None:
            filters["date_from"] = start.date().isoformat()
            query = query.filter(func.date(Sale.created_at) >= filters["date_from"])
        if end is not None:
            filters["date_to"] = end.date().isoformat()
            query = query.filter(func.date(Sale.created_at) <= filters["date_to"])
        return query, filters

    def list_sales(
        self,
        *,
        search=None,
        status=None,
        employee_id=None,
        payment_method=None,
        date_from=None,
        date_to=None,
        sort=None,
        order=None,
        page=None,
        limit=None,
        default_limit: int = 10,
        max_limit: int = 100,
    ) -> dict:
        query, filters = self._filtered_query(
            search=search,
            status=status,
            employee_id=employee_id,
            payment_method=payment_method,
            date_from=date_from,
            date_to=date_to,
        )
        sort_key, direction, column = parse_sort(sort, order, SALE_SORT_FIELDS, default="created_at")
        paging = parse_page(page, limit, default_limit=default_limit, max_limit=max_limit)

        total_records = query.count()
        ordering = column.asc() if direction == "asc" else column.desc()
        sales = query.order_by(ordering, Sale.id.desc()).offset(paging.offset).limit(paging.limit).all()

        summary = query.with_entities(
            func.count(Sale.id),
            func.coalesce(func.sum(case((Sale.status == "completed", Sale.total), else_=0)), 0),
            func.coalesce(func.sum(case((Sale.status == "completed", 1), else_=0)), 0),
        ).one()

        items = []
        for sale in sales:
            data = sale.to_dict()
            data["items_count"] = len(sale.lines)
            items.append(data)

        return {
            "sales": items,
            "pagination": paging.meta(total_records),
            "filters": {**filters, "sort": sort_key, "order": direction},
            "summary": {
                "total_sales": int(summary[0] or 0),
                "total_revenue": f"{Decimal(summary[1] or 0):.2f}",
                "completed_sales": int(summary[2] or 0),
            },
        }

    def get_receipt(self, sale_id) -> dict:
        sale = self.get_sale(sale_id)
        return {
            "company": dict(self.company_info),
            "sale": sale.to_dict(include_lines=True),
            "receipt_number": sale.invoice_number,
            "generated_at": self.clock.now().strftime("%Y-%m-%d %H:%M:%S"),
        }
