from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

MOVEMENT_TYPES = ("entry", "exit", "adjustment", "production", "waste")

# Signed effect on stock per unit of quantity. Adjustments have no fixed
# sign; their direction is captured by previous_stock/new_stock.
MOVEMENT_SIGNS = {
    "entry": 1,
    "production": 1,
    "exit": -1,
    "waste": -1,
}


class InventoryMovement(db.Model):
    """
    Append-only stock movement log.

    quantity is always a positive magnitude. previous_stock and new_stock
    snapshot the product stock around the movement, so the signed effect
    of any row (adjustments included) is new_stock - previous_stock.

    Only adjustment rows may have their reason edited or be deleted.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_inventory_movements_reference", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)

    # Originating document (sale id for sale exits and cancellation entries)
    reference_id = db.Column(db.Integer, nullable=True)

    actor_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))
    actor = db.relationship("Employee")

    @property
    def signed_delta(self) -> int:
        return self.new_stock - self.previous_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.code if self.product else None,
            "product_name": self.product.name if self.product else None,
            "type": self.type,
            "quantity": self.quantity,
            "signed_delta": self.signed_delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference_id": self.reference_id,
            "actor_id": self.actor_id,
            "actor_name": self.actor.full_name if self.actor else None,
            "occurred_at": to_utc_z(self.occurred_at),
        }
