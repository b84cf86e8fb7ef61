"""
Inventory ledger tests.

Verifies:
- Signed movements update stock together with an audit row
- Debits never drive stock negative
- set_stock no-op boundary and adjustment magnitude
- Bulk adjustment partial success and all-fail rollback
- Adjustment deletion re-applies the correct signed inverse
- Stock conservation across a mixed sequence
"""

import pytest

from bakery.errors import (
    BulkAdjustmentError,
    InsufficientStockError,
    InvalidStateError,
    NoOpError,
    NotFoundError,
    ValidationError,
)
from bakery.models import InventoryMovement

from conftest import stock_of


def _movements(services, product_id):
    services.gateway.session.expire_all()
    return (
        services.gateway.query(InventoryMovement)
        .filter(InventoryMovement.product_id == product_id)
        .order_by(InventoryMovement.id)
        .all()
    )


# =============================================================================
# RECORD MOVEMENT
# =============================================================================


class TestRecordMovement:

    @pytest.mark.parametrize(
        "movement_type,quantity,expected",
        [
            ("entry", 5, 15),
            ("production", 2, 12),
            ("exit", 4, 6),
            ("waste", 10, 0),
        ],
    )
    def test_signed_effect(self, services, employees, products, movement_type, quantity, expected):
        bread = products["bread"]
        movement = services.ledger.record_movement(
            bread.id, movement_type, quantity, "test", actor_id=employees["manager"].id
        )

        assert stock_of(services, bread.id) == expected
        assert movement.type == movement_type
        assert movement.quantity == quantity
        assert movement.previous_stock == 10
        assert movement.new_stock == expected
        assert movement.actor_id == employees["manager"].id

    def test_debit_beyond_stock_rejected_without_side_effects(self, services, products):
        cake = products["cake"]

        with pytest.raises(InsufficientStockError) as exc:
            services.ledger.record_movement(cake.id, "exit", 4)

        assert exc.value.details == {"product_id": cake.id, "available": 3, "requested": 4}
        assert exc.value.status_code == 409
        assert stock_of(services, cake.id) == 3
        assert _movements(services, cake.id) == []

    def test_adjustment_type_rejected(self, services, products):
        with pytest.raises(ValidationError):
            services.ledger.record_movement(products["bread"].id, "adjustment", 3)

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2.0", "1e3", True, None])
    def test_invalid_quantity_rejected(self, services, products, quantity):
        with pytest.raises(ValidationError):
            services.ledger.record_movement(products["bread"].id, "entry", quantity)
        assert stock_of(services, products["bread"].id) == 10

    def test_unknown_type_rejected(self, services, products):
        with pytest.raises(ValidationError):
            services.ledger.record_movement(products["bread"].id, "theft", 1)

    def test_unknown_product(self, services, products):
        with pytest.raises(NotFoundError):
            services.ledger.record_movement(999999, "entry", 1)

    def test_reference_id_kept(self, services, products):
        movement = services.ledger.record_movement(products["bread"].id, "entry", 1, reference_id=42)
        assert movement.reference_id == 42


# =============================================================================
# SET STOCK
# =============================================================================


class TestSetStock:

    def test_increase_records_adjustment(self, services, employees, products):
        bread = products["bread"]
        result = services.ledger.set_stock(bread.id, 25, "Conteo", actor_id=employees["admin"].id)

        assert result["old_stock"] == 10
        assert result["new_stock"] == 25
        assert result["difference"] == 15
        assert stock_of(services, bread.id) == 25

        [movement] = _movements(services, bread.id)
        assert movement.id == result["movement_id"]
        assert movement.type == "adjustment"
        assert movement.quantity == 15
        assert movement.signed_delta == 15
        assert movement.reason == "Conteo"

    def test_decrease_records_positive_magnitude(self, services, products):
        bread = products["bread"]
        result = services.ledger.set_stock(bread.id, 4)

        assert result["difference"] == -6
        [movement] = _movements(services, bread.id)
        assert movement.quantity == 6
        assert movement.signed_delta == -6
        assert movement.reason == "Ajuste de inventario"

    def test_same_level_is_noop(self, services, products):
        bread = products["bread"]

        with pytest.raises(NoOpError):
            services.ledger.set_stock(bread.id, 10)

        assert _movements(services, bread.id) == []

    def test_zero_is_allowed(self, services, products):
        result = services.ledger.set_stock(products["cake"].id, 0)
        assert result["new_stock"] == 0

    def test_negative_rejected(self, services, products):
        with pytest.raises(ValidationError):
            services.ledger.set_stock(products["bread"].id, -1)

    def test_unknown_product(self, services, products):
        with pytest.raises(NotFoundError):
            services.ledger.set_stock(999999, 3)


# =============================================================================
# BULK ADJUST
# =============================================================================


class TestBulkAdjust:

    def test_partial_success(self, services, products):
        bread, cake = products["bread"], products["cake"]
        result = services.ledger.bulk_adjust([
            {"product_id": bread.id, "new_stock": 20, "reason": "Conteo"},
            {"product_id": 999999, "new_stock": 5},
            {"product_id": cake.id, "new_stock": 3},
            {"product_id": cake.id, "new_stock": -2},
            {"new_stock": 1},
        ])

        assert result["summary"] == {"total_processed": 5, "successful": 1, "failed": 4}
        assert [f["index"] for f in result["failed"]] == [1, 2, 3, 4]
        assert [f["code"] for f in result["failed"]] == [
            "not_found", "no_op", "validation_error", "validation_error",
        ]
        assert stock_of(services, bread.id) == 20
        assert stock_of(services, cake.id) == 3

    def test_all_fail_rolls_back(self, services, products):
        bread = products["bread"]

        with pytest.raises(BulkAdjustmentError) as exc:
            services.ledger.bulk_adjust([
                {"product_id": bread.id, "new_stock": 10},
                {"product_id": 999999, "new_stock": 1},
            ])

        assert len(exc.value.failed) == 2
        assert exc.value.status_code == 400
        assert stock_of(services, bread.id) == 10
        assert _movements(services, bread.id) == []

    def test_failed_item_does_not_undo_earlier_success(self, services, products):
        bread, cake = products["bread"], products["cake"]
        services.ledger.bulk_adjust([
            {"product_id": bread.id, "new_stock": 7},
            {"product_id": 999999, "new_stock": 1},
            {"product_id": cake.id, "new_stock": 9},
        ])

        assert stock_of(services, bread.id) == 7
        assert stock_of(services, cake.id) == 9

    @pytest.mark.parametrize("items", [None, [], {"product_id": 1}])
    def test_requires_list(self, services, items):
        with pytest.raises(ValidationError):
            services.ledger.bulk_adjust(items)


# =============================================================================
# ADJUSTMENT ROW MAINTENANCE
# =============================================================================


class TestAdjustmentMaintenance:

    def test_delete_increase_subtracts(self, services, products):
        bread = products["bread"]
        result = services.ledger.set_stock(bread.id, 18)
        services.ledger.record_movement(bread.id, "exit", 3)

        reversal = services.ledger.delete_adjustment(result["movement_id"])

        assert reversal["difference"] == -8
        assert reversal["old_stock"] == 15
        assert stock_of(services, bread.id) == 7
        assert [m.type for m in _movements(services, bread.id)] == ["exit"]

    def test_delete_decrease_adds_back(self, services, products):
        bread = products["bread"]
        result = services.ledger.set_stock(bread.id, 4)

        reversal = services.ledger.delete_adjustment(result["movement_id"])

        assert reversal["difference"] == 6
        assert stock_of(services, bread.id) == 10

    def test_delete_that_would_go_negative_rejected(self, services, products):
        bread = products["bread"]
        result = services.ledger.set_stock(bread.id, 20)
        services.ledger.record_movement(bread.id, "exit", 15)

        with pytest.raises(InsufficientStockError):
            services.ledger.delete_adjustment(result["movement_id"])

        assert stock_of(services, bread.id) == 5
        assert len(_movements(services, bread.id)) == 2

    def test_only_adjustments_can_be_deleted(self, services, products):
        movement = services.ledger.record_movement(products["bread"].id, "entry", 1)

        with pytest.raises(InvalidStateError):
            services.ledger.delete_adjustment(movement.id)

    def test_update_reason(self, services, products):
        result = services.ledger.set_stock(products["bread"].id, 12)
        movement = services.ledger.update_movement_reason(result["movement_id"], "Recuento semanal")
        assert movement.reason == "Recuento semanal"

    def test_update_reason_requires_text(self, services, products):
        result = services.ledger.set_stock(products["bread"].id, 12)
        with pytest.raises(ValidationError):
            services.ledger.update_movement_reason(result["movement_id"], "   ")

    def test_non_adjustment_reason_is_immutable(self, services, products):
        movement = services.ledger.record_movement(products["bread"].id, "entry", 1)
        with pytest.raises(InvalidStateError):
            services.ledger.update_movement_reason(movement.id, "edited")

    def test_missing_movement(self, services):
        with pytest.raises(NotFoundError):
            services.ledger.get_movement(999999)


# =============================================================================
# CONSERVATION AND READS
# =============================================================================


class TestConservationAndReads:

    def test_stock_equals_initial_plus_signed_movements(self, services, products):
        bread = products["bread"]
        services.ledger.record_movement(bread.id, "entry", 7)
        services.ledger.record_movement(bread.id, "exit", 2)
        services.ledger.set_stock(bread.id, 30)
        services.ledger.record_movement(bread.id, "waste", 5)
        adjustment = services.ledger.set_stock(bread.id, 11)
        services.ledger.record_movement(bread.id, "production", 9)
        services.ledger.delete_adjustment(adjustment["movement_id"])
        with pytest.raises(InsufficientStockError):
            services.ledger.record_movement(bread.id, "exit", 1000)

        movements = _movements(services, bread.id)
        assert stock_of(services, bread.id) == 10 + sum(m.signed_delta for m in movements)

    def test_list_movements_filters_and_paginates(self, services, products):
        bread = products["bread"]
        for _ in range(3):
            services.ledger.record_movement(bread.id, "entry", 1)
        services.ledger.record_movement(bread.id, "exit", 1)

        result = services.ledger.list_movements(product_id=bread.id, movement_type="entry", limit=2)

        assert result["pagination"]["total_records"] == 3
        assert result["pagination"]["total_pages"] == 2
        assert result["pagination"]["has_next"] is True
        assert len(result["movements"]) == 2
        assert {m["type"] for m in result["movements"]} == {"entry"}

    def test_unknown_sort_falls_back(self, services, products):
        result = services.ledger.list_movements(sort="DROP TABLE", order="sideways")
        assert result["filters"]["sort"] == "occurred_at"
        assert result["filters"]["order"] == "desc"

    def test_low_stock(self, services, products):
        result = services.ledger.list_low_stock()

        by_code = {p["code"]: p for p in result["low_stock_products"]}
        assert set(by_code) == {"BEB-001"}
        coffee = by_code["BEB-001"]
        assert coffee["deficit"] == 4
        assert coffee["priority"] == "critical"
        assert coffee["estimated_cost_to_restock"] == "32.00"
        assert result["estimated_total_cost"] == "32.00"

    def test_alerts(self, services, products):
        services.ledger.set_stock(products["bread"].id, 5)

        result = services.ledger.stock_alerts()

        levels = {a["code"]: a["alert_level"] for a in result["alerts"]}
        assert levels == {"PAN-001": "warning", "BEB-001": "critical"}
        assert result["critical_count"] == 1
        assert result["warning_count"] == 1

    def test_inventory_status_statistics(self, services, products):
        result = services.ledger.inventory_status(low_stock_only=True)

        assert [p["code"] for p in result["inventory"]] == ["BEB-001"]
        assert result["statistics"] == {
            "total_products": 3,
            "out_of_stock": 1,
            "low_stock": 0,
            "normal_stock": 2,
        }
