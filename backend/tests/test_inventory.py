# Overview: Pytest coverage for products, stock movements and the inventory log.

import pytest

from bizdesk.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from bizdesk.models import InventoryLog
from bizdesk.services import inventory_service, reporting_service


def test_create_product_logs_initial_stock(ctx, product):
    logs = inventory_service.list_inventory_logs(ctx, product.id)
    assert len(logs) == 1
    assert logs[0].reason == "initial"
    assert logs[0].quantity_change == 10
    assert logs[0].previous_stock == 0
    assert logs[0].new_stock == 10


def test_create_product_with_zero_stock_still_logged(ctx):
    product = inventory_service.create_product(ctx, {"sku": "EMPTY-1", "name": "Empty", "price_cents": 100})
    logs = inventory_service.list_inventory_logs(ctx, product.id)
    assert [log.quantity_change for log in logs] == [0]
    assert product.low_stock is True


def test_duplicate_sku_rejected(ctx, product):
    with pytest.raises(ConflictError):
        inventory_service.create_product(ctx, {"sku": "WID-001", "name": "Clone", "price_cents": 1})


def test_same_sku_allowed_in_other_business(other_ctx, product):
    clone = inventory_service.create_product(other_ctx, {"sku": "WID-001", "name": "Widget", "price_cents": 1})
    assert clone.business_id == other_ctx.business_id


def test_negative_price_rejected(ctx):
    with pytest.raises(ValidationError):
        inventory_service.create_product(ctx, {"sku": "BAD", "name": "Bad", "price_cents": -1})


def test_update_stock_returns_new_level(ctx, product):
    assert inventory_service.update_stock(ctx, product.id, -4, "adjustment") == 6
    assert inventory_service.update_stock(ctx, product.id, 2, "adjustment", "count-7") == 8

    logs = inventory_service.list_inventory_logs(ctx, product.id)
    assert [log.quantity_change for log in logs] == [10, -4, 2]
    assert logs[-1].reference == "count-7"
    assert logs[-1].previous_stock == 6
    assert logs[-1].new_stock == 8


def test_overdraw_fails_without_writes(ctx, db_session, product):
    with pytest.raises(InsufficientStockError):
        inventory_service.update_stock(ctx, product.id, -12, "sale")

    assert inventory_service.get_product(ctx, product.id).stock == 10
    assert db_session.query(InventoryLog).filter_by(product_id=product.id).count() == 1


def test_zero_change_rejected(ctx, product):
    with pytest.raises(ValidationError):
        inventory_service.update_stock(ctx, product.id, 0, "adjustment")


def test_unknown_reason_rejected(ctx, product):
    with pytest.raises(ValidationError):
        inventory_service.update_stock(ctx, product.id, 1, "shrinkage")


def test_low_stock_flag_follows_reorder_level(ctx, product):
    inventory_service.update_stock(ctx, product.id, -7, "adjustment")
    assert inventory_service.get_product(ctx, product.id).low_stock is True
    assert [p.id for p in inventory_service.low_stock_products(ctx)] == [product.id]

    inventory_service.restock_product(ctx, product.id, 5, "PO-1")
    refreshed = inventory_service.get_product(ctx, product.id)
    assert refreshed.stock == 8
    assert refreshed.low_stock is False
    assert refreshed.last_restocked_at is not None


def test_restock_requires_positive_quantity(ctx, product):
    with pytest.raises(ValidationError):
        inventory_service.restock_product(ctx, product.id, 0)


def test_stock_is_not_patchable(ctx, product):
    with pytest.raises(ValidationError):
        inventory_service.update_product(ctx, product.id, {"stock": 99})


def test_update_product_recomputes_low_stock(ctx, product):
    updated = inventory_service.update_product(ctx, product.id, {"reorder_level": 20, "price_cents": 1200})
    assert updated.low_stock is True
    assert updated.price_cents == 1200


def test_stock_matches_log_replay(ctx, product):
    inventory_service.update_stock(ctx, product.id, -3, "sale")
    inventory_service.update_stock(ctx, product.id, 1, "return")
    inventory_service.restock_product(ctx, product.id, 4)

    result = reporting_service.verify_product_stock(ctx, product.id)
    assert result["ok"] is True
    assert result["stock"] == result["log_total"] == 12


def test_product_of_other_business_not_found(ctx, other_ctx, product):
    with pytest.raises(NotFoundError):
        inventory_service.update_stock(other_ctx, product.id, 1, "adjustment")
