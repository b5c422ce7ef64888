# Overview: Pytest coverage for the Flask CLI command groups.

import pytest

from erpcore.extensions import db
from erpcore.models import Variant
from erpcore.services import inventory_transaction_service

from conftest import ACTOR


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestCatalogAndStockCommands:
    def test_add_variant_creates_product_and_opening_stock(self, runner, db_session):
        result = runner.invoke(args=[
            "catalog", "add-variant",
            "--product", "Dhaka Topi",
            "--sku", "topi-red",
            "--price", "80000",
            "--opening-stock", "12",
        ])
        assert result.exit_code == 0, result.output
        assert "Created product: Dhaka Topi" in result.output
        assert "TOPI-RED" in result.output

        variant = db_session.query(Variant).filter_by(sku="TOPI-RED").one()
        assert variant.sellable_stock == 12

    def test_duplicate_sku_fails(self, runner, db_session, variant):
        result = runner.invoke(args=[
            "catalog", "add-variant", "--product", "Cotton Kurta", "--sku", variant.sku, "--price", "1",
        ])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_stock_levels(self, runner, db_session, variant):
        result = runner.invoke(args=["stock", "levels", "--sku", "kurta-red-m"])
        assert result.exit_code == 0
        assert "sellable:  10" in result.output
        assert "available: 10" in result.output

    def test_stock_levels_unknown_sku(self, runner, db_session):
        result = runner.invoke(args=["stock", "levels", "--sku", "NOPE"])
        assert result.exit_code == 1

    def test_verify_clean_then_drifting(self, runner, db_session, variant):
        result = runner.invoke(args=["stock", "verify"])
        assert result.exit_code == 0
        assert "no drift" in result.output

        db.session.execute(Variant.__table__.update().where(Variant.id == variant.id).values(sellable_stock=9))
        db.session.commit()
        result = runner.invoke(args=["stock", "verify"])
        assert result.exit_code == 1
        assert variant.sku in result.output


class TestInventoryAndOrderCommands:
    def test_pending_and_approve(self, runner, db_session, variant, vendor):
        tx = inventory_transaction_service.create_transaction(
            transaction_type="purchase",
            vendor_id=vendor.id,
            items=[{"variant_id": variant.id, "quantity": 2, "unit_cost_paisa": 100000}],
            actor=ACTOR,
        )

        result = runner.invoke(args=["inventory", "pending"])
        assert tx.invoice_no in result.output

        result = runner.invoke(args=["inventory", "approve", str(tx.id), "--actor", "checker-1"])
        assert result.exit_code == 0, result.output
        assert "approved by checker-1" in result.output

        result = runner.invoke(args=["inventory", "approve", str(tx.id), "--actor", "checker-1"])
        assert result.exit_code == 1

    def test_orders_show_and_history(self, runner, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=2)
        drive(order.id, "converted")

        result = runner.invoke(args=["orders", "show", str(order.id)])
        assert result.exit_code == 0
        assert "status=converted" in result.output
        assert "stock_state=reserved" in result.output

        result = runner.invoke(args=["orders", "history", str(order.id)])
        assert "intake -> converted" in result.output

    def test_init_db_is_idempotent(self, runner, db_session):
        result = runner.invoke(args=["system", "init-db"])
        assert result.exit_code == 0
        assert "already up to date" in result.output
