"""
Transfer tests: one ledger entry, both legs, all-or-nothing.
"""

import pytest

from stockflow.errors import CapacityExceededError, InsufficientStockError, NotFoundError
from stockflow.models import StockMovement, Transfer
from stockflow.services import catalog_service, stock_index_service
from stockflow.services.transfer_service import TransferError, transfer_stock

from conftest import stock_in


class TestTransferStock:

    def test_moves_stock_between_locations(self, db_session, widget, warehouse, store, admin_user):
        stock_in(widget, warehouse, 20)

        transfer = transfer_stock(
            product_id=widget.id,
            from_location_id=warehouse.id,
            to_location_id=store.id,
            quantity=8,
            operator_id=admin_user.id,
            notes="Restock shelf",
        )

        assert stock_index_service.stock_at(widget.id, warehouse.id) == 12
        assert stock_index_service.stock_at(widget.id, store.id) == 8
        db_session.expire_all()
        assert db_session.get(type(widget), widget.id).current_stock == 20

        movement = transfer.movement
        assert movement.type == "transfer"
        assert movement.reason == "transfer"
        assert movement.source_type == "transfer"
        assert movement.source_id == transfer.id
        assert (movement.location_from_id, movement.location_to_id) == (warehouse.id, store.id)

    def test_accepts_numeric_strings(self, db_session, widget, warehouse, store):
        stock_in(widget, warehouse, 5)

        transfer = transfer_stock(
            product_id=str(widget.id),
            from_location_id=str(warehouse.id),
            to_location_id=str(store.id),
            quantity="5",
        )
        assert transfer.quantity == 5

    def test_same_location_rejected(self, db_session, widget, warehouse):
        stock_in(widget, warehouse, 5)

        with pytest.raises(TransferError):
            transfer_stock(product_id=widget.id, from_location_id=warehouse.id, to_location_id=warehouse.id, quantity=1)

    def test_inactive_destination_rejected(self, db_session, widget, warehouse, store):
        stock_in(widget, warehouse, 5)
        catalog_service.update_location(location_id=store.id, payload={"is_active": False})

        with pytest.raises(TransferError):
            transfer_stock(product_id=widget.id, from_location_id=warehouse.id, to_location_id=store.id, quantity=1)

    def test_unknown_location(self, db_session, widget, warehouse):
        with pytest.raises(NotFoundError):
            transfer_stock(product_id=widget.id, from_location_id=warehouse.id, to_location_id=987654, quantity=1)

    def test_insufficient_source_leaves_nothing_behind(self, db_session, widget, warehouse, store):
        stock_in(widget, warehouse, 3)

        with pytest.raises(InsufficientStockError):
            transfer_stock(product_id=widget.id, from_location_id=warehouse.id, to_location_id=store.id, quantity=4)

        assert db_session.query(Transfer).count() == 0
        assert db_session.query(StockMovement).count() == 1
        assert stock_index_service.stock_at(widget.id, warehouse.id) == 3
        assert stock_index_service.stock_at(widget.id, store.id) == 0

    def test_destination_capacity(self, db_session, widget, warehouse, store):
        stock_in(widget, warehouse, 150)

        with pytest.raises(CapacityExceededError):
            transfer_stock(product_id=widget.id, from_location_id=warehouse.id, to_location_id=store.id, quantity=101)

        transfer_stock(product_id=widget.id, from_location_id=warehouse.id, to_location_id=store.id, quantity=100)
        assert stock_index_service.location_utilization(store.id) == 100
        assert stock_index_service.verify_stock_index() == []
