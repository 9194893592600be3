"""
Stock ledger tests.

Verifies:
- Movement shape rules per type
- Index and product total move together with every entry
- Insufficient stock, capacity and inactive destination are rejected atomically
- Hidden entries still count towards stock
- Ledger replay agrees with the stored index
- Conflicting writers are retried and serialize into one ordered ledger
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stockflow import create_app
from stockflow.errors import (
    CapacityExceededError,
    InsufficientStockError,
    NotFoundError,
    TransientStorageError,
    ValidationError,
)
from stockflow.extensions import db
from stockflow.models import ActivityLog, Location, Product, StockLevel, StockMovement
from stockflow.services import (
    catalog_service,
    concurrency,
    sales_service,
    settings_service,
    stock_index_service,
    stock_ledger_service,
)
from stockflow.services.concurrency import run_with_retry
from stockflow.services.stock_ledger_service import append_movement

from conftest import stock_in


# =============================================================================
# SHAPE RULES
# =============================================================================


class TestMovementShape:

    @pytest.mark.parametrize(
        "movement_type,use_from,use_to",
        [
            ("in", True, False),
            ("in", True, True),
            ("out", False, True),
            ("out", True, True),
            ("transfer", True, False),
            ("transfer", False, True),
            ("adjustment", False, False),
            ("adjustment", True, True),
        ],
    )
    def test_rejects_wrong_legs(self, db_session, widget, warehouse, store, movement_type, use_from, use_to):
        with pytest.raises(ValidationError):
            append_movement(
                product_id=widget.id,
                movement_type=movement_type,
                reason="adjustment",
                quantity=1,
                location_from_id=warehouse.id if use_from else None,
                location_to_id=store.id if use_to else None,
            )
        assert db_session.query(StockMovement).count() == 0

    @pytest.mark.parametrize("quantity", [0, -3, 1.5, "2.0", True, None])
    def test_rejects_non_positive_or_non_integer_quantity(self, db_session, widget, warehouse, quantity):
        with pytest.raises(ValidationError):
            append_movement(
                product_id=widget.id,
                movement_type="in",
                reason="opening_stock",
                quantity=quantity,
                location_to_id=warehouse.id,
            )

    def test_rejects_unknown_reason(self, db_session, widget, warehouse):
        with pytest.raises(ValidationError):
            append_movement(
                product_id=widget.id,
                movement_type="in",
                reason="found_on_floor",
                quantity=1,
                location_to_id=warehouse.id,
            )

    def test_transfer_needs_distinct_locations(self, db_session, widget, warehouse):
        with pytest.raises(ValidationError):
            append_movement(
                product_id=widget.id,
                movement_type="transfer",
                reason="transfer",
                quantity=1,
                location_from_id=warehouse.id,
                location_to_id=warehouse.id,
            )

    def test_unknown_product(self, db_session, warehouse):
        with pytest.raises(NotFoundError):
            append_movement(
                product_id=999999,
                movement_type="in",
                reason="opening_stock",
                quantity=1,
                location_to_id=warehouse.id,
            )

    def test_notes_length_limited(self, db_session, widget, warehouse):
        with pytest.raises(ValidationError):
            append_movement(
                product_id=widget.id,
                movement_type="in",
                reason="opening_stock",
                quantity=1,
                location_to_id=warehouse.id,
                notes="x" * 201,
            )


# =============================================================================
# INDEX + PRODUCT TOTAL
# =============================================================================


class TestLedgerAppliesToIndex:

    def test_in_entry_updates_index_and_total(self, db_session, widget, warehouse, admin_user):
        movement = stock_in(widget, warehouse, 40, operator_id=admin_user.id)

        assert movement.previous_stock == 0
        assert movement.new_stock == 40
        assert movement.operator_id == admin_user.id
        assert movement.unit_cost_cents == 1000
        assert movement.total_cost_cents == 40000
        assert stock_index_service.stock_at(widget.id, warehouse.id) == 40
        assert db_session.get(type(widget), widget.id).current_stock == 40

    def test_movement_number_follows_sequence(self, db_session, widget, warehouse):
        first = stock_in(widget, warehouse, 1)
        second = stock_in(widget, warehouse, 1)

        assert second.sequence > first.sequence
        assert first.movement_number == f"MOV-{first.id:06d}"

    def test_out_entry_records_previous_and_new_stock(self, db_session, widget, warehouse):
        stock_in(widget, warehouse, 10)
        movement = append_movement(
            product_id=widget.id,
            movement_type="out",
            reason="damage",
            quantity=3,
            location_from_id=warehouse.id,
        )

        assert (movement.previous_stock, movement.new_stock) == (10, 7)
        assert stock_index_service.stock_at(widget.id, warehouse.id) == 7

    def test_adjustment_increase_and_decrease(self, db_session, widget, warehouse):
        stock_in(widget, warehouse, 10)
        up = append_movement(
            product_id=widget.id, movement_type="adjustment", reason="adjustment",
            quantity=5, location_to_id=warehouse.id,
        )
        down = append_movement(
            product_id=widget.id, movement_type="adjustment", reason="loss",
            quantity=2, location_from_id=warehouse.id,
        )

        assert up.new_stock == 15
        assert down.new_stock == 13
        assert up.source_type == "adjustment"

    def test_transfer_entry_keeps_product_total(self, db_session, widget, warehouse, store):
        stock_in(widget, warehouse, 10)
        movement = append_movement(
            product_id=widget.id, movement_type="transfer", reason="transfer",
            quantity=4, location_from_id=warehouse.id, location_to_id=store.id,
        )

        assert movement.previous_stock == movement.new_stock == 10
        assert stock_index_service.stock_at(widget.id, warehouse.id) == 6
        assert stock_index_service.stock_at(widget.id, store.id) == 4

    def test_entry_is_audited(self, db_session, widget, warehouse, admin_user):
        movement = stock_in(widget, warehouse, 3, operator_id=admin_user.id)
        log = db_session.query(ActivityLog).filter_by(resource="stock_movement").one()
        assert log.resource_id == str(movement.id)
        assert log.user_id == admin_user.id


# =============================================================================
# REJECTIONS ARE ATOMIC
# =============================================================================


class TestRejectedEntriesLeaveNoTrace:

    def test_insufficient_stock(self, db_session, widget, warehouse):
        stock_in(widget, warehouse, 5)

        with pytest.raises(InsufficientStockError) as exc_info:
            append_movement(
                product_id=widget.id, movement_type="out", reason="sale",
                quantity=6, location_from_id=warehouse.id,
            )

        assert exc_info.value.details["available"] == 5
        assert exc_info.value.details["requested"] == 6
        assert db_session.query(StockMovement).count() == 1
        assert stock_index_service.stock_at(widget.id, warehouse.id) == 5

    def test_stock_at_other_location_does_not_help(self, db_session, widget, warehouse, store):
        stock_in(widget, store, 50)

        with pytest.raises(InsufficientStockError):
            append_movement(
                product_id=widget.id, movement_type="out", reason="sale",
                quantity=1, location_from_id=warehouse.id,
            )

    def test_negative_stock_setting_allows_overdraw(self, db_session, widget, warehouse):
        settings_service.update_settings(values={settings_service.KEY_NEGATIVE_STOCK: True}, actor_user_id=None)

        movement = append_movement(
            product_id=widget.id, movement_type="out", reason="sale",
            quantity=2, location_from_id=warehouse.id,
        )

        assert movement.new_stock == -2
        assert stock_index_service.stock_at(widget.id, warehouse.id) == -2

    def test_capacity_exceeded(self, db_session, widget, gadget, store):
        stock_in(widget, store, 60)

        with pytest.raises(CapacityExceededError) as exc_info:
            stock_in(gadget, store, 41)

        assert exc_info.value.details["current_utilization"] == 60
        assert stock_index_service.location_utilization(store.id) == 60
        db_session.expire_all()
        assert db_session.get(type(gadget), gadget.id).current_stock == 0

    def test_capacity_exactly_reached(self, db_session, widget, store):
        stock_in(widget, store, 100)
        assert stock_index_service.location_utilization(store.id) == 100

    def test_inactive_destination(self, db_session, widget, store):
        catalog_service.update_location(location_id=store.id, payload={"is_active": False})

        with pytest.raises(ValidationError):
            stock_in(widget, store, 1)

    def test_inactive_source_can_still_ship(self, db_session, widget, store):
        stock_in(widget, store, 5)
        catalog_service.update_location(location_id=store.id, payload={"is_active": False})

        movement = append_movement(
            product_id=widget.id, movement_type="out", reason="damage",
            quantity=5, location_from_id=store.id,
        )
        assert movement.new_stock == 0


# =============================================================================
# HIDING + REPLAY
# =============================================================================


class TestHideAndReplay:

    def test_hidden_entry_still_counts(self, db_session, widget, warehouse, admin_user):
        movement = stock_in(widget, warehouse, 8)

        stock_ledger_service.hide_movement(movement_id=movement.id, operator_id=admin_user.id)

        assert stock_ledger_service.list_movements(product_id=widget.id).count() == 0
        assert stock_ledger_service.list_movements(product_id=widget.id, include_hidden=True).count() == 1
        assert stock_index_service.stock_at(widget.id, warehouse.id) == 8
        assert stock_index_service.verify_stock_index() == []

    def test_hide_unknown_movement(self, db_session):
        with pytest.raises(NotFoundError):
            stock_ledger_service.hide_movement(movement_id=424242)

    def test_verify_reports_drift_and_rebuild_fixes_it(self, db_session, widget, warehouse, store):
        stock_in(widget, warehouse, 10)
        stock_in(widget, store, 3)

        level = db_session.query(StockLevel).filter_by(product_id=widget.id, location_id=warehouse.id).one()
        level.quantity = 99
        db_session.commit()

        problems = stock_index_service.verify_stock_index()
        assert {"kind": "stock_level", "product_id": widget.id, "location_id": warehouse.id,
                "expected": 10, "actual": 99} in problems

        changed = stock_index_service.rebuild_stock_index()
        assert changed == 1
        assert stock_index_service.verify_stock_index() == []

    def test_replay_up_to_sequence(self, db_session, widget, warehouse):
        first = stock_in(widget, warehouse, 10)
        stock_in(widget, warehouse, 5)

        levels, totals = stock_index_service.replay_ledger(up_to_sequence=first.sequence)
        assert levels[(widget.id, warehouse.id)] == 10
        assert totals[widget.id] == 10


# =============================================================================
# READS
# =============================================================================


class TestLedgerReads:

    def test_list_filters(self, db_session, widget, gadget, warehouse, store):
        stock_in(widget, warehouse, 10)
        stock_in(gadget, store, 4)
        append_movement(
            product_id=widget.id, movement_type="out", reason="damage",
            quantity=1, location_from_id=warehouse.id,
        )

        assert stock_ledger_service.list_movements(product_id=widget.id).count() == 2
        assert stock_ledger_service.list_movements(location_id=store.id).count() == 1
        assert stock_ledger_service.list_movements(reason="damage").count() == 1
        newest_first = [m.id for m in stock_ledger_service.list_movements()]
        assert newest_first == sorted(newest_first, reverse=True)

    def test_list_rejects_unknown_type(self, db_session):
        with pytest.raises(ValidationError):
            stock_ledger_service.list_movements(movement_type="teleport")

    def test_summary_counts_both_legs_of_transfers(self, db_session, widget, warehouse, store):
        stock_in(widget, warehouse, 10)
        append_movement(
            product_id=widget.id, movement_type="transfer", reason="transfer",
            quantity=4, location_from_id=warehouse.id, location_to_id=store.id,
        )

        summary = stock_ledger_service.summarize_movements()

        assert len(summary["periods"]) == 1
        period = summary["periods"][0]
        assert period["reasons"]["opening_stock"] == {"in": 10, "out": 0}
        assert period["reasons"]["transfer"] == {"in": 4, "out": 4}
        by_type = {row["type"]: row for row in summary["by_type"]}
        assert by_type["in"]["total_quantity"] == 10
        assert by_type["transfer"]["count"] == 1
        assert summary["top_products"][0]["product_id"] == widget.id

    def test_summary_rejects_unknown_bucket(self, db_session):
        with pytest.raises(ValidationError):
            stock_ledger_service.summarize_movements(bucket="fortnight")

    def test_location_stock_flags_low_rows(self, db_session, widget, gadget, warehouse):
        stock_in(widget, warehouse, 5)   # minimum 5 -> low
        stock_in(gadget, warehouse, 20)  # minimum 2 -> fine

        result = stock_index_service.location_stock(warehouse.id)
        flags = {row["sku"]: row["is_low"] for row in result["items"]}
        assert flags == {"WID-001": True, "GAD-001": False}
        assert result["location"]["current_utilization"] == 25

        low = stock_index_service.location_stock(warehouse.id, low_only=True)
        assert [row["sku"] for row in low["items"]] == ["WID-001"]

    def test_product_by_location(self, db_session, widget, warehouse, store):
        stock_in(widget, warehouse, 30)
        stock_in(widget, store, 10)

        result = stock_index_service.product_by_location(widget.id)
        assert result["total_stock"] == 40
        by_code = {row["code"]: row for row in result["locations"]}
        assert by_code["MAIN"]["quantity"] == 30
        assert by_code["STORE-1"]["percentage"] == 25.0


# =============================================================================
# CONCURRENCY
# =============================================================================


@pytest.fixture
def lock_log(monkeypatch):
    """Record (entity, ids) for every row lock taken through the concurrency helpers."""
    taken = []
    real_lock = concurrency.lock_for_update

    def _spy(query):
        locked = real_lock(query)
        entity = query.column_descriptions[0]["entity"]
        taken.append((entity, [row.id for row in locked.all()]))
        return locked

    monkeypatch.setattr(concurrency, "lock_for_update", _spy)
    return taken


class TestLockOrder:

    def test_capacity_check_locks_location_after_product(self, db_session, widget, store, lock_log):
        stock_in(widget, store, 5)
        assert lock_log == [(Product, [widget.id]), (Location, [store.id])]

    def test_unbounded_location_is_not_locked(self, db_session, widget, warehouse, lock_log):
        stock_in(widget, warehouse, 5)
        assert lock_log == [(Product, [widget.id])]

    def test_rejected_capacity_check_still_locked_first(self, db_session, widget, store, lock_log):
        with pytest.raises(CapacityExceededError):
            stock_in(widget, store, 101)
        assert [entity for entity, _ in lock_log] == [Product, Location]

    def test_sale_locks_products_in_ascending_id_order(
        self, db_session, customer, widget, gadget, warehouse, lock_log
    ):
        stock_in(widget, warehouse, 10)
        stock_in(gadget, warehouse, 10)
        high, low = sorted([widget, gadget], key=lambda p: p.id, reverse=True)
        sale = sales_service.create_sale(
            customer_id=customer.id,
            items=[{"product_id": high.id, "quantity": 1}, {"product_id": low.id, "quantity": 1}],
        )
        lock_log.clear()

        sales_service.change_sale_status(sale_id=sale.id, status="confirmed")

        product_locks = [ids for entity, ids in lock_log if entity is Product]
        assert product_locks == [[low.id, high.id]]


class TestRetry:

    def test_version_conflict_is_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("UPDATE statement on table 'products' expected to update 1 row(s); 0 were matched.")
            return "done"

        assert run_with_retry(_op) == "done"
        assert len(calls) == 3

    def test_lock_timeout_is_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE products", {}, Exception("database is locked"))
            return "done"

        assert run_with_retry(_op) == "done"
        assert len(calls) == 2

    def test_exhausted_attempts_surface_as_transient(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise StaleDataError("conflict")

        with pytest.raises(TransientStorageError) as exc_info:
            run_with_retry(_op, attempts=4)
        assert len(calls) == 4
        assert exc_info.value.details == {"attempts": 4}
        assert exc_info.value.status_code == 503

    def test_domain_errors_are_not_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_with_retry(_op)
        assert len(calls) == 1

    def test_conflicting_product_write_is_retried(self, db_session, widget, warehouse):
        """A writer that commits between our read and our flush forces one replay."""
        stock_in(widget, warehouse, 10)
        calls = []

        def _op():
            calls.append(1)
            product = db.session.get(Product, widget.id)
            if len(calls) == 1:
                db.session.execute(
                    Product.__table__.update()
                    .where(Product.__table__.c.id == widget.id)
                    .values(version_id=Product.__table__.c.version_id + 1)
                )
            product.minimum_stock = 7
            db.session.commit()
            return product

        assert run_with_retry(_op).minimum_stock == 7
        assert len(calls) == 2


class TestConcurrentAppends:

    @pytest.fixture
    def file_app(self, tmp_path):
        """Separate app on a file database so each thread gets its own connection."""
        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.db'}",
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'BCRYPT_ROUNDS': 4,
            'DB_RETRY_ATTEMPTS': 10,
            'DB_RETRY_BACKOFF': 0.001,
        })
        with app.app_context():
            db.create_all()
        yield app
        with app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()

    def test_two_writers_produce_one_ordered_ledger(self, file_app):
        with file_app.app_context():
            location = catalog_service.create_location(payload={"name": "Main", "code": "MAIN"})
            product = catalog_service.create_product(
                payload={"sku": "RACE-1", "name": "Contended", "cost_price": "1.00", "selling_price": "2.00"}
            )
            stock_in(product, location, 10)
            product_id, location_id = product.id, location.id

        barrier = threading.Barrier(2)
        errors = []

        def _writer(**leg):
            with file_app.app_context():
                barrier.wait()
                try:
                    for _ in range(5):
                        append_movement(product_id=product_id, quantity=1, **leg)
                except Exception as exc:
                    errors.append(exc)

        threads = [
            threading.Thread(
                target=_writer,
                kwargs={"movement_type": "in", "reason": "purchase", "location_to_id": location_id},
            ),
            threading.Thread(
                target=_writer,
                kwargs={"movement_type": "out", "reason": "damage", "location_from_id": location_id},
            ),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert errors == []
        with file_app.app_context():
            entries = (
                db.session.query(StockMovement)
                .filter_by(product_id=product_id)
                .order_by(StockMovement.id)
                .all()
            )
            sequences = [m.sequence for m in entries]
            assert len(sequences) == 11
            assert len(set(sequences)) == 11
            for before, after in zip(entries, entries[1:]):
                assert after.previous_stock == before.new_stock
            assert entries[-1].new_stock == 10
            assert db.session.get(Product, product_id).current_stock == 10
            assert stock_index_service.verify_stock_index() == []
