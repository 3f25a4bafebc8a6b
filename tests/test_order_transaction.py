"""Tests for the order transaction core, without HTTP."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import InvalidRequestError, OperationalError

from checkout import identity, transaction
from checkout.errors import OrderValidationError, PersistenceError
from checkout.models import Order, OrderItem, ShippingAddress, User
from checkout.numbering import TimestampOrderNumbers
from checkout.pricing import PricingPolicy
from checkout.schemas import LineItemIn, OrderCreateIn, ShippingAddressIn
from checkout.transaction import OrderTransaction, place_order


class FixedNumbers:
    def next_number(self, buyer_id=None):
        return "ORD-FIXED"


@pytest.fixture
def tx():
    return OrderTransaction(TimestampOrderNumbers(), PricingPolicy())


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def _items():
    return [LineItemIn(product_id=60, name="Cable Fault Detector", quantity=1, unit_price=Decimal("100.00"))]


def _address(**kw):
    data = {"first_name": "Test", "street": "123 Test St", "email": "buyer1@example.com"}
    data.update(kw)
    return ShippingAddressIn(**data)


class TestGuestCheckoutScenario:
    def test_new_guest_buyer_order(self, db, tx):
        payload = OrderCreateIn(items=_items(), shipping_address=_address(), payment_method="cod")

        placed = place_order(db, tx, payload)

        user = db.execute(select(User).where(User.email == "buyer1@example.com")).scalar_one()
        assert user.password_hash is None
        assert placed.buyer_id == user.id

        order = db.execute(select(Order)).scalar_one()
        assert order.subtotal == Decimal("100.00")
        assert order.tax == Decimal("10.00")
        assert order.shipping == Decimal("50.00")
        assert order.total == Decimal("160.00")
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.payment_method == "cod"
        assert order.user_id == user.id

        item = db.execute(select(OrderItem)).scalar_one()
        assert item.item_total == Decimal("100.00")
        assert item.product_name == "Cable Fault Detector"
        assert _count(db, ShippingAddress) == 1

        assert placed.confirmation.order_number
        assert placed.confirmation.total == Decimal("160.00")

    def test_existing_email_reuses_buyer(self, db, tx, buyer):
        payload = OrderCreateIn(items=_items(), shipping_address=_address(email="alice@example.com"))
        placed = place_order(db, tx, payload)
        assert placed.buyer_id == buyer.id
        assert _count(db, User) == 1

    def test_guest_email_is_normalized(self, db, tx, buyer):
        payload = OrderCreateIn(items=_items(), shipping_address=_address(email="Alice@Example.com"))
        assert place_order(db, tx, payload).buyer_id == buyer.id


class TestCreate:
    def test_line_totals_and_invariant(self, db, tx):
        items = [
            LineItemIn(product_id=1, name="A", quantity=3, unit_price=Decimal("12.50")),
            LineItemIn(product_id=2, name="B", quantity=2, unit_price=Decimal("0.99")),
        ]
        conf = tx.create(db, None, items, _address())

        order = db.get(Order, conf.order_id)
        assert order.total == order.subtotal + order.tax + order.shipping
        assert len(order.items) == 2
        for row in order.items:
            assert row.item_total == row.quantity * row.price_per_item

    def test_default_payment_method(self, db, tx):
        conf = tx.create(db, None, _items(), _address())
        assert db.get(Order, conf.order_id).payment_method == "cod"

    def test_order_numbers_unique(self, db, tx):
        numbers = {tx.create(db, 5, _items(), _address()).order_number for _ in range(20)}
        assert len(numbers) == 20
        assert all(n.startswith("ORD-") and n.endswith("-5") for n in numbers)


class TestValidation:
    def test_empty_items_rejected_without_writes(self, db, tx):
        with pytest.raises(OrderValidationError):
            tx.create(db, None, [], _address())
        assert _count(db, Order) == 0

    def test_empty_items_never_creates_guest(self, db, tx):
        payload = OrderCreateIn(items=[], shipping_address=_address())
        with pytest.raises(OrderValidationError):
            place_order(db, tx, payload)
        assert _count(db, User) == 0

    @pytest.mark.parametrize("field", ["first_name", "street"])
    def test_required_address_fields(self, db, tx, field):
        with pytest.raises(OrderValidationError, match="shipping address"):
            tx.create(db, None, _items(), _address(**{field: "  "}))
        assert _count(db, Order) == 0

    def test_missing_address(self, db, tx):
        with pytest.raises(OrderValidationError):
            place_order(db, tx, OrderCreateIn(items=_items()))

    def test_guest_needs_email(self, db, tx):
        payload = OrderCreateIn(items=_items(), shipping_address=_address(email=None))
        with pytest.raises(OrderValidationError, match="Email"):
            place_order(db, tx, payload)

    def test_guest_cannot_claim_buyer_id(self, db, tx, buyer):
        payload = OrderCreateIn(buyer={"id": buyer.id}, items=_items(), shipping_address=_address())
        with pytest.raises(OrderValidationError):
            place_order(db, tx, payload)

    def test_guest_cannot_check_out_a_cart(self, db, tx):
        payload = OrderCreateIn(shipping_address=_address())
        with pytest.raises(OrderValidationError):
            place_order(db, tx, payload)


class TestAtomicity:
    def test_failure_after_header_rolls_back_everything(self, db, tx, monkeypatch):
        def boom(*args, **kwargs):
            raise OperationalError("INSERT INTO order_shipping_addresses", {}, Exception("disk full"))

        monkeypatch.setattr(transaction, "_insert_shipping_address", boom)

        with pytest.raises(PersistenceError) as exc:
            tx.create(db, None, _items(), _address())

        assert str(exc.value) == "Failed to create order"
        assert _count(db, Order) == 0
        assert _count(db, OrderItem) == 0
        assert _count(db, ShippingAddress) == 0

    def test_duplicate_order_number_is_persistence_error(self, db):
        tx = OrderTransaction(FixedNumbers(), PricingPolicy())
        tx.create(db, None, _items(), _address())

        with pytest.raises(PersistenceError):
            tx.create(db, None, _items(), _address())

        assert _count(db, Order) == 1
        assert _count(db, OrderItem) == 1
        assert _count(db, ShippingAddress) == 1

    def test_session_usable_after_rollback(self, db):
        tx = OrderTransaction(FixedNumbers(), PricingPolicy())
        tx.create(db, None, _items(), _address())
        with pytest.raises(PersistenceError):
            tx.create(db, None, _items(), _address())

        ok = OrderTransaction(TimestampOrderNumbers(), PricingPolicy()).create(db, None, _items(), _address())
        assert ok.order_id


class _NoMatch:
    def scalar_one_or_none(self):
        return None


class TestGuestIdentityRace:
    def test_duplicate_email_insert_is_persistence_error(self, db, tx, buyer, monkeypatch):
        # another checkout created the account between our lookup and insert
        real_execute = db.execute
        lookups = []

        def lookup_misses_once(stmt, *args, **kwargs):
            result = real_execute(stmt, *args, **kwargs)
            if not lookups:
                lookups.append(stmt)
                return _NoMatch()
            return result

        monkeypatch.setattr(db, "execute", lookup_misses_once)
        payload = OrderCreateIn(items=_items(), shipping_address=_address(email="alice@example.com"))

        with pytest.raises(PersistenceError, match="Failed to resolve buyer"):
            place_order(db, tx, payload)

        assert _count(db, User) == 1
        assert _count(db, Order) == 0
        assert _count(db, OrderItem) == 0

    def test_lookup_is_case_insensitive(self, db, buyer):
        assert identity.get_user_by_email(db, " ALICE@example.com ").id == buyer.id
        assert identity.get_user_by_email(db, "nobody@example.com") is None


class TestSessionPrecondition:
    def test_session_with_open_transaction_is_rejected(self, db, tx):
        _count(db, Order)  # autobegins a transaction

        with pytest.raises(PersistenceError) as exc:
            tx.create(db, None, _items(), _address())
        assert isinstance(exc.value.__cause__, InvalidRequestError)

        db.commit()
        assert tx.create(db, None, _items(), _address()).order_id
        assert _count(db, Order) == 1
