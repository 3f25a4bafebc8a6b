"""Status machine, admin endpoints and cancellation."""

import pytest
from sqlalchemy import func, select

from checkout.errors import InvalidStatusError, InvalidTransitionError
from checkout.models import Order, OrderItem, ShippingAddress
from checkout.orders import check_transition
from conftest import auth, order_payload


def _place(client, headers=None):
    response = client.post("/orders", json=order_payload(), headers=headers or {})
    assert response.status_code == 201, response.text
    return response.json()


def _set_status(client, ref, status, headers, **extra):
    return client.put(f"/orders/{ref}/status", json={"status": status, **extra}, headers=headers)


class TestCheckTransition:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("pending", "processing"),
            ("processing", "shipped"),
            ("shipped", "out_for_delivery"),
            ("out_for_delivery", "delivered"),
            ("pending", "shipped"),
            ("pending", "cancelled"),
            ("out_for_delivery", "cancelled"),
            ("processing", "processing"),
        ],
    )
    def test_allowed(self, current, target):
        check_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            ("shipped", "processing"),
            ("delivered", "cancelled"),
            ("cancelled", "pending"),
            ("delivered", "shipped"),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(InvalidTransitionError):
            check_transition(current, target)

    def test_force_overrides_terminal(self):
        check_transition("delivered", "processing", force=True)

    def test_unknown_status(self):
        with pytest.raises(InvalidStatusError):
            check_transition("pending", "lost", force=True)


class TestStatusEndpoint:
    def test_walk_to_delivered(self, client, admin_headers, sink):
        data = _place(client)
        ref = data["orderNumber"]
        for status in ["processing", "shipped", "out_for_delivery", "delivered"]:
            response = _set_status(client, ref, status, admin_headers)
            assert response.status_code == 200, response.text
            assert response.json()["status"] == status

        assert [s for _, _, s in sink.status] == ["processing", "shipped", "out_for_delivery", "delivered"]
        contact, summary, _ = sink.status[-1]
        assert contact.email == "buyer1@example.com"
        assert summary["order_number"] == ref

        tracking = client.get(f"/orders/{ref}/tracking").json()
        assert [e["status"] for e in tracking["events"]] == [
            "confirmed", "processing", "shipped", "out_for_delivery", "delivered",
        ]
        assert tracking["location"] == "Delivered"

    def test_delivered_is_final(self, client, admin_headers):
        ref = _place(client)["orderId"]
        _set_status(client, ref, "delivered", admin_headers)
        response = _set_status(client, ref, "cancelled", admin_headers)
        assert response.status_code == 400

        forced = _set_status(client, ref, "cancelled", admin_headers, force=True)
        assert forced.status_code == 200
        assert forced.json()["status"] == "cancelled"

    def test_invalid_status_name(self, client, admin_headers):
        ref = _place(client)["orderId"]
        response = _set_status(client, ref, "teleported", admin_headers)
        assert response.status_code == 400
        assert "Valid statuses" in response.json()["detail"]

    def test_no_notification_when_not_requested(self, client, admin_headers, sink):
        ref = _place(client)["orderId"]
        _set_status(client, ref, "processing", admin_headers, notifyCustomer=False)
        assert sink.status == []

    def test_tracking_number_in_notification(self, client, admin_headers, sink):
        ref = _place(client)["orderId"]
        _set_status(client, ref, "shipped", admin_headers, trackingNumber="TRK-1")
        assert sink.status[0][1]["tracking_number"] == "TRK-1"

    def test_same_status_is_a_no_op(self, client, db, admin_headers, sink):
        ref = _place(client)["orderNumber"]
        _set_status(client, ref, "processing", admin_headers)
        before = db.execute(select(Order.updated_at)).scalar_one()
        db.rollback()

        response = _set_status(client, ref, "processing", admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "processing"
        assert [s for _, _, s in sink.status] == ["processing"]
        assert db.execute(select(Order.updated_at)).scalar_one() == before

    def test_unknown_order(self, client, admin_headers):
        assert _set_status(client, "ORD-0", "processing", admin_headers).status_code == 404

    def test_admin_only(self, client, buyer):
        ref = _place(client)["orderId"]
        assert _set_status(client, ref, "processing", auth(buyer.id)).status_code == 403


class TestPaymentAndNotes:
    def test_payment_status(self, client, admin_headers):
        ref = _place(client)["orderNumber"]
        response = client.put(f"/orders/{ref}/payment-status", json={"paymentStatus": "completed"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["paymentStatus"] == "completed"

    def test_invalid_payment_status(self, client, admin_headers):
        ref = _place(client)["orderNumber"]
        response = client.put(f"/orders/{ref}/payment-status", json={"paymentStatus": "maybe"}, headers=admin_headers)
        assert response.status_code == 400

    def test_notes(self, client, admin_headers):
        ref = _place(client)["orderId"]
        response = client.put(f"/orders/{ref}/notes", json={"notes": "Leave at gate"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["notes"] == "Leave at gate"


class TestCancel:
    def test_owner_cancels_pending(self, client, buyer):
        headers = auth(buyer.id)
        ref = _place(client, headers)["orderNumber"]
        response = client.put(f"/orders/{ref}/cancel", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_stranger_cannot_cancel(self, client, buyer):
        ref = _place(client, auth(buyer.id))["orderNumber"]
        response = client.put(f"/orders/{ref}/cancel", headers=auth(buyer.id + 1))
        assert response.status_code == 403

    def test_admin_can_cancel_any(self, client, buyer, admin_headers):
        ref = _place(client, auth(buyer.id))["orderNumber"]
        assert client.put(f"/orders/{ref}/cancel", headers=admin_headers).status_code == 200

    def test_cannot_cancel_shipped(self, client, buyer, admin_headers):
        headers = auth(buyer.id)
        ref = _place(client, headers)["orderNumber"]
        _set_status(client, ref, "shipped", admin_headers)
        response = client.put(f"/orders/{ref}/cancel", headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Order cannot be cancelled as it is already shipped"


class TestAdminListing:
    def test_all_orders_with_filter(self, client, admin_headers):
        first = _place(client)
        _place(client)
        _set_status(client, first["orderId"], "processing", admin_headers)

        response = client.get("/orders/admin/all", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["pagination"]["returned"] == 2
        assert all(o["userEmail"] == "buyer1@example.com" for o in data["orders"])

        pending = client.get("/orders/admin/all?status=pending", headers=admin_headers).json()
        assert len(pending["orders"]) == 1

    def test_stats(self, client, admin_headers):
        a = _place(client)
        _place(client)
        c = _place(client)
        _set_status(client, a["orderId"], "delivered", admin_headers)
        _set_status(client, c["orderId"], "cancelled", admin_headers)

        stats = client.get("/orders/admin/stats", headers=admin_headers).json()
        assert stats == {
            "totalOrders": 3,
            "totalRevenue": 480.0,
            "avgOrderValue": 160.0,
            "deliveredOrders": 1,
            "pendingOrders": 1,
            "cancelledOrders": 1,
        }

    def test_stats_empty(self, client, admin_headers):
        stats = client.get("/orders/admin/stats", headers=admin_headers).json()
        assert stats["totalOrders"] == 0
        assert stats["totalRevenue"] == 0.0

    def test_listing_requires_admin(self, client, buyer):
        assert client.get("/orders/admin/all", headers=auth(buyer.id)).status_code == 403


class TestDelete:
    def test_delete_cascades(self, client, db, admin_headers):
        data = _place(client)
        response = client.delete(f"/orders/{data['orderNumber']}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["deletedOrderId"] == data["orderId"]

        for model in (Order, OrderItem, ShippingAddress):
            assert db.execute(select(func.count()).select_from(model)).scalar_one() == 0

    def test_delete_unknown(self, client, admin_headers):
        assert client.delete("/orders/12345", headers=admin_headers).status_code == 404
