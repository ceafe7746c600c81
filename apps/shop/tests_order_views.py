import pytest
from rest_framework.test import APIClient

from .models import Order, OrderLog

pytestmark = pytest.mark.django_db(transaction=True)

URL = "/api/orders"


def body(product, quantity=1, **extra):
    data = {
        "items": [{"productId": str(product.pk), "quantity": quantity}],
        "deliveryType": "COURIER",
        "firstName": "Ivan",
        "phone": "+70000000000",
    }
    data.update(extra)
    return data


def test_create_order(api, make_product):
    p = make_product(price="1200.00", stock=5)
    r = api.post(URL, body(p, 2), format="json")

    assert r.status_code == 201
    payload = r.json()
    assert payload["success"] is True
    data = payload["data"]
    assert r["Location"] == f"/api/orders/{data['id']}"
    assert data["total"] == "2900.00"
    assert data["status"] == "NEW"
    assert data["items"][0]["product"]["sku"] == p.sku
    assert data["items"][0]["price"] == "1200.00"


def test_create_order_requires_authentication(anon_api, make_product):
    p = make_product()
    r = anon_api.post(URL, body(p), format="json")
    assert r.status_code == 401
    assert r.json()["success"] is False


def test_empty_cart_rejected(api):
    r = api.post(URL, {"items": [], "firstName": "Ivan", "phone": "1"}, format="json")
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "Cart is empty"}


def test_malformed_input_rejected(api, make_product):
    p = make_product()
    r = api.post(URL, body(p, 0), format="json")
    assert r.status_code == 400
    payload = r.json()
    assert payload["error"] == "Invalid data"
    assert "items" in payload["details"]


def test_insufficient_stock_is_400(api, make_product):
    p = make_product(stock=1)
    r = api.post(URL, body(p, 2), format="json")
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert Order.objects.count() == 0


def test_idempotency_key_replays_response(api, make_product):
    p = make_product(stock=5)
    first = api.post(URL, body(p), format="json", HTTP_IDEMPOTENCY_KEY="k-1")
    second = api.post(URL, body(p), format="json", HTTP_IDEMPOTENCY_KEY="k-1")

    assert first.status_code == second.status_code == 201
    assert first.json() == second.json()
    assert Order.objects.count() == 1
    p.refresh_from_db()
    assert p.stock == 4


def test_idempotency_key_reused_with_other_body(api, make_product):
    p = make_product(stock=5)
    api.post(URL, body(p), format="json", HTTP_IDEMPOTENCY_KEY="k-1")
    r = api.post(URL, body(p, 2), format="json", HTTP_IDEMPOTENCY_KEY="k-1")
    assert r.status_code == 409
    assert Order.objects.count() == 1


def test_list_only_own_orders(api, staff_api, other_customer, make_product):
    p = make_product(stock=10)
    api.post(URL, body(p), format="json")
    api.post(URL, body(p), format="json")
    other = APIClient()
    other.force_authenticate(user=other_customer)
    other.post(URL, body(p), format="json")

    r = api.get(URL, {"limit": 1})
    payload = r.json()
    assert r.status_code == 200
    assert len(payload["data"]) == 1
    assert payload["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}

    assert staff_api.get(URL).json()["pagination"]["total"] == 3
    assert staff_api.get(URL, {"userId": other_customer.pk}).json()["pagination"]["total"] == 1


def test_list_rejects_bad_filters(api):
    assert api.get(URL, {"limit": 500}).status_code == 400
    assert api.get(URL, {"status": "LOST"}).status_code == 400


def test_detail_permissions(api, staff_api, other_customer, make_product):
    p = make_product()
    order_id = api.post(URL, body(p), format="json").json()["data"]["id"]

    assert api.get(f"{URL}/{order_id}").status_code == 200
    assert staff_api.get(f"{URL}/{order_id}").status_code == 200

    other = APIClient()
    other.force_authenticate(user=other_customer)
    assert other.get(f"{URL}/{order_id}").status_code == 403
    assert api.get(f"{URL}/5f0c7b7e-5c4d-4c55-9f4e-000000000000").status_code == 404


def test_patch_status(api, staff_api, make_product):
    p = make_product()
    order_id = api.post(URL, body(p), format="json").json()["data"]["id"]

    assert api.patch(f"{URL}/{order_id}", {"status": "PROCESSING"}, format="json").status_code == 403

    r = staff_api.patch(f"{URL}/{order_id}", {"status": "SHIPPED", "trackNumber": "TRK-1"}, format="json")
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "SHIPPED"
    assert r.json()["data"]["trackNumber"] == "TRK-1"
    assert OrderLog.objects.filter(order_id=order_id).count() == 2

    r = staff_api.patch(f"{URL}/{order_id}", {"status": "NEW"}, format="json")
    assert r.status_code == 400
    assert r.json()["error"] == "Cannot change status from SHIPPED to NEW"
