import pytest

from .models import Lead, ProductVariant

pytestmark = pytest.mark.django_db

URL = "/api/leads"


def test_public_can_leave_request(anon_api):
    r = anon_api.post(URL, {"name": "Anna", "phone": "+7 900 000 00 00", "message": "Call me"}, format="json")

    assert r.status_code == 201
    payload = r.json()
    assert payload["success"] is True
    assert payload["data"]["source"] == "website"
    assert Lead.objects.get().name == "Anna"


def test_name_is_required(anon_api):
    r = anon_api.post(URL, {"name": "  ", "email": "a@example.com"}, format="json")
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid data"
    assert "name" in r.json()["details"]

    r = anon_api.post(URL, {"name": "Anna", "email": "not-an-email"}, format="json")
    assert r.status_code == 400
    assert Lead.objects.count() == 0


def test_listing_is_staff_only(anon_api, api, staff_api):
    for i in range(3):
        Lead.objects.create(name=f"Lead {i}", source="landing")

    assert anon_api.get(URL).status_code == 401
    assert api.get(URL).status_code == 403

    r = staff_api.get(URL, {"limit": 2})
    payload = r.json()
    assert r.status_code == 200
    assert [lead["name"] for lead in payload["data"]] == ["Lead 2", "Lead 1"]
    assert payload["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}


def test_health(anon_api):
    r = anon_api.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_product_detail_and_variant_lookup(anon_api, make_product):
    p = make_product("BED001", title="Classic Set", slug="classic-set")
    ProductVariant.objects.create(product=p, sku="BED001-RED-S", color="Red", size="S", price="2500", stock=2)
    ProductVariant.objects.create(product=p, sku="BED001-RED-M", color="Red", size="M", price="2600", stock=0,
                                  is_active=False)
    make_product("HID001", slug="hidden", is_visible=False)

    r = anon_api.get("/api/products/classic-set")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["sku"] == "BED001"
    assert [v["sku"] for v in data["variants"]] == ["BED001-RED-S"]

    r = anon_api.get("/api/products/classic-set/variant", {"color": "Red", "size": "S"})
    assert r.json()["data"]["price"] == "2500.00"
    assert anon_api.get("/api/products/classic-set/variant", {"color": "Red", "size": "M"}).status_code == 404
    assert anon_api.get("/api/products/hidden").status_code == 404
