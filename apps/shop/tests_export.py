import xml.etree.ElementTree as ET
from decimal import Decimal

import pytest
from django.utils import timezone

from .config import StoreConfig
from .exporters import export_csv, export_xml, filter_products
from .importers.csv_import import import_csv
from .importers.results import CSVImportOptions
from .models import Category, Product, ProductVariant

URL = "/api/admin/export"


@pytest.fixture
def catalog(make_product, category):
    towels = Category.objects.create(name="Towels", slug="towels")
    bed = make_product(
        "BED001", price="2500.00", stock=15, title="Classic Set", old_price=Decimal("2900.00"),
        tags=["cotton", "set"], images=["http://img/1.jpg", "http://img/2.jpg"], material="Cotton",
    )
    ProductVariant.objects.create(product=bed, sku="BED001-RED-S", color="Red", size="S", price=Decimal("2500"), stock=3)
    towel = make_product("TOW001", price="400.00", stock=0, title="Towel", category=towels, is_visible=False)
    return bed, towel


@pytest.mark.django_db
def test_filter_products(catalog):
    bed, towel = catalog
    assert list(filter_products()) == [bed, towel]
    assert list(filter_products(category="towels")) == [towel]
    assert list(filter_products(category=str(towel.category_id))) == [towel]
    assert list(filter_products(in_stock=True)) == [bed]
    assert list(filter_products(in_stock=False)) == [towel]
    assert list(filter_products(is_visible=False)) == [towel]
    assert list(filter_products(product_ids=[towel.pk])) == [towel]
    assert list(filter_products(date_from=timezone.localdate())) == [bed, towel]


@pytest.mark.django_db(transaction=True)
def test_csv_export_reimports_cleanly(catalog):
    content = export_csv(filter_products())
    lines = content.splitlines()
    assert lines[0].startswith("sku,title,category,price,stock,product_id")
    assert "BED001,Classic Set,Bedding,2500.00,15" in lines[1]
    assert "http://img/1.jpg|http://img/2.jpg" in lines[1]

    result = import_csv(content, CSVImportOptions(update_existing=True), StoreConfig())
    assert (result.created, result.updated, result.errors) == (0, 2, [])
    bed = Product.objects.get(sku="BED001")
    assert bed.tags == ["cotton", "set"]
    assert bed.old_price == Decimal("2900.00")
    assert bed.material == "Cotton"
    assert Product.objects.get(sku="TOW001").is_visible is False


@pytest.mark.django_db
def test_xml_export(catalog):
    root = ET.fromstring(export_xml(filter_products()))
    assert root.tag == "catalog"
    products = root.findall("product")
    assert [p.get("sku") for p in products] == ["BED001", "TOW001"]
    bed = products[0]
    assert bed.findtext("price") == "2500.00"
    assert bed.findtext("old_price") == "2900.00"
    assert [i.text for i in bed.find("images")] == ["http://img/1.jpg", "http://img/2.jpg"]
    [variant] = bed.find("variants")
    assert variant.get("sku") == "BED001-RED-S"
    assert variant.findtext("stock") == "3"
    assert products[1].findtext("visible") == "false"


@pytest.mark.django_db
def test_export_endpoint_csv(staff_api, catalog):
    r = staff_api.get(URL, {"inStock": "true"})
    assert r.status_code == 200
    assert r["Content-Type"].startswith("text/csv")
    today = timezone.localdate().strftime("%Y-%m-%d")
    assert r["Content-Disposition"] == f'attachment; filename="products_export_{today}.csv"'
    assert len(r.content.decode().splitlines()) == 2


@pytest.mark.django_db
def test_export_endpoint_xml_by_ids(staff_api, catalog):
    _, towel = catalog
    r = staff_api.post(URL, {"format": "xml", "productIds": [str(towel.pk)]}, format="json")
    assert r.status_code == 200
    assert r["Content-Type"].startswith("application/xml")
    assert [p.get("sku") for p in ET.fromstring(r.content).findall("product")] == ["TOW001"]


@pytest.mark.django_db
def test_export_endpoint_validation(staff_api, api, catalog):
    assert staff_api.post(URL, {"format": "xml"}, format="json").status_code == 400
    assert staff_api.get(URL, {"format": "pdf"}).status_code == 400
    assert api.get(URL).status_code == 403


@pytest.mark.django_db(transaction=True)
def test_commas_in_tags_and_image_urls_survive_reimport(make_product):
    make_product("C1", tags=["red, white"], images=["http://img/w_200,h_100/a.jpg"])
    make_product("C2", tags=["a,b", "c"], images=["http://img/x,y.jpg", "http://img/2.jpg"])

    content = export_csv(filter_products())
    Product.objects.update(tags=[], images=[])

    result = import_csv(content, CSVImportOptions(update_existing=True), StoreConfig())
    assert result.updated == 2
    c1, c2 = Product.objects.get(sku="C1"), Product.objects.get(sku="C2")
    assert c1.tags == ["red, white"]
    assert c1.images == ["http://img/w_200,h_100/a.jpg"]
    assert c2.tags == ["a,b", "c"]
    assert c2.images == ["http://img/x,y.jpg", "http://img/2.jpg"]
