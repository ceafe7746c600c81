from decimal import Decimal

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from .config import StoreConfig
from .importers.results import WPImportOptions
from .importers.wordpress import import_wordpress, parse_wxr, variant_sku
from .models import Category, Product

pytestmark = pytest.mark.django_db(transaction=True)

COLORS = [("red", "Red"), ("blue", "Blue")]
SIZES = [("s", "S"), ("m", "M"), ("l", "L")]


def meta(**values):
    return "".join(
        f"<wp:postmeta><wp:meta_key>{k}</wp:meta_key><wp:meta_value><![CDATA[{v}]]></wp:meta_value></wp:postmeta>"
        for k, v in values.items()
    )


def product_item(post_id, title, sku, *, colors=COLORS, sizes=SIZES, category="Bedding", status="publish", **m):
    terms = f'<category domain="product_cat" nicename="cat"><![CDATA[{category}]]></category>' if category else ""
    terms += "".join(f'<category domain="pa_cvet" nicename="{s}"><![CDATA[{n}]]></category>' for s, n in colors)
    terms += "".join(f'<category domain="pa_razmer" nicename="{s}"><![CDATA[{n}]]></category>' for s, n in sizes)
    return f"""
    <item>
      <title>{title}</title>
      <content:encoded><![CDATA[<p>{title} description</p>]]></content:encoded>
      <excerpt:encoded><![CDATA[short]]></excerpt:encoded>
      <wp:post_id>{post_id}</wp:post_id>
      <wp:status>{status}</wp:status>
      <wp:post_parent>0</wp:post_parent>
      <wp:post_type>product</wp:post_type>
      {terms}
      {meta(_sku=sku, **m)}
    </item>"""


def variation_item(post_id, parent, **m):
    return f"""
    <item>
      <title>variation {post_id}</title>
      <wp:post_id>{post_id}</wp:post_id>
      <wp:status>publish</wp:status>
      <wp:post_parent>{parent}</wp:post_parent>
      <wp:post_type>product_variation</wp:post_type>
      {meta(**m)}
    </item>"""


def attachment_item(post_id, parent, url):
    return f"""
    <item>
      <title>image {post_id}</title>
      <wp:post_id>{post_id}</wp:post_id>
      <wp:post_parent>{parent}</wp:post_parent>
      <wp:post_type>attachment</wp:post_type>
      <wp:attachment_url>{url}</wp:attachment_url>
    </item>"""


def wxr(*items) -> bytes:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
  xmlns:excerpt="http://wordpress.org/export/1.2/excerpt/"
  xmlns:content="http://purl.org/rss/1.0/modules/content/"
  xmlns:wp="http://wordpress.org/export/1.2/">
  <channel>
    <title>Shop</title>
    {"".join(items)}
  </channel>
</rss>""".encode("utf-8")


def run(*files, **options):
    return import_wordpress(list(files), WPImportOptions(**options), StoreConfig())


def test_cartesian_variants():
    result = run(wxr(product_item(10, "Classic Set", "BED001", _price="2500", _stock="12")))

    assert result.success is True
    assert (result.created, result.variants_created) == (1, 6)
    p = Product.objects.get(sku="BED001")
    variants = list(p.variants.order_by("sku"))
    assert {(v.color, v.size) for v in variants} == {(c, s) for _, c in COLORS for _, s in SIZES}
    assert {v.sku for v in variants} == {
        "BED001-RED-S", "BED001-RED-M", "BED001-RED-L", "BED001-BLUE-S", "BED001-BLUE-M", "BED001-BLUE-L",
    }
    assert all(v.price == Decimal("2500.00") for v in variants)
    assert p.stock == sum(v.stock for v in variants) == 12
    assert p.description == "<p>Classic Set description</p>"
    assert p.category.name == "Bedding"
    assert p.external_id == "10"


def test_single_dimension_and_no_dimension():
    run(wxr(
        product_item(1, "Colors only", "C1", sizes=[], _price="100"),
        product_item(2, "Plain", "P1", colors=[], sizes=[], _price="100", _stock="7"),
    ))
    assert sorted(Product.objects.get(sku="C1").variants.values_list("sku", flat=True)) == ["C1-BLUE", "C1-RED"]
    plain = Product.objects.get(sku="P1")
    assert plain.variants.count() == 0
    assert plain.stock == 7


def test_base_price_is_minimum_and_old_price_maximum_regular():
    content = wxr(
        product_item(10, "Set", "BED001", _regular_price="3000", _sale_price="2600", _price="2600"),
        variation_item(11, 10, attribute_pa_cvet="red", attribute_pa_razmer="s", _price="2400", _regular_price="3200"),
    )
    run(content)

    p = Product.objects.get(sku="BED001")
    assert p.price == Decimal("2400.00")
    assert p.old_price == Decimal("3200.00")
    assert p.variants.get(sku="BED001-RED-S").price == Decimal("2400.00")
    assert p.variants.get(sku="BED001-BLUE-L").price == Decimal("2400.00")


def test_variation_stock_and_parent_split():
    content = wxr(
        product_item(10, "Set", "BED001", _price="2500", _stock="10"),
        variation_item(11, 10, attribute_pa_cvet="red", attribute_pa_razmer="s", _price="2700", _stock="5"),
        variation_item(12, 10, attribute_pa_cvet="blue", attribute_pa_razmer="l", _stock="-3"),
    )
    run(content)

    p = Product.objects.get(sku="BED001")
    stock = dict(p.variants.values_list("sku", "stock"))
    assert stock["BED001-RED-S"] == 5
    assert stock["BED001-BLUE-L"] == 0
    # 나머지 4개 조합이 부모 재고 10 을 나눈다
    others = [stock[s] for s in ("BED001-RED-M", "BED001-RED-L", "BED001-BLUE-S", "BED001-BLUE-M")]
    assert others == [3, 3, 2, 2]
    assert p.stock == 15
    assert p.variants.get(sku="BED001-RED-S").price == Decimal("2700.00")
    assert p.price == Decimal("2500.00")


def test_missing_stock_uses_default():
    run(wxr(product_item(10, "Set", "BED001", _price="2500")))
    assert set(Product.objects.get(sku="BED001").variants.values_list("stock", flat=True)) == {0}


def test_wildcard_variation_attribute():
    content = wxr(
        product_item(10, "Set", "BED001", _price="2500"),
        variation_item(11, 10, attribute_pa_cvet="red", attribute_pa_razmer="", _price="2900", _stock="4"),
    )
    run(content)
    p = Product.objects.get(sku="BED001")
    assert set(p.variants.filter(color="Red").values_list("price", "stock")) == {(Decimal("2900.00"), 4)}
    assert set(p.variants.filter(color="Blue").values_list("stock", flat=True)) == {0}


def test_only_explicit_variations_when_not_creating_all():
    content = wxr(
        product_item(10, "Set", "BED001", _price="2500"),
        variation_item(11, 10, attribute_pa_cvet="red", attribute_pa_razmer="m", _stock="2"),
    )
    result = run(content, create_all_variants=False)
    assert result.variants_created == 1
    assert list(Product.objects.get(sku="BED001").variants.values_list("sku", flat=True)) == ["BED001-RED-M"]


def test_cyrillic_term_slugs_give_readable_tokens():
    red = "%d0%ba%d1%80%d0%b0%d1%81%d0%bd%d1%8b%d0%b9"
    run(wxr(product_item(10, "Комплект", "BED001", colors=[(red, "Красный")], sizes=[("1-5", "1.5")], _price="100")))
    variant = Product.objects.get(sku="BED001").variants.get()
    assert variant.sku == "BED001-КРАСНЫЙ-1-5"
    assert (variant.color, variant.size) == ("Красный", "1.5")


def test_variant_skus_are_stable_across_imports():
    content = wxr(product_item(10, "Set", "BED001", _price="2500"))
    run(content)
    first = set(Product.objects.get(sku="BED001").variants.values_list("sku", flat=True))
    result = run(content, update_existing=True)
    second = set(Product.objects.get(sku="BED001").variants.values_list("sku", flat=True))
    assert result.updated == 1
    assert first == second


def test_update_replaces_variant_set():
    run(wxr(product_item(10, "Set", "BED001", _price="2500")))
    result = run(wxr(product_item(10, "Set v2", "BED001", colors=[("red", "Red")], _price="2000")), update_existing=True)

    assert (result.created, result.updated, result.variants_created) == (0, 1, 3)
    p = Product.objects.get(sku="BED001")
    assert p.title == "Set v2"
    assert p.price == Decimal("2000.00")
    assert sorted(p.variants.values_list("sku", flat=True)) == ["BED001-RED-L", "BED001-RED-M", "BED001-RED-S"]


def test_existing_product_skipped_without_update():
    run(wxr(product_item(10, "Set", "BED001", _price="2500")))
    result = run(wxr(product_item(10, "Other", "BED001", _price="1")))
    assert result.created == 0
    assert result.warnings == ["Item 10 (Other): product with SKU BED001 already exists, skipped"]
    assert Product.objects.get(sku="BED001").title == "Set"


def test_unpublished_items_are_hidden():
    run(wxr(product_item(10, "Draft", "D1", status="draft", _price="100")))
    assert Product.objects.get(sku="D1").is_visible is False


def test_images_in_order_without_duplicates():
    content = wxr(
        attachment_item(20, 10, "http://img/thumb.jpg"),
        attachment_item(21, 0, "http://img/gallery.jpg"),
        attachment_item(22, 10, "http://img/extra.jpg"),
        product_item(10, "Set", "BED001", _price="100", _thumbnail_id="20", _product_image_gallery="21,20"),
    )
    run(content)
    assert Product.objects.get(sku="BED001").images == [
        "http://img/thumb.jpg", "http://img/gallery.jpg", "http://img/extra.jpg",
    ]


def test_item_without_price():
    content = wxr(
        product_item(10, "Good", "G1", _price="100"),
        product_item(11, "No price", "N1"),
    )
    aborted = run(content)
    assert aborted.success is False
    assert aborted.errors == ["Item 11 (No price): no price found"]
    assert Product.objects.count() == 0

    skipped = run(content, skip_invalid=True)
    assert skipped.success is True
    assert skipped.created == 1
    assert skipped.warnings == ["Item 11 (No price): no price found"]


def test_items_beyond_column_limits_are_skipped():
    content = wxr(
        product_item(10, "Good", "G1", _price="100"),
        product_item(11, "Huge", "H1", _price="1e30"),
        product_item(12, "Long", "S" * 101, _price="100"),
        product_item(13, "Many", "M1", colors=[], sizes=[], _price="100", _stock="99999999999999999999"),
        product_item(14, "Wide", "W1", colors=[("x", "X" * 101)], sizes=[], _price="100"),
    )
    result = run(content, skip_invalid=True)

    assert result.success is True
    assert result.created == 1
    assert result.warnings == [
        "Item 11 (Huge): price out of range",
        "Item 12 (Long): sku is too long",
        "Item 13 (Many): stock out of range: 99999999999999999999",
        "Item 14 (Wide): variant color is too long",
    ]
    assert list(Product.objects.values_list("sku", flat=True)) == ["G1"]


def test_category_options():
    textile = Category.objects.create(name="Textile", slug="textile")
    run(wxr(product_item(1, "A", "A1", category="Bedding", _price="1")), category_mapping={"Bedding": textile.pk})
    assert Product.objects.get(sku="A1").category == textile

    run(wxr(product_item(2, "B", "B1", category="Towels", _price="1")), auto_create_categories=False)
    assert Product.objects.get(sku="B1").category.name == StoreConfig().default_category
    assert not Category.objects.filter(name="Towels").exists()


def test_files_are_independent_and_results_folded():
    good = wxr(product_item(10, "Set", "BED001", _price="2500", colors=[], sizes=[]))
    result = run(b"<rss><channel><item>", good)

    assert result.success is False
    assert result.created == 1
    assert result.errors[0].startswith("Malformed XML")
    assert Product.objects.filter(sku="BED001").exists()


def test_document_without_channel():
    result = run(b"<?xml version='1.0'?><feed/>")
    assert result.success is False
    assert result.errors == ["Not a WordPress export: <channel> element is missing"]


def test_parse_wxr_attaches_variations():
    content = wxr(
        product_item(10, "Set", "BED001", _price="100"),
        variation_item(11, 10, attribute_pa_cvet="red", _price="90"),
        variation_item(12, 99, attribute_pa_cvet="red", _price="80"),
    )
    [product] = parse_wxr(content)
    assert [v.post_id for v in product.variations] == ["11"]
    assert [t.name for t in product.colors] == ["Red", "Blue"]
    assert product.categories == ["Bedding"]


def test_variant_sku_helper():
    [product] = parse_wxr(wxr(product_item(10, "Set", "BED001", _price="100")))
    assert variant_sku("BED001", product.colors[0], None) == "BED001-RED"
    assert variant_sku("BED001", None, product.sizes[1]) == "BED001-M"


# ---------- HTTP ----------

URL = "/api/admin/import/wordpress"


def test_wordpress_endpoint(staff_api):
    files = [
        SimpleUploadedFile("a.xml", wxr(product_item(1, "A", "A1", _price="10")), content_type="text/xml"),
        SimpleUploadedFile("b.xml", wxr(product_item(2, "B", "B1", _price="20")), content_type="text/xml"),
    ]
    r = staff_api.post(URL, {"files": files, "createAllVariants": "false"}, format="multipart")

    assert r.status_code == 200
    data = r.json()["data"]
    assert (data["processed"], data["created"], data["variantsCreated"]) == (2, 2, 0)


def test_wordpress_endpoint_default_options(staff_api):
    upload = SimpleUploadedFile("a.xml", wxr(product_item(1, "A", "A1", _price="10")), content_type="text/xml")
    r = staff_api.post(URL, {"files": [upload]}, format="multipart")
    assert r.json()["data"]["variantsCreated"] == 6
    assert Product.objects.get(sku="A1").currency == "RUB"


def test_wordpress_endpoint_rejects_non_xml(staff_api):
    upload = SimpleUploadedFile("a.csv", b"sku", content_type="text/csv")
    assert staff_api.post(URL, {"files": [upload]}, format="multipart").status_code == 400
    assert staff_api.post(URL, {}, format="multipart").status_code == 400


def test_wordpress_usage(staff_api, api):
    assert staff_api.get(URL).json()["data"]["options"]["createAllVariants"] is True
    assert api.get(URL).status_code == 403
