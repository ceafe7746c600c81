from decimal import Decimal

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from . import errors
from .config import StoreConfig
from .importers.csv_import import generate_sample_csv, import_csv, parse_decimal, split_list, validate_csv_structure
from .importers.results import CSVImportOptions
from .models import Category, Product

pytestmark = pytest.mark.django_db(transaction=True)

HEADER = "sku,title,category,price,stock"
EXAMPLE = f"{HEADER}\nBED001,Classic Set,Bedding,2500,15\n"


def run(content, **options):
    return import_csv(content, CSVImportOptions(**options), StoreConfig())


def test_single_row_creates_product_and_category():
    result = run(EXAMPLE)

    assert result.as_dict() == {
        "processed": 1, "created": 1, "updated": 0, "variantsCreated": 0,
        "errors": [], "warnings": [], "success": True,
    }
    p = Product.objects.get(sku="BED001")
    assert p.title == "Classic Set"
    assert p.price == Decimal("2500.00")
    assert p.stock == 15
    assert p.is_in_stock is True
    assert p.category.name == "Bedding"
    assert p.slug == "classic-set"


def test_missing_required_column_is_structural():
    with pytest.raises(errors.StructuralError) as exc:
        run("sku,title,price,stock\nA,B,1,1\n")
    assert exc.value.details == ["Missing required column: category"]
    assert Product.objects.count() == 0


def test_validate_structure_reports_duplicates():
    assert validate_csv_structure("") == ["File is empty or has no header row"]
    assert "Duplicate column: sku" in validate_csv_structure(f"{HEADER},SKU\n")
    assert validate_csv_structure(" SKU ,Title,CATEGORY,price,stock\n") == []


BAD_ROW = f"{HEADER}\nA1,First,Bedding,100,1\nA2,Second,Bedding,abc,1\nA3,Third,Bedding,300,3\n"


def test_invalid_row_aborts_everything():
    result = run(BAD_ROW)

    assert result.success is False
    assert result.created == 0
    assert result.errors == ["Row 3: invalid price 'abc' (SKU A2)"]
    assert Product.objects.count() == 0
    assert Category.objects.count() == 0


def test_invalid_row_skipped_with_warning():
    result = run(BAD_ROW, skip_invalid=True)

    assert result.success is True
    assert (result.processed, result.created) == (3, 2)
    assert result.warnings == ["Row 3: invalid price 'abc' (SKU A2)"]
    assert set(Product.objects.values_list("sku", flat=True)) == {"A1", "A3"}


@pytest.mark.parametrize(
    "row, message",
    [
        (",No sku,Bedding,100,1", "SKU is required"),
        ("X1,,Bedding,100,1", "title is required"),
        ("X1,T,Bedding,0,1", "invalid price"),
        ("X1,T,Bedding,-5,1", "invalid price"),
        ("X1,T,Bedding,100,-1", "invalid stock"),
        ("X1,T,Bedding,100,1.5", "invalid stock"),
    ],
)
def test_row_validation(row, message):
    result = run(f"{HEADER}\n{row}\n", skip_invalid=True)
    assert result.created == 0
    assert len(result.warnings) == 1
    assert message in result.warnings[0]


def test_reimport_with_update_is_idempotent():
    content = f"{HEADER},description\nA1,First,Bedding,100,1,one\nA2,Second,Bedding,200,2,two\n"
    first = run(content, update_existing=True)
    second = run(content, update_existing=True)

    assert (first.created, first.updated) == (2, 0)
    assert (second.created, second.updated) == (0, 2)
    assert Product.objects.count() == 2
    assert Product.objects.get(sku="A2").description == "two"


def test_existing_sku_without_update_is_skipped():
    run(EXAMPLE)
    result = run(f"{HEADER}\nBED001,Renamed,Bedding,9999,1\n")

    assert (result.created, result.updated) == (0, 0)
    assert result.warnings == ["Row 2: product with SKU BED001 already exists, skipped"]
    assert Product.objects.get(sku="BED001").title == "Classic Set"


def test_update_keeps_columns_not_in_file():
    run(f"{HEADER},material\nA1,First,Bedding,100,1,Linen\n")
    run(f"{HEADER}\nA1,First,Bedding,150,0\n", update_existing=True)

    p = Product.objects.get(sku="A1")
    assert p.material == "Linen"
    assert p.price == Decimal("150.00")
    assert p.is_in_stock is False


def test_validate_only_writes_nothing():
    result = run(BAD_ROW, validate_only=True, skip_invalid=True)

    assert (result.processed, result.created) == (3, 2)
    assert result.success is True
    assert Product.objects.count() == 0
    assert Category.objects.count() == 0


def test_semicolon_bom_and_decimal_comma():
    content = "\ufeffsku;title;category;price;stock;old_price;tags;images;visibility\n" \
              "S1;Set;Bedding;1 999,50;4;2 500,00;a, b;http://x/1.jpg|http://x/2.jpg;hidden\n"
    result = run(content)

    assert result.created == 1
    p = Product.objects.get(sku="S1")
    assert p.price == Decimal("1999.50")
    assert p.old_price == Decimal("2500.00")
    assert p.tags == ["a", "b"]
    assert p.images == ["http://x/1.jpg", "http://x/2.jpg"]
    assert p.is_visible is False


def test_category_mapping():
    target = Category.objects.create(name="Textile", slug="textile")
    result = run(EXAMPLE, category_mapping={"Bedding": target.pk})

    assert result.created == 1
    assert Product.objects.get(sku="BED001").category == target
    assert not Category.objects.filter(name="Bedding").exists()


def test_category_mapping_to_missing_id_is_row_error():
    result = run(EXAMPLE, category_mapping={"Bedding": 999})
    assert result.success is False
    assert "mapped category id 999" in result.errors[0]


def test_empty_category_goes_to_default():
    run(f"{HEADER}\nA1,First,,100,1\n")
    assert Product.objects.get(sku="A1").category.name == StoreConfig().default_category


def test_category_matched_case_insensitively():
    existing = Category.objects.create(name="Bedding", slug="bedding")
    run(f"{HEADER}\nA1,First,bedding,100,1\n")
    assert Product.objects.get(sku="A1").category == existing


def test_sample_csv_is_importable():
    result = run(generate_sample_csv())
    assert result.success is True
    assert result.created == 2


def test_helpers():
    assert split_list("a; b ,c,,") == ["a", "b", "c"]
    assert split_list("a,b| c") == ["a,b", "c"]
    assert split_list("http://x/a,b.jpg", pipe_only=True) == ["http://x/a,b.jpg"]
    assert parse_decimal("1 234,5") == Decimal("1234.5")
    assert parse_decimal("") is None
    with pytest.raises(ValueError):
        parse_decimal("12abc")


# ---------- HTTP ----------

URL = "/api/admin/import"


def upload(content, name="products.csv"):
    return SimpleUploadedFile(name, content.encode("utf-8"), content_type="text/csv")


def test_import_endpoint(staff_api):
    r = staff_api.post(URL, {"file": upload(BAD_ROW), "skipInvalid": "true"}, format="multipart")

    assert r.status_code == 200
    payload = r.json()
    assert payload["success"] is True
    assert payload["data"]["created"] == 2
    assert len(payload["data"]["warnings"]) == 1


def test_import_endpoint_abort(staff_api):
    r = staff_api.post(URL, {"file": upload(BAD_ROW)}, format="multipart")
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert r.json()["data"]["errors"] == ["Row 3: invalid price 'abc' (SKU A2)"]


def test_import_endpoint_rejects_bad_options(staff_api):
    r = staff_api.post(URL, {"file": upload(EXAMPLE), "skipInvalid": "maybe"}, format="multipart")
    assert r.status_code == 400
    r = staff_api.post(URL, {"file": upload(EXAMPLE), "dryRun": "true"}, format="multipart")
    assert r.status_code == 400
    r = staff_api.post(URL, {"file": upload(EXAMPLE), "categoryMapping": "[1, 2]"}, format="multipart")
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid category mapping"
    assert Product.objects.count() == 0


def test_import_endpoint_structural_error(staff_api):
    r = staff_api.post(URL, {"file": upload("sku,title\nA,B\n")}, format="multipart")
    assert r.status_code == 400
    payload = r.json()
    assert payload["error"] == "Invalid CSV structure"
    assert "Missing required column: price" in payload["details"]


def test_import_endpoint_file_checks(staff_api):
    assert staff_api.post(URL, {}, format="multipart").status_code == 400
    r = staff_api.post(URL, {"file": upload(EXAMPLE, name="products.txt")}, format="multipart")
    assert r.status_code == 400


def test_import_endpoint_requires_staff(api, anon_api):
    assert api.post(URL, {"file": upload(EXAMPLE)}, format="multipart").status_code == 403
    assert anon_api.post(URL, {"file": upload(EXAMPLE)}, format="multipart").status_code == 401


def test_sample_and_schema(staff_api):
    r = staff_api.get(URL, {"action": "sample"})
    assert r.status_code == 200
    assert r["Content-Type"].startswith("text/csv")
    assert r.content.decode().startswith("sku,title,category,price,stock")

    schema = staff_api.get(URL, {"action": "validate"}).json()["data"]
    assert schema["requiredColumns"] == ["sku", "title", "category", "price", "stock"]
    assert schema["maxFileSize"] == "10MB"


def test_values_beyond_column_limits_are_row_errors():
    long_title = "T" * 301
    content = (
        f"{HEADER},product_id\n"
        "BIG,Big,Bedding,1e30,1,\n"
        "MANY,Many,Bedding,100,99999999999999999999,\n"
        f"LONG,{long_title},Bedding,100,1,\n"
        f"CAT,Cat,{'C' * 201},100,1,\n"
        f"EXT,Ext,Bedding,100,1,{'9' * 101}\n"
        "OK1,Fine,Bedding,100,1,\n"
    )
    result = run(content, skip_invalid=True)

    assert result.success is True
    assert result.created == 1
    assert result.warnings[:3] == [
        "Row 2: invalid price '1e30' (SKU BIG)",
        "Row 3: invalid stock '99999999999999999999' (SKU MANY)",
        "Row 4: title is too long (SKU LONG)",
    ]
    assert "category name is too long" in result.warnings[3]
    assert result.warnings[4] == "Row 6: external_id is too long (SKU EXT)"
    assert list(Product.objects.values_list("sku", flat=True)) == ["OK1"]

    # skip_invalid 가 아니면 첫 번째 행에서 전체 중단
    strict = run(content)
    assert strict.success is False
    assert strict.errors == ["Row 2: invalid price '1e30' (SKU BIG)"]
    assert Product.objects.count() == 1
