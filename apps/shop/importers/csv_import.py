import csv
import io
import logging
import re
from decimal import Decimal, InvalidOperation

from django.db import DataError, IntegrityError, transaction

from .. import errors
from ..catalog import MAX_STOCK, CategoryResolver, price_in_range, product_slug, too_long
from ..config import StoreConfig, load_store_config
from ..models import Product
from .results import CSVImportOptions, ImportAborted, ImportResult

logger = logging.getLogger("shop.imports")

REQUIRED_COLUMNS = ("sku", "title", "category", "price", "stock")
OPTIONAL_COLUMNS = (
    "product_id", "currency", "old_price", "description", "material",
    "size", "dimensions", "weight", "tags", "images", "seo_title",
    "seo_description", "slug", "visibility",
)
# 컬럼 -> Product 필드 (그대로 문자열로 들어가는 것들)
TEXT_COLUMNS = {
    "product_id": "external_id",
    "description": "description",
    "material": "material",
    "size": "size",
    "dimensions": "dimensions",
    "weight": "weight",
    "seo_title": "seo_title",
    "seo_description": "seo_description",
}
VISIBLE_VALUES = {"", "visible", "true", "1", "yes", "да"}
HIDDEN_VALUES = {"hidden", "false", "0", "no", "нет"}

SAMPLE_ROWS = [
    {"sku": "BED001", "title": "Classic Set", "category": "Bedding", "price": "2500", "stock": "15",
     "currency": "RUB", "description": "Cotton bedding set", "material": "Cotton", "size": "1.5",
     "images": "https://example.com/images/bed001.jpg", "visibility": "visible"},
    {"sku": "BED002", "title": "Satin Set", "category": "Bedding", "price": "4200", "stock": "7",
     "currency": "RUB", "old_price": "4900", "material": "Satin", "size": "2.0",
     "tags": "satin,premium", "visibility": "visible"},
]


def _reader(content: str):
    if content.startswith("\ufeff"):
        content = content[1:]
    first_line = content.split("\n", 1)[0]
    delimiter = ";" if first_line.count(";") > first_line.count(",") else ","
    return csv.reader(io.StringIO(content), delimiter=delimiter)


def _normalize_header(header) -> list:
    return [h.strip().lower() for h in header]


def validate_csv_structure(content: str) -> list:
    """헤더 검사. 문제가 없으면 빈 리스트."""
    try:
        header = next(_reader(content), None)
    except csv.Error as e:
        return [f"Malformed CSV: {e}"]
    if not header or not any(h.strip() for h in header):
        return ["File is empty or has no header row"]
    columns = _normalize_header(header)
    problems = [f"Missing required column: {c}" for c in REQUIRED_COLUMNS if c not in columns]
    duplicates = sorted({c for c in columns if c and columns.count(c) > 1})
    problems += [f"Duplicate column: {c}" for c in duplicates]
    return problems


def column_schema(config: StoreConfig) -> dict:
    return {
        "requiredColumns": list(REQUIRED_COLUMNS),
        "optionalColumns": list(OPTIONAL_COLUMNS),
        "supportedFormats": [".csv"],
        "maxFileSize": f"{config.import_max_file_size // (1024 * 1024)}MB",
        "encoding": "UTF-8",
    }


def generate_sample_csv() -> str:
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=list(REQUIRED_COLUMNS) + list(OPTIONAL_COLUMNS), lineterminator="\n")
    writer.writeheader()
    for row in SAMPLE_ROWS:
        writer.writerow(row)
    return out.getvalue()


def split_list(value: str, *, pipe_only: bool = False) -> list:
    """| 가 있으면 | 로만, 없으면 ; , 로 나눈다. pipe_only 면 항상 | 로만."""
    value = value or ""
    pattern = r"\|" if pipe_only or "|" in value else r"[;,]"
    return [v.strip() for v in re.split(pattern, value) if v.strip()]


def parse_decimal(value: str):
    value = (value or "").strip().replace(" ", "").replace("\u00a0", "").replace(",", ".")
    if not value:
        return None
    try:
        number = Decimal(value)
    except InvalidOperation:
        raise ValueError(value)
    if not number.is_finite():
        raise ValueError(value)
    return number


def parse_row(row: dict, row_no: int, config: StoreConfig) -> dict:
    """CSV 한 줄 -> Product 필드 dict. 파일에 없는 선택 컬럼은 결과에도 넣지 않는다."""
    sku = (row.get("sku") or "").strip()
    title = (row.get("title") or "").strip()
    if not sku:
        raise errors.RowError(row_no, "SKU is required")
    if not title:
        raise errors.RowError(row_no, f"title is required (SKU {sku})")

    raw_price = row.get("price") or ""
    try:
        price = parse_decimal(raw_price)
    except ValueError:
        price = None
    if not price_in_range(price) or price.quantize(Decimal("0.01")) <= 0:
        raise errors.RowError(row_no, f"invalid price '{raw_price.strip()}' (SKU {sku})")

    raw_stock = (row.get("stock") or "").strip()
    if not re.fullmatch(r"\d+", raw_stock) or int(raw_stock) > MAX_STOCK:
        raise errors.RowError(row_no, f"invalid stock '{raw_stock}' (SKU {sku})")
    stock = int(raw_stock)

    data = {
        "sku": sku,
        "title": title,
        "category": (row.get("category") or "").strip(),
        "price": price.quantize(Decimal("0.01")),
        "stock": stock,
        "is_in_stock": stock > 0,
    }

    for column, field_name in TEXT_COLUMNS.items():
        if column in row:
            data[field_name] = (row[column] or "").strip()
    if "currency" in row:
        currency = (row["currency"] or "").strip().upper() or config.default_currency
        if len(currency) != 3:
            raise errors.RowError(row_no, f"invalid currency '{currency}' (SKU {sku})")
        data["currency"] = currency
    if "old_price" in row:
        try:
            old_price = parse_decimal(row["old_price"])
        except ValueError:
            old_price = Decimal("-1")
        if old_price is not None and not price_in_range(old_price):
            raise errors.RowError(row_no, f"invalid old_price '{row['old_price'].strip()}' (SKU {sku})")
        data["old_price"] = old_price.quantize(Decimal("0.01")) if old_price is not None else None
    if "tags" in row:
        data["tags"] = split_list(row["tags"])
    if "images" in row:
        data["images"] = split_list(row["images"], pipe_only=True)
    if "visibility" in row:
        visibility = (row["visibility"] or "").strip().lower()
        if visibility in VISIBLE_VALUES:
            data["is_visible"] = True
        elif visibility in HIDDEN_VALUES:
            data["is_visible"] = False
        else:
            raise errors.RowError(row_no, f"invalid visibility '{visibility}' (SKU {sku})")
    if "slug" in row:
        data["slug"] = (row["slug"] or "").strip()

    text = {k: v for k, v in data.items() if k in ("sku", "title", "currency", *TEXT_COLUMNS.values())}
    overlong = too_long(Product, **text)
    if overlong:
        raise errors.RowError(row_no, f"{overlong} is too long (SKU {sku[:100]})")
    return data


def _save_product(data: dict, row_no: int, options: CSVImportOptions, resolver: CategoryResolver):
    """생성이면 "created", 갱신이면 "updated", 건너뛰면 None."""
    data = dict(data)
    sku = data.pop("sku")
    wanted_slug = data.pop("slug", "")
    category_name = data.pop("category")

    product = Product.objects.filter(sku=sku).first()
    if product is not None and not options.update_existing:
        return None
    try:
        category = resolver.resolve(category_name)
    except LookupError as e:
        raise errors.RowError(row_no, str(e))

    if product is None:
        product = Product(sku=sku, category=category, **data)
        product.slug = product_slug(product.title, sku, wanted=wanted_slug)
        product.save()
        return "created"

    for name, value in data.items():
        setattr(product, name, value)
    product.category = category
    if wanted_slug:
        product.slug = product_slug(product.title, sku, wanted=wanted_slug, instance_pk=product.pk)
    product.save()
    return "updated"


def import_csv(content: str, options: CSVImportOptions, config: StoreConfig | None = None) -> ImportResult:
    config = config or load_store_config()
    problems = validate_csv_structure(content)
    if problems:
        raise errors.StructuralError(problems, "Invalid CSV structure")

    reader = _reader(content)
    header = _normalize_header(next(reader))
    resolver = CategoryResolver(
        mapping=options.category_mapping, auto_create=True, default_name=config.default_category
    )
    result = ImportResult()

    try:
        with transaction.atomic():
            for row_no, cells in enumerate(reader, start=2):
                if not any(c.strip() for c in cells):
                    continue
                result.processed += 1
                row = {col: (cells[i] if i < len(cells) else "") for i, col in enumerate(header) if col}
                try:
                    data = parse_row(row, row_no, config)
                    try:
                        with transaction.atomic():
                            outcome = _save_product(data, row_no, options, resolver)
                    except (IntegrityError, DataError) as e:
                        raise errors.RowError(row_no, f"could not save SKU {data['sku']}: {e}")
                except errors.RowError as e:
                    if not options.skip_invalid:
                        result.errors.append(str(e))
                        raise ImportAborted()
                    result.warnings.append(str(e))
                    logger.info(f"csv import: skipped {e}")
                    continue

                if outcome == "created":
                    result.created += 1
                elif outcome == "updated":
                    result.updated += 1
                else:
                    result.warnings.append(f"Row {row_no}: product with SKU {data['sku']} already exists, skipped")

            if options.validate_only:
                # 검증만: 실제로 써 본 뒤 전부 되돌린다
                transaction.set_rollback(True)
    except ImportAborted:
        result.success = False
        result.created = result.updated = 0
    except csv.Error as e:
        raise errors.StructuralError([f"Malformed CSV: {e}"], "Invalid CSV structure")

    logger.info(
        f"csv import: processed={result.processed} created={result.created} updated={result.updated} "
        f"warnings={len(result.warnings)} errors={len(result.errors)} validate_only={options.validate_only}"
    )
    return result
