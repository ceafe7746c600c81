"""WordPress/WooCommerce WXR 내보내기 파일 가져오기.

- post_type=product 가 상품, product_variation 은 post_parent 로 상품에 붙는다
- pa_cvet(색상) × pa_razmer(사이즈) 조합마다 ProductVariant 하나
- 기준가는 관찰된 가격 중 최솟값
- 기존 상품 갱신 시 변형은 통째로 교체(삭제 후 생성)
"""
import logging
import xml.etree.ElementTree as ET
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from urllib.parse import unquote

from django.db import DataError, IntegrityError, transaction
from django.utils.text import slugify

from .. import errors
from ..catalog import MAX_STOCK, CategoryResolver, price_in_range, product_slug, too_long
from ..config import StoreConfig, load_store_config
from ..models import Product, ProductVariant
from .results import ImportAborted, ImportResult, WPImportOptions, fold_results

logger = logging.getLogger("shop.imports")

COLOR_TAXONOMY = "pa_cvet"
SIZE_TAXONOMY = "pa_razmer"
CATEGORY_TAXONOMY = "product_cat"
PRICE_KEYS = ("_price", "_regular_price", "_sale_price", "_min_variation_price")


@dataclass(frozen=True)
class Term:
    slug: str
    name: str


@dataclass
class WPVariation:
    post_id: str
    color: str = ""
    size: str = ""
    price: Decimal | None = None
    prices: list = field(default_factory=list)
    stock: int | None = None


@dataclass
class WPProduct:
    post_id: str
    title: str
    sku: str
    description: str = ""
    status: str = "publish"
    categories: list = field(default_factory=list)
    colors: list = field(default_factory=list)
    sizes: list = field(default_factory=list)
    images: list = field(default_factory=list)
    prices: list = field(default_factory=list)
    regular_prices: list = field(default_factory=list)
    stock: int | None = None
    material: str = ""
    variations: list = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.post_id} ({self.title or self.sku})"


@dataclass(frozen=True)
class VariantPlan:
    sku: str
    color: str
    size: str
    price: Decimal
    stock: int


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(el, name):
    return [c for c in el if _local(c.tag) == name]


def _text(el, name) -> str:
    for c in el:
        if _local(c.tag) == name:
            return (c.text or "").strip()
    return ""


def _encoded(item, kind: str) -> str:
    # content:encoded 와 excerpt:encoded 는 local name 이 같아서 namespace 로 구분
    for c in _children(item, "encoded"):
        is_excerpt = "excerpt" in c.tag
        if (kind == "excerpt") == is_excerpt:
            return (c.text or "").strip()
    return ""


def _meta(item) -> dict:
    meta = {}
    for pm in _children(item, "postmeta"):
        meta[_text(pm, "meta_key")] = _text(pm, "meta_value")
    return meta


def _decimal(value: str):
    try:
        number = Decimal((value or "").strip().replace(",", "."))
    except InvalidOperation:
        return None
    return number if number.is_finite() and number > 0 else None


def _int(value: str):
    try:
        return int(Decimal((value or "").strip()))
    except (InvalidOperation, ValueError):
        return None


def _prices(meta: dict) -> list:
    return [p for p in (_decimal(meta.get(k, "")) for k in PRICE_KEYS) if p is not None]


def _terms(item, taxonomy) -> list:
    terms = []
    for c in _children(item, "category"):
        if c.get("domain") == taxonomy:
            name = (c.text or "").strip()
            term = Term(slug=c.get("nicename") or slugify(name, allow_unicode=True), name=name)
            if term.name and term not in terms:
                terms.append(term)
    return terms


def _term_for(terms: list, slug: str):
    slug = (slug or "").strip()
    if not slug:
        return None
    for term in terms:
        if term.slug == slug or unquote(term.slug) == unquote(slug) or term.name.lower() == slug.lower():
            return term
    return None


def parse_wxr(content) -> list:
    """WXR 문서 하나 -> WPProduct 목록 (파일 순서 유지)."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise errors.StructuralError([f"Malformed XML: {e}"], "Invalid XML structure")
    channel = root if _local(root.tag) == "channel" else next(iter(_children(root, "channel")), None)
    if channel is None:
        raise errors.StructuralError(["Not a WordPress export: <channel> element is missing"], "Invalid XML structure")

    attachments = {}
    attachments_by_parent = defaultdict(list)
    product_items = []
    variation_items = defaultdict(list)
    for item in _children(channel, "item"):
        post_type = _text(item, "post_type")
        if post_type == "attachment":
            url = _text(item, "attachment_url") or _text(item, "guid")
            if url:
                attachments[_text(item, "post_id")] = url
                attachments_by_parent[_text(item, "post_parent")].append(url)
        elif post_type == "product":
            product_items.append(item)
        elif post_type == "product_variation":
            variation_items[_text(item, "post_parent")].append(item)

    return [
        _build_product(item, variation_items, attachments, attachments_by_parent)
        for item in product_items
    ]


def _build_product(item, variation_items, attachments, attachments_by_parent) -> WPProduct:
    post_id = _text(item, "post_id")
    meta = _meta(item)
    product = WPProduct(
        post_id=post_id,
        title=_text(item, "title"),
        sku=meta.get("_sku") or (f"WP-{post_id}" if post_id else ""),
        description=_encoded(item, "content") or _encoded(item, "excerpt"),
        status=_text(item, "status") or "publish",
        categories=[t.name for t in _terms(item, CATEGORY_TAXONOMY)],
        colors=_terms(item, COLOR_TAXONOMY),
        sizes=_terms(item, SIZE_TAXONOMY),
        prices=_prices(meta),
        regular_prices=[p for p in [_decimal(meta.get("_regular_price", ""))] if p is not None],
        stock=_int(meta.get("_stock", "")),
    )

    image_ids = [meta.get("_thumbnail_id", "")] + meta.get("_product_image_gallery", "").split(",")
    urls = [attachments.get(i.strip()) for i in image_ids if i.strip()] + attachments_by_parent.get(post_id, [])
    for url in urls:
        if url and url not in product.images:
            product.images.append(url)

    for v_item in variation_items.get(post_id, []):
        v_meta = _meta(v_item)
        prices = _prices(v_meta)
        variation = WPVariation(
            post_id=_text(v_item, "post_id"),
            color=v_meta.get(f"attribute_{COLOR_TAXONOMY}", ""),
            size=v_meta.get(f"attribute_{SIZE_TAXONOMY}", ""),
            price=_decimal(v_meta.get("_price", "")) or (min(prices) if prices else None),
            prices=prices,
            stock=_int(v_meta.get("_stock", "")),
        )
        product.variations.append(variation)
        product.regular_prices += [p for p in [_decimal(v_meta.get("_regular_price", ""))] if p is not None]
        # 변형에만 나오는 속성값도 축에 포함
        if variation.color and _term_for(product.colors, variation.color) is None:
            product.colors.append(Term(slug=variation.color, name=unquote(variation.color)))
        if variation.size and _term_for(product.sizes, variation.size) is None:
            product.sizes.append(Term(slug=variation.size, name=unquote(variation.size)))
    return product


def base_price(product: WPProduct):
    """관찰된 모든 가격 중 최솟값. 가격이 하나도 없으면 None."""
    candidates = list(product.prices)
    for v in product.variations:
        candidates += v.prices
    return min(candidates) if candidates else None


def _sku_token(term) -> str:
    if term is None:
        return ""
    return (slugify(unquote(term.slug), allow_unicode=True) or slugify(term.name, allow_unicode=True)).upper()


def variant_sku(parent_sku: str, color, size) -> str:
    return "-".join(t for t in (parent_sku, _sku_token(color), _sku_token(size)) if t)


def _match(product: WPProduct, color, size):
    """조합에 맞는 WP 변형. 빈 속성값은 "아무거나". 더 구체적인 것을 우선."""
    best, best_score = None, -1
    for v in product.variations:
        v_color = _term_for(product.colors, v.color)
        v_size = _term_for(product.sizes, v.size)
        if v.color and v_color != color:
            continue
        if v.size and v_size != size:
            continue
        score = bool(v.color) + bool(v.size)
        if score > best_score:
            best, best_score = v, score
    return best


def expand_variants(product: WPProduct, price: Decimal, *, create_all: bool, default_stock: int) -> list:
    colors, sizes = product.colors, product.sizes
    if create_all:
        if colors and sizes:
            combos = [(c, s) for c in colors for s in sizes]
        elif colors:
            combos = [(c, None) for c in colors]
        elif sizes:
            combos = [(None, s) for s in sizes]
        else:
            combos = []
    else:
        combos = []
        for v in product.variations:
            combo = (_term_for(colors, v.color), _term_for(sizes, v.size))
            if combo != (None, None) and combo not in combos:
                combos.append(combo)

    matched = [_match(product, c, s) for c, s in combos]
    explicit = [m.stock if m is not None and m.stock is not None else None for m in matched]

    # 재고가 지정되지 않은 조합: 부모 재고를 균등 분배(나머지는 앞쪽부터), 부모 재고도 없으면 기본값
    missing = [i for i, s in enumerate(explicit) if s is None]
    fallback = {}
    if missing:
        if product.stock is not None:
            share, remainder = divmod(max(product.stock, 0), len(missing))
            for n, i in enumerate(missing):
                fallback[i] = share + (1 if n < remainder else 0)
        else:
            fallback = {i: default_stock for i in missing}

    plans = []
    for i, (color, size) in enumerate(combos):
        m = matched[i]
        stock = explicit[i] if explicit[i] is not None else fallback[i]
        plans.append(VariantPlan(
            sku=variant_sku(product.sku, color, size),
            color=color.name if color else "",
            size=size.name if size else "",
            price=(m.price if m is not None and m.price else price).quantize(Decimal("0.01")),
            stock=max(stock, 0),
        ))
    return plans


def _save_product(wp: WPProduct, options: WPImportOptions, config: StoreConfig, resolver: CategoryResolver):
    """(outcome, 생성된 변형 수). outcome 은 "created" / "updated" / None(건너뜀)."""
    if not wp.title:
        raise errors.RowError(wp.post_id or "?", "title is required", label="Item")
    if not wp.sku:
        raise errors.RowError(wp.post_id or "?", "SKU is required", label="Item")
    price = base_price(wp)
    if price is None:
        raise errors.RowError(wp.label, "no price found", label="Item")
    observed = [*wp.prices, *wp.regular_prices]
    for v in wp.variations:
        observed += [*v.prices, *([v.price] if v.price else [])]
    if not all(price_in_range(p) and p.quantize(Decimal("0.01")) > 0 for p in observed):
        raise errors.RowError(wp.label, "price out of range", label="Item")
    overlong = too_long(Product, title=wp.title, sku=wp.sku, external_id=wp.post_id)
    if overlong:
        raise errors.RowError(wp.label, f"{overlong} is too long", label="Item")

    existing = Product.objects.filter(sku=wp.sku).first()
    if existing is not None and not options.update_existing:
        return None, 0

    try:
        category = resolver.resolve(wp.categories[0] if wp.categories else "")
    except LookupError as e:
        raise errors.RowError(wp.label, str(e), label="Item")

    plans = expand_variants(
        wp, price, create_all=options.create_all_variants, default_stock=config.default_variant_stock
    )
    for s in plans:
        overlong = too_long(ProductVariant, sku=s.sku, color=s.color, size=s.size)
        if overlong:
            raise errors.RowError(wp.label, f"variant {overlong} is too long", label="Item")
    stock = sum(s.stock for s in plans) if plans else max(wp.stock or 0, 0)
    if stock > MAX_STOCK:
        raise errors.RowError(wp.label, f"stock out of range: {stock}", label="Item")
    regular = max(wp.regular_prices) if wp.regular_prices else None

    product = existing or Product(sku=wp.sku)
    product.external_id = wp.post_id
    product.title = wp.title
    product.description = wp.description
    product.price = price.quantize(Decimal("0.01"))
    product.old_price = regular.quantize(Decimal("0.01")) if regular is not None and regular > price else None
    product.currency = options.default_currency
    product.stock = stock
    product.is_in_stock = stock > 0
    product.is_visible = wp.status == "publish"
    product.category = category
    product.images = list(wp.images)
    if existing is None:
        product.slug = product_slug(wp.title, wp.sku)
    product.save()

    if existing is not None:
        # 병합이 아니라 교체: 이번 파일에 없는 변형은 사라진다
        product.variants.all().delete()
    ProductVariant.objects.bulk_create([
        ProductVariant(product=product, sku=s.sku, color=s.color, size=s.size, price=s.price, stock=s.stock)
        for s in plans
    ])
    return ("updated" if existing is not None else "created"), len(plans)


def import_wordpress_file(content, options: WPImportOptions, config: StoreConfig) -> ImportResult:
    result = ImportResult()
    try:
        products = parse_wxr(content)
    except errors.StructuralError as e:
        result.errors.extend(e.details)
        result.success = False
        return result

    resolver = CategoryResolver(
        mapping=options.category_mapping,
        auto_create=options.auto_create_categories,
        default_name=config.default_category,
    )
    try:
        with transaction.atomic():
            for wp in products:
                result.processed += 1
                try:
                    try:
                        with transaction.atomic():
                            outcome, variants = _save_product(wp, options, config, resolver)
                    except (IntegrityError, DataError) as e:
                        raise errors.RowError(wp.label, f"could not save SKU {wp.sku}: {e}", label="Item")
                except errors.RowError as e:
                    if not options.skip_invalid:
                        result.errors.append(str(e))
                        raise ImportAborted()
                    result.warnings.append(str(e))
                    logger.info(f"wordpress import: skipped {e}")
                    continue

                if outcome is None:
                    result.warnings.append(f"Item {wp.label}: product with SKU {wp.sku} already exists, skipped")
                    continue
                if outcome == "created":
                    result.created += 1
                else:
                    result.updated += 1
                result.variants_created += variants
    except ImportAborted:
        result.success = False
        result.created = result.updated = result.variants_created = 0
    return result


def import_wordpress(contents: list, options: WPImportOptions, config: StoreConfig | None = None) -> ImportResult:
    """파일을 올린 순서대로 하나씩 처리하고 결과를 합친다. 파일마다 트랜잭션이 따로다."""
    config = config or load_store_config()
    result = fold_results(import_wordpress_file(c, options, config) for c in contents)
    logger.info(
        f"wordpress import: files={len(contents)} processed={result.processed} created={result.created} "
        f"updated={result.updated} variants={result.variants_created} errors={len(result.errors)}"
    )
    return result
