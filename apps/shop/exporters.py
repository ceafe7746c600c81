import csv
import io
import xml.etree.ElementTree as ET

from django.db.models import Q
from django.utils import timezone

from .importers.csv_import import OPTIONAL_COLUMNS, REQUIRED_COLUMNS
from .models import Product


def filter_products(*, product_ids=None, category=None, is_active=None, is_visible=None, in_stock=None,
                    date_from=None, date_to=None):
    qs = Product.objects.select_related("category").prefetch_related("variants")
    if product_ids:
        return qs.filter(pk__in=product_ids).order_by("sku")

    if category:
        cond = Q(category__slug=category)
        if str(category).isdigit():
            cond |= Q(category_id=int(category))
        qs = qs.filter(cond)
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    if is_visible is not None:
        qs = qs.filter(is_visible=is_visible)
    if in_stock is not None:
        qs = qs.filter(stock__gt=0) if in_stock else qs.filter(stock=0)
    if date_from:
        qs = qs.filter(created_at__date__gte=date_from)
    if date_to:
        qs = qs.filter(created_at__date__lte=date_to)
    return qs.order_by("sku")


def export_filename(fmt: str) -> str:
    return f"products_export_{timezone.localdate():%Y-%m-%d}.{fmt}"


def _pipe_join(values) -> str:
    joined = "|".join(values or [])
    # 한 개짜리 값에 , ; 가 있으면 끝에 | 를 붙여 | 구분임을 표시
    if len(values or []) == 1 and ("," in joined or ";" in joined):
        joined += "|"
    return joined


def _row(p: Product) -> dict:
    return {
        "sku": p.sku,
        "title": p.title,
        "category": p.category.name,
        "price": f"{p.price:.2f}",
        "stock": p.stock,
        "product_id": p.external_id,
        "currency": p.currency,
        "old_price": f"{p.old_price:.2f}" if p.old_price is not None else "",
        "description": p.description,
        "material": p.material,
        "size": p.size,
        "dimensions": p.dimensions,
        "weight": p.weight,
        # 쉼표가 든 태그와 URL 이 있어서 둘 다 | 로 구분 (csv_import.split_list 와 짝)
        "tags": _pipe_join(p.tags),
        "images": _pipe_join(p.images),
        "seo_title": p.seo_title,
        "seo_description": p.seo_description,
        "slug": p.slug,
        "visibility": "visible" if p.is_visible else "hidden",
    }


def export_csv(products) -> str:
    """CSV importer 가 그대로 다시 읽을 수 있는 컬럼 구성."""
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=list(REQUIRED_COLUMNS) + list(OPTIONAL_COLUMNS), lineterminator="\n")
    writer.writeheader()
    for p in products:
        writer.writerow(_row(p))
    return out.getvalue()


def _sub(parent, tag, value):
    el = ET.SubElement(parent, tag)
    el.text = "" if value is None else str(value)
    return el


def export_xml(products) -> bytes:
    root = ET.Element("catalog", generated=timezone.now().isoformat())
    for p in products:
        el = ET.SubElement(root, "product", id=str(p.pk), sku=p.sku)
        _sub(el, "title", p.title)
        _sub(el, "slug", p.slug)
        _sub(el, "category", p.category.name)
        _sub(el, "price", f"{p.price:.2f}")
        if p.old_price is not None:
            _sub(el, "old_price", f"{p.old_price:.2f}")
        _sub(el, "currency", p.currency)
        _sub(el, "stock", p.stock)
        _sub(el, "active", "true" if p.is_active else "false")
        _sub(el, "visible", "true" if p.is_visible else "false")
        _sub(el, "description", p.description)
        for name in ("material", "size", "dimensions", "weight"):
            if getattr(p, name):
                _sub(el, name, getattr(p, name))
        images = ET.SubElement(el, "images")
        for url in p.images or []:
            _sub(images, "image", url)
        tags = ET.SubElement(el, "tags")
        for tag in p.tags or []:
            _sub(tags, "tag", tag)
        variants = ET.SubElement(el, "variants")
        for v in p.variants.all():
            v_el = ET.SubElement(variants, "variant", sku=v.sku)
            _sub(v_el, "color", v.color)
            _sub(v_el, "size", v.size)
            _sub(v_el, "price", f"{v.price:.2f}")
            _sub(v_el, "stock", v.stock)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)
