from decimal import Decimal

from django.utils.text import slugify

from .models import Category, Product

# DecimalField(max_digits=12, decimal_places=2), PositiveIntegerField 의 상한
MAX_PRICE = Decimal("10000000000")
MAX_STOCK = 2147483647


def price_in_range(value) -> bool:
    return value is not None and value.is_finite() and 0 < value < MAX_PRICE


def too_long(model, **values):
    """max_length 를 넘는 첫 필드 이름. 없으면 None."""
    for name, value in values.items():
        limit = model._meta.get_field(name).max_length
        if limit and value and len(value) > limit:
            return name
    return None


def unique_slug(model, base: str, *, fallback: str = "item", instance_pk=None, max_length: int = 300) -> str:
    slug = slugify(base or "", allow_unicode=True)[:max_length].strip("-") or slugify(fallback, allow_unicode=True) or "item"
    candidate, n = slug, 2
    qs = model.objects.exclude(pk=instance_pk) if instance_pk is not None else model.objects.all()
    while qs.filter(slug=candidate).exists():
        candidate = f"{slug}-{n}"
        n += 1
    return candidate


class CategoryResolver:
    """카테고리 이름 -> Category.

    1) mapping(이름 -> id) 이 있으면 그것을 쓰고
    2) 없으면 이름으로(대소문자 무시) 찾고
    3) 그래도 없으면 auto_create 일 때 새로 만들고, 아니면 기본 카테고리.
    """

    def __init__(self, *, mapping=None, auto_create=True, default_name="Без категории"):
        self.mapping = {str(k).strip(): v for k, v in (mapping or {}).items()}
        self.auto_create = auto_create
        self.default_name = default_name

    def resolve(self, name: str) -> Category:
        name = (name or "").strip()
        if not name:
            return self._get_or_create(self.default_name)

        if name in self.mapping:
            category = Category.objects.filter(pk=self.mapping[name]).first()
            if category is None:
                raise LookupError(f"mapped category id {self.mapping[name]!r} for '{name}' does not exist")
            return category

        category = Category.objects.filter(name__iexact=name).first()
        if category is not None:
            return category
        if self.auto_create:
            if too_long(Category, name=name):
                raise LookupError(f"category name is too long: '{name[:40]}...'")
            return self._get_or_create(name)
        return self._get_or_create(self.default_name)

    def _get_or_create(self, name: str) -> Category:
        category = Category.objects.filter(name__iexact=name).first()
        if category is None:
            category = Category.objects.create(name=name, slug=unique_slug(Category, name, fallback="category", max_length=200))
        return category


def product_slug(title: str, sku: str, *, wanted: str = "", instance_pk=None) -> str:
    return unique_slug(Product, wanted or title, fallback=sku, instance_pk=instance_pk)
