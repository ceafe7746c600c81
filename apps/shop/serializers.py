import json

from rest_framework import serializers

from . import errors
from .importers.results import CSVImportOptions, WPImportOptions
from .models import Lead, Order, OrderItem, Product, ProductVariant


# ---------- 입력 ----------

class OrderItemIn(serializers.Serializer):
    productId = serializers.UUIDField(source="product_id")
    quantity = serializers.IntegerField(min_value=1)


class OrderCreateIn(serializers.Serializer):
    # 가격은 받지 않는다. 보내도 무시된다.
    items = OrderItemIn(many=True, required=False)
    deliveryType = serializers.ChoiceField(
        source="delivery_type", choices=Order.DeliveryType.choices, default=Order.DeliveryType.PICKUP
    )
    addressId = serializers.IntegerField(source="address_id", required=False, allow_null=True)
    promoCode = serializers.CharField(source="promo_code", required=False, allow_blank=True, max_length=50)
    firstName = serializers.CharField(source="first_name", max_length=150)
    lastName = serializers.CharField(source="last_name", required=False, allow_blank=True, max_length=150)
    company = serializers.CharField(required=False, allow_blank=True, max_length=200)
    phone = serializers.CharField(max_length=32)
    email = serializers.EmailField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if not attrs.get("items"):
            raise errors.CartEmpty()
        return attrs


class OrderFiltersIn(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, default=20)
    status = serializers.ChoiceField(choices=Order.Status.choices, required=False)
    dateFrom = serializers.DateField(source="date_from", required=False)
    dateTo = serializers.DateField(source="date_to", required=False)
    userId = serializers.IntegerField(source="user_id", required=False)
    search = serializers.CharField(required=False, allow_blank=True, max_length=100)


class OrderPatchIn(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices, required=False)
    trackNumber = serializers.CharField(source="track_number", required=False, allow_blank=True, max_length=100)
    comment = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Nothing to update")
        return attrs


class PageIn(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, default=20)


def parse_category_mapping(raw):
    """'{"Bedding": 3}' -> {"Bedding": 3}. 객체가 아니면 400."""
    if raw in (None, ""):
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise errors.ValidationError("Invalid category mapping")
    if not isinstance(raw, dict):
        raise errors.ValidationError("Invalid category mapping")
    mapping = {}
    for name, category_id in raw.items():
        if isinstance(category_id, bool) or not str(category_id).strip().isdigit():
            raise errors.ValidationError("Invalid category mapping")
        mapping[str(name)] = int(category_id)
    return mapping


class _StrictOptions(serializers.Serializer):
    """모르는 옵션 키는 조용히 버리지 않고 400."""

    def validate(self, attrs):
        unknown = sorted(set(self.initial_data) - set(self.fields))
        if unknown:
            raise serializers.ValidationError({k: "Unknown option" for k in unknown})
        return attrs

    def validate_categoryMapping(self, value):
        return parse_category_mapping(value)


class CSVImportOptionsIn(_StrictOptions):
    validateOnly = serializers.BooleanField(default=False)
    updateExisting = serializers.BooleanField(default=False)
    skipInvalid = serializers.BooleanField(default=False)
    categoryMapping = serializers.CharField(required=False, allow_blank=True)

    def to_options(self) -> CSVImportOptions:
        d = self.validated_data
        return CSVImportOptions(
            validate_only=d["validateOnly"],
            update_existing=d["updateExisting"],
            skip_invalid=d["skipInvalid"],
            category_mapping=d.get("categoryMapping") or {},
        )


class WPImportOptionsIn(_StrictOptions):
    defaultCurrency = serializers.RegexField(r"^[A-Za-z]{3}$", required=False)
    updateExisting = serializers.BooleanField(default=False)
    skipInvalid = serializers.BooleanField(default=False)
    autoCreateCategories = serializers.BooleanField(default=True)
    createAllVariants = serializers.BooleanField(default=True)
    categoryMapping = serializers.CharField(required=False, allow_blank=True)

    def to_options(self, config) -> WPImportOptions:
        d = self.validated_data
        return WPImportOptions(
            default_currency=(d.get("defaultCurrency") or config.default_currency).upper(),
            update_existing=d["updateExisting"],
            skip_invalid=d["skipInvalid"],
            auto_create_categories=d["autoCreateCategories"],
            create_all_variants=d["createAllVariants"],
            category_mapping=d.get("categoryMapping") or {},
        )


class ExportFilterIn(serializers.Serializer):
    format = serializers.ChoiceField(choices=["csv", "xml"], default="csv")
    category = serializers.CharField(required=False)
    isActive = serializers.BooleanField(source="is_active", required=False, allow_null=True, default=None)
    isVisible = serializers.BooleanField(source="is_visible", required=False, allow_null=True, default=None)
    inStock = serializers.BooleanField(source="in_stock", required=False, allow_null=True, default=None)
    dateFrom = serializers.DateField(source="date_from", required=False)
    dateTo = serializers.DateField(source="date_to", required=False)
    productIds = serializers.ListField(child=serializers.UUIDField(), source="product_ids", required=False)


class LeadIn(serializers.ModelSerializer):
    class Meta:
        model = Lead
        fields = ["name", "phone", "email", "company", "message", "source"]
        extra_kwargs = {"source": {"required": False}}

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Name is required")
        return value


# ---------- 출력 ----------

class LeadOut(serializers.ModelSerializer):
    createdAt = serializers.DateTimeField(source="created_at")

    class Meta:
        model = Lead
        fields = ["id", "name", "phone", "email", "company", "message", "source", "createdAt"]


class ProductBriefOut(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ["id", "sku", "title", "slug", "images"]


class VariantOut(serializers.ModelSerializer):
    class Meta:
        model = ProductVariant
        fields = ["id", "sku", "color", "size", "material", "price", "stock"]


class ProductOut(serializers.ModelSerializer):
    oldPrice = serializers.DecimalField(source="old_price", max_digits=12, decimal_places=2, allow_null=True)
    isInStock = serializers.BooleanField(source="is_in_stock")
    category = serializers.SerializerMethodField()
    variants = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = [
            "id", "sku", "title", "slug", "description", "price", "oldPrice", "currency", "stock",
            "isInStock", "category", "material", "size", "dimensions", "weight", "tags", "images",
            "variants",
        ]

    def get_category(self, obj):
        return {"id": obj.category_id, "name": obj.category.name, "slug": obj.category.slug}

    def get_variants(self, obj):
        return VariantOut([v for v in obj.variants.all() if v.is_active], many=True).data


class OrderItemOut(serializers.ModelSerializer):
    product = ProductBriefOut()

    class Meta:
        model = OrderItem
        fields = ["id", "product", "quantity", "price", "total"]


class OrderOut(serializers.ModelSerializer):
    orderNumber = serializers.CharField(source="order_number")
    deliveryType = serializers.CharField(source="delivery_type")
    firstName = serializers.CharField(source="first_name")
    lastName = serializers.CharField(source="last_name")
    promoCode = serializers.CharField(source="promo_code")
    trackNumber = serializers.CharField(source="track_number")
    createdAt = serializers.DateTimeField(source="created_at")
    updatedAt = serializers.DateTimeField(source="updated_at")
    user = serializers.SerializerMethodField()
    address = serializers.SerializerMethodField()
    items = OrderItemOut(many=True)

    class Meta:
        model = Order
        fields = [
            "id", "orderNumber", "status", "subtotal", "delivery", "discount", "total", "deliveryType",
            "firstName", "lastName", "company", "phone", "email", "notes", "promoCode", "trackNumber",
            "user", "address", "items", "createdAt", "updatedAt",
        ]

    def get_user(self, obj):
        return {"id": obj.user_id, "email": obj.user.email, "name": obj.user.get_full_name()}

    def get_address(self, obj):
        a = obj.address
        if a is None:
            return None
        return {
            "id": a.pk, "city": a.city, "street": a.street, "house": a.house, "flat": a.flat,
            "postalCode": a.postal_code, "comment": a.comment,
        }
