# apps/shop/models.py
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q


class Category(models.Model):
    name = models.CharField(max_length=200, unique=True)
    slug = models.SlugField(max_length=220, unique=True, allow_unicode=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "categories"

    def __str__(self):
        return self.name


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sku = models.CharField(max_length=100, unique=True)
    external_id = models.CharField(max_length=100, blank=True)
    title = models.CharField(max_length=300)
    slug = models.SlugField(max_length=320, unique=True, allow_unicode=True)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    old_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, default="RUB")
    stock = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_visible = models.BooleanField(default=True)
    is_in_stock = models.BooleanField(default=True)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, related_name="products")
    material = models.CharField(max_length=200, blank=True)
    size = models.CharField(max_length=100, blank=True)
    dimensions = models.CharField(max_length=200, blank=True)
    weight = models.CharField(max_length=100, blank=True)
    tags = models.JSONField(default=list, blank=True)
    images = models.JSONField(default=list, blank=True)
    seo_title = models.CharField(max_length=300, blank=True)
    seo_description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(price__gt=0), name="product_price_positive"),
        ]

    def __str__(self):
        return f"{self.sku} {self.title}"


class ProductVariant(models.Model):
    """색상/사이즈 조합 하나. 가격과 재고는 부모 상품과 독립적이다."""
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="variants")
    color = models.CharField(max_length=100, blank=True, default="")
    size = models.CharField(max_length=100, blank=True, default="")
    material = models.CharField(max_length=200, blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    stock = models.PositiveIntegerField(default=0)
    sku = models.CharField(max_length=160, unique=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(fields=["product", "color", "size"], name="uq_variant_product_color_size"),
            models.CheckConstraint(condition=Q(price__gt=0), name="variant_price_positive"),
        ]

    def __str__(self):
        return self.sku


class Order(models.Model):
    class Status(models.TextChoices):
        NEW = "NEW", "New"
        PROCESSING = "PROCESSING", "Processing"
        SHIPPED = "SHIPPED", "Shipped"
        DELIVERED = "DELIVERED", "Delivered"
        CANCELLED = "CANCELLED", "Cancelled"

    class DeliveryType(models.TextChoices):
        PICKUP = "PICKUP", "Pickup"
        COURIER = "COURIER", "Courier"
        TRANSPORT = "TRANSPORT", "Transport company"

    # NEW -> PROCESSING -> SHIPPED -> DELIVERED, CANCELLED 은 종료 전 어디서나
    FLOW = [Status.NEW, Status.PROCESSING, Status.SHIPPED, Status.DELIVERED]
    TERMINAL = {Status.DELIVERED, Status.CANCELLED}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=32, unique=True)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="orders")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.NEW, db_index=True)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    delivery = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    delivery_type = models.CharField(max_length=20, choices=DeliveryType.choices)
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150, blank=True)
    company = models.CharField(max_length=200, blank=True)
    phone = models.CharField(max_length=32)
    email = models.EmailField(blank=True)
    notes = models.TextField(blank=True)
    address = models.ForeignKey("users.Address", on_delete=models.SET_NULL, null=True, blank=True, related_name="orders")
    promo_code = models.CharField(max_length=50, blank=True)
    track_number = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.order_number

    def can_transition_to(self, new_status: str) -> bool:
        if new_status == self.status:
            return self.status not in self.TERMINAL
        if self.status in self.TERMINAL:
            return False
        if new_status == self.Status.CANCELLED:
            return True
        return self.FLOW.index(new_status) > self.FLOW.index(self.status)


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="order_items")
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ["id"]


class OrderLog(models.Model):
    """주문 상태 감사 로그. 추가만 가능하다."""
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="logs")
    status = models.CharField(max_length=20, choices=Order.Status.choices)
    comment = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("OrderLog entries are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("OrderLog entries are append-only")


class Lead(models.Model):
    name = models.CharField(max_length=200)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    company = models.CharField(max_length=200, blank=True)
    message = models.TextField(blank=True)
    source = models.CharField(max_length=50, default="website")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]


class Setting(models.Model):
    class Type(models.TextChoices):
        STRING = "STRING"
        NUMBER = "NUMBER"
        BOOLEAN = "BOOLEAN"
        JSON = "JSON"

    key = models.CharField(max_length=100, unique=True)
    value = models.TextField()
    type = models.CharField(max_length=10, choices=Type.choices, default=Type.STRING)

    class Meta:
        ordering = ["key"]

    def __str__(self):
        return self.key


from .models_idem import IdempotencyKey  # noqa: E402,F401
