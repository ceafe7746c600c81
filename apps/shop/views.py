import hashlib
import json
import logging

from django.db import DatabaseError, connection, transaction
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from . import errors
from .config import load_store_config
from .exceptions import success
from .models import Lead, Order, Product
from .models_idem import IdempotencyKey
from .serializers import (
    LeadIn, LeadOut, OrderCreateIn, OrderFiltersIn, OrderOut, OrderPatchIn, PageIn, ProductOut, VariantOut,
)
from .services import CONTACT_FIELDS, create_order, orders_visible_to, update_order

logger = logging.getLogger("shop.api")


def paginate(qs, page: int, limit: int):
    total = qs.count()
    rows = list(qs[(page - 1) * limit: page * limit])
    pagination = {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit}
    return rows, pagination


def _require_staff(user):
    if not getattr(user, "is_shop_staff", False):
        raise errors.AuthorizationError()


# ---------- orders ----------

@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def orders(request):
    if request.method == "POST":
        return _create_order(request)

    ser = OrderFiltersIn(data=request.query_params.dict())
    ser.is_valid(raise_exception=True)
    f = ser.validated_data
    qs = orders_visible_to(
        request.user,
        status=f.get("status"),
        date_from=f.get("date_from"),
        date_to=f.get("date_to"),
        user_id=f.get("user_id"),
        search=f.get("search"),
    )
    rows, pagination = paginate(qs, f["page"], f["limit"])
    return success(OrderOut(rows, many=True).data, pagination=pagination)


def _place(request, data):
    order = create_order(
        user=request.user,
        items=data["items"],
        delivery_type=data["delivery_type"],
        contact={k: data.get(k) for k in CONTACT_FIELDS},
        address_id=data.get("address_id"),
        promo_code=data.get("promo_code", ""),
        config=load_store_config(),
    )
    order = Order.objects.select_related("user", "address").prefetch_related("items__product").get(pk=order.pk)
    return order, {"success": True, "data": OrderOut(order).data, "message": "Order created"}


def _create_order(request):
    ser = OrderCreateIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data

    idem = request.headers.get("Idempotency-Key")
    body_hash = hashlib.sha256(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()

    if idem:
        with transaction.atomic():
            rec, created = IdempotencyKey.objects.select_for_update().get_or_create(
                key=idem, user=request.user,
                defaults={"request_hash": body_hash, "status_code": 0, "response_body": {}},
            )
            if not created and rec.status_code:
                if rec.request_hash != body_hash:
                    raise errors.ConflictError("Idempotency-Key was already used with a different request")
                logger.info(f"order replayed for idempotency key {idem}")
                return Response(rec.response_body, status=rec.status_code)

            order, payload = _place(request, data)
            payload = json.loads(json.dumps(payload, default=str))
            rec.request_hash, rec.response_body, rec.status_code = body_hash, payload, status.HTTP_201_CREATED
            rec.save(update_fields=["request_hash", "response_body", "status_code"])
    else:
        order, payload = _place(request, data)

    headers = {"Location": f"/api/orders/{order.id}"}
    return Response(payload, status=status.HTTP_201_CREATED, headers=headers)


@api_view(["GET", "PATCH"])
@permission_classes([IsAuthenticated])
def order_detail(request, order_id):
    if request.method == "PATCH":
        _require_staff(request.user)
        ser = OrderPatchIn(data=request.data)
        ser.is_valid(raise_exception=True)
        d = ser.validated_data
        update_order(
            order_id=order_id,
            actor=request.user,
            status=d.get("status"),
            track_number=d.get("track_number"),
            comment=d.get("comment", ""),
        )

    order = (
        Order.objects.select_related("user", "address").prefetch_related("items__product")
        .filter(pk=order_id).first()
    )
    if order is None:
        raise errors.NotFoundError("Order not found")
    if order.user_id != request.user.pk and not request.user.is_shop_staff:
        raise errors.AuthorizationError()
    return success(OrderOut(order).data, message="Order updated" if request.method == "PATCH" else None)


# ---------- leads ----------

@api_view(["GET", "POST"])
@permission_classes([AllowAny])
def leads(request):
    if request.method == "POST":
        ser = LeadIn(data=request.data)
        ser.is_valid(raise_exception=True)
        lead = ser.save()
        logger.info(f"lead received: id={lead.pk} source={lead.source}")
        return success(LeadOut(lead).data, message="Request received", status_code=status.HTTP_201_CREATED)

    if not request.user.is_authenticated:
        raise errors.AuthError()
    _require_staff(request.user)
    ser = PageIn(data=request.query_params.dict())
    ser.is_valid(raise_exception=True)
    rows, pagination = paginate(Lead.objects.all(), ser.validated_data["page"], ser.validated_data["limit"])
    return success(LeadOut(rows, many=True).data, pagination=pagination)


# ---------- public ----------

@api_view(["GET"])
@permission_classes([AllowAny])
def health(request):
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError as e:
        logger.error(f"health check failed: {e}")
        return Response(
            {"status": "error", "database": "unavailable", "timestamp": timezone.now().isoformat()},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return Response({"status": "ok", "database": "ok", "timestamp": timezone.now().isoformat()})


def _visible_product(slug):
    product = (
        Product.objects.select_related("category").prefetch_related("variants")
        .filter(slug=slug, is_active=True, is_visible=True).first()
    )
    if product is None:
        raise errors.NotFoundError("Product not found")
    return product


@api_view(["GET"])
@permission_classes([AllowAny])
def product_detail(request, slug):
    return success(ProductOut(_visible_product(slug)).data)


@api_view(["GET"])
@permission_classes([AllowAny])
def product_variant(request, slug):
    product = _visible_product(slug)
    color = request.query_params.get("color", "").strip()
    size = request.query_params.get("size", "").strip()
    variant = product.variants.filter(is_active=True, color=color, size=size).first()
    if variant is None:
        raise errors.NotFoundError("Variant not found")
    return success(VariantOut(variant).data)
