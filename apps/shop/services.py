import logging
import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Case, F, Q, Value, When
from django.utils import timezone

from . import errors
from .config import StoreConfig, load_store_config
from .models import Order, OrderItem, OrderLog, Product
from .tx_retry import retry_on_order_number_conflict

logger = logging.getLogger("shop.orders")

ZERO = Decimal("0.00")
CONTACT_FIELDS = ("first_name", "last_name", "company", "phone", "email", "notes")


def generate_order_number() -> str:
    return f"ORD-{timezone.now():%y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def delivery_fee(delivery_type: str, subtotal: Decimal, config: StoreConfig) -> Decimal:
    if delivery_type == Order.DeliveryType.COURIER:
        return ZERO if subtotal >= config.free_delivery_threshold else config.courier_fee
    if delivery_type == Order.DeliveryType.TRANSPORT:
        return config.transport_fee
    return ZERO


def promo_discount(promo_code: str, subtotal: Decimal) -> Decimal:
    # 프로모션 코드는 저장만 하고 할인은 아직 없다
    return ZERO


def _merge_lines(items: list[dict]) -> dict:
    """같은 상품이 여러 줄이면 수량을 합친다. 입력 순서는 유지."""
    lines = {}
    for it in items:
        q = it.get("quantity")
        if isinstance(q, bool) or not isinstance(q, int) or q <= 0:
            raise errors.ValidationError("Quantity must be a positive integer")
        try:
            product_id = uuid.UUID(str(it.get("product_id")))
        except ValueError:
            raise errors.ValidationError("Malformed product id in cart")
        lines[product_id] = lines.get(product_id, 0) + q
    return lines


@retry_on_order_number_conflict
def _insert_order(**fields) -> Order:
    return Order.objects.create(order_number=generate_order_number(), **fields)


def create_order(*, user, items: list[dict], delivery_type: str, contact: dict | None = None,
                 address_id=None, promo_code: str = "", config: StoreConfig | None = None) -> Order:
    """items = [{'product_id': UUID, 'quantity': 2}, ...]

    가격은 항상 DB 의 현재 값으로 다시 계산한다. 클라이언트가 보낸 가격은 쓰지 않는다.
    """
    config = config or load_store_config()
    if not items:
        raise errors.CartEmpty()
    lines = _merge_lines(items)

    actor = get_user_model().objects.filter(pk=getattr(user, "pk", None), is_active=True).first()
    if actor is None:
        raise errors.AuthError("User not found")

    address = None
    if address_id:
        address = actor.addresses.filter(pk=address_id).first()
        if address is None:
            raise errors.AddressNotFound()

    contact = {k: (contact or {}).get(k) or "" for k in CONTACT_FIELDS}

    with transaction.atomic():
        # 잠금 순서를 pk 로 고정 → 데드락 예방
        products = {
            p.pk: p for p in Product.objects.select_for_update().filter(pk__in=list(lines)).order_by("pk")
        }

        subtotal = ZERO
        pending = []
        for product_id, q in lines.items():
            p = products.get(product_id)
            if p is None or not p.is_active or not p.is_in_stock:
                raise errors.ItemUnavailable(f"Product {p.title if p else product_id} is unavailable")
            if p.stock < q:
                raise errors.InsufficientStock(f"Not enough {p.title} in stock")
            line_total = p.price * q
            subtotal += line_total
            pending.append(OrderItem(product=p, quantity=q, price=p.price, total=line_total))

        delivery = delivery_fee(delivery_type, subtotal, config)
        discount = promo_discount(promo_code, subtotal)
        total = subtotal + delivery - discount

        order = _insert_order(
            attempts=config.order_number_attempts,
            user=actor,
            status=Order.Status.NEW,
            subtotal=subtotal,
            delivery=delivery,
            discount=discount,
            total=total,
            delivery_type=delivery_type,
            address=address,
            promo_code=promo_code or "",
            **contact,
        )

        for item in pending:
            item.order = order
            # 조건부 차감: 재고가 모자라면 0 rows → 전체 롤백
            # SET 우변은 갱신 전 값을 본다: stock == quantity 이면 이번 주문으로 품절
            updated = Product.objects.filter(pk=item.product_id, stock__gte=item.quantity).update(
                stock=F("stock") - item.quantity,
                is_in_stock=Case(When(stock=item.quantity, then=Value(False)), default=F("is_in_stock")),
            )
            if not updated:
                raise errors.InsufficientStock(f"Not enough {item.product.title} in stock")
        OrderItem.objects.bulk_create(pending)
        OrderLog.objects.create(order=order, status=Order.Status.NEW, comment="Order created", created_by=actor)

        transaction.on_commit(lambda: notify_order_created(order.pk))

    logger.info(f"order created: {order.order_number} user={actor.pk} total={order.total}")
    return order


def notify_order_created(order_id):
    # 메일 발송은 범위 밖. 커밋 이후에만 호출된다.
    logger.info(f"order created event dispatched: {order_id}")


@transaction.atomic
def update_order(*, order_id, actor, status: str | None = None, track_number: str | None = None,
                 comment: str = "") -> Order:
    order = Order.objects.select_for_update().filter(pk=order_id).first()
    if order is None:
        raise errors.NotFoundError("Order not found")

    previous = order.status
    if status and status != order.status:
        if not order.can_transition_to(status):
            raise errors.InvalidStatusTransition(f"Cannot change status from {order.status} to {status}")
        if status == Order.Status.CANCELLED:
            _restock(order)
        order.status = status
    if track_number is not None:
        order.track_number = track_number
    order.save(update_fields=["status", "track_number", "updated_at"])

    OrderLog.objects.create(order=order, status=order.status, comment=comment or "Status updated", created_by=actor)
    logger.info(f"order {order.order_number}: {previous} -> {order.status}")
    return order


def _restock(order: Order):
    for item in order.items.all():
        Product.objects.filter(pk=item.product_id).update(stock=F("stock") + item.quantity, is_in_stock=True)


def orders_visible_to(user, *, status=None, date_from=None, date_to=None, user_id=None, search=None):
    qs = Order.objects.select_related("user", "address").prefetch_related("items__product")
    if not getattr(user, "is_shop_staff", False):
        qs = qs.filter(user=user)
    elif user_id:
        qs = qs.filter(user_id=user_id)

    if status:
        qs = qs.filter(status=status)
    if date_from:
        qs = qs.filter(created_at__date__gte=date_from)
    if date_to:
        qs = qs.filter(created_at__date__lte=date_to)
    if search:
        qs = qs.filter(
            Q(order_number__icontains=search)
            | Q(first_name__icontains=search)
            | Q(last_name__icontains=search)
            | Q(email__icontains=search)
        )
    return qs.order_by("-created_at")
