from decimal import Decimal

import pytest

from apps.users.models import Address

from . import errors, services
from .config import StoreConfig
from .models import Order, OrderItem, OrderLog, Product
from .services import create_order, orders_visible_to, update_order

pytestmark = pytest.mark.django_db(transaction=True)

CONTACT = {"first_name": "Ivan", "phone": "+70000000000"}


def place(user, items, delivery_type="PICKUP", **kwargs):
    kwargs.setdefault("contact", CONTACT)
    kwargs.setdefault("config", StoreConfig())
    return create_order(user=user, items=items, delivery_type=delivery_type, **kwargs)


def test_prices_come_from_database(customer, make_product):
    p = make_product(price="1200.00", stock=5)
    # 클라이언트가 보낸 가격은 무시
    order = place(customer, [{"product_id": p.pk, "quantity": 2, "price": "1.00"}], "COURIER")

    item = order.items.get()
    assert item.price == Decimal("1200.00")
    assert item.total == Decimal("2400.00")
    assert order.subtotal == Decimal("2400.00")
    assert order.delivery == Decimal("500")
    assert order.total == order.subtotal + order.delivery - order.discount == Decimal("2900.00")


@pytest.mark.parametrize(
    "delivery_type, price, expected",
    [
        ("COURIER", "3000.00", Decimal("0")),
        ("COURIER", "2999.99", Decimal("500")),
        ("TRANSPORT", "5000.00", Decimal("1000")),
        ("PICKUP", "100.00", Decimal("0")),
    ],
)
def test_delivery_fee(customer, make_product, delivery_type, price, expected):
    p = make_product(price=price)
    order = place(customer, [{"product_id": p.pk, "quantity": 1}], delivery_type)
    assert order.delivery == expected


def test_delivery_fee_uses_injected_config(customer, make_product):
    p = make_product(price="100.00")
    config = StoreConfig(courier_fee=Decimal("250"))
    order = place(customer, [{"product_id": p.pk, "quantity": 1}], "COURIER", config=config)
    assert order.delivery == Decimal("250")


def test_stock_decremented_and_single_log(customer, make_product):
    p = make_product(stock=5)
    order = place(customer, [{"product_id": p.pk, "quantity": 3}])

    p.refresh_from_db()
    assert p.stock == 2
    logs = list(order.logs.all())
    assert len(logs) == 1
    assert logs[0].status == Order.Status.NEW
    assert logs[0].created_by == customer
    assert order.status == Order.Status.NEW
    assert order.order_number.startswith("ORD-")


def test_insufficient_stock_writes_nothing(customer, make_product):
    ok = make_product(stock=10)
    short = make_product(stock=1)

    with pytest.raises(errors.InsufficientStock):
        place(customer, [{"product_id": ok.pk, "quantity": 2}, {"product_id": short.pk, "quantity": 2}])

    assert Order.objects.count() == 0  # 전체 롤백
    assert OrderItem.objects.count() == 0
    assert OrderLog.objects.count() == 0
    ok.refresh_from_db()
    short.refresh_from_db()
    assert (ok.stock, short.stock) == (10, 1)


def test_duplicate_lines_are_merged_before_stock_check(customer, make_product):
    p = make_product(stock=3)
    with pytest.raises(errors.InsufficientStock):
        place(customer, [{"product_id": p.pk, "quantity": 2}, {"product_id": p.pk, "quantity": 2}])

    order = place(customer, [{"product_id": p.pk, "quantity": 1}, {"product_id": p.pk, "quantity": 2}])
    assert order.items.get().quantity == 3


@pytest.mark.parametrize("field", ["is_active", "is_in_stock"])
def test_unavailable_product_rejected(customer, make_product, field):
    p = make_product(**{field: False})
    with pytest.raises(errors.ItemUnavailable):
        place(customer, [{"product_id": p.pk, "quantity": 1}])


def test_unknown_product_rejected(customer):
    with pytest.raises(errors.ItemUnavailable):
        place(customer, [{"product_id": "5f0c7b7e-5c4d-4c55-9f4e-000000000000", "quantity": 1}])


def test_empty_cart(customer):
    with pytest.raises(errors.CartEmpty):
        place(customer, [])


def test_inactive_actor_rejected(customer, make_product):
    p = make_product()
    customer.is_active = False
    customer.save()
    with pytest.raises(errors.AuthError):
        place(customer, [{"product_id": p.pk, "quantity": 1}])


def test_address_must_belong_to_actor(customer, other_customer, make_product):
    p = make_product()
    foreign = Address.objects.create(user=other_customer, city="Moscow", street="Tverskaya")
    with pytest.raises(errors.AddressNotFound):
        place(customer, [{"product_id": p.pk, "quantity": 1}], address_id=foreign.pk)

    own = Address.objects.create(user=customer, city="Kazan", street="Baumana")
    order = place(customer, [{"product_id": p.pk, "quantity": 1}], address_id=own.pk)
    assert order.address == own


def test_order_number_collision_is_retried(customer, make_product, monkeypatch):
    p = make_product(stock=10)
    monkeypatch.setattr(services, "generate_order_number", lambda: "ORD-000000-AAAAAA")
    place(customer, [{"product_id": p.pk, "quantity": 1}])

    numbers = iter(["ORD-000000-AAAAAA", "ORD-000000-BBBBBB"])
    monkeypatch.setattr(services, "generate_order_number", lambda: next(numbers))
    order = place(customer, [{"product_id": p.pk, "quantity": 1}])

    assert order.order_number == "ORD-000000-BBBBBB"
    assert Order.objects.count() == 2
    p.refresh_from_db()
    assert p.stock == 8


def test_order_number_retry_exhausted_rolls_back(customer, make_product, monkeypatch):
    p = make_product(stock=10)
    monkeypatch.setattr(services, "generate_order_number", lambda: "ORD-000000-AAAAAA")
    place(customer, [{"product_id": p.pk, "quantity": 1}])

    calls = []

    def same_number():
        calls.append(1)
        return "ORD-000000-AAAAAA"

    monkeypatch.setattr(services, "generate_order_number", same_number)
    with pytest.raises(errors.ConflictError):
        place(customer, [{"product_id": p.pk, "quantity": 4}])

    assert len(calls) == 3
    assert Order.objects.count() == 1
    p.refresh_from_db()
    assert p.stock == 9


def test_notification_runs_only_after_commit(customer, make_product, monkeypatch):
    sent = []
    monkeypatch.setattr(services, "notify_order_created", sent.append)
    p = make_product(stock=1)

    order = place(customer, [{"product_id": p.pk, "quantity": 1}])
    assert sent == [order.pk]

    with pytest.raises(errors.InsufficientStock):
        place(customer, [{"product_id": p.pk, "quantity": 1}])
    assert sent == [order.pk]


def test_status_flow_and_logs(customer, manager, make_product):
    p = make_product()
    order = place(customer, [{"product_id": p.pk, "quantity": 1}])

    update_order(order_id=order.pk, actor=manager, status="SHIPPED", track_number="TRK1")
    with pytest.raises(errors.InvalidStatusTransition):
        update_order(order_id=order.pk, actor=manager, status="PROCESSING")
    update_order(order_id=order.pk, actor=manager, status="DELIVERED", comment="handed over")
    with pytest.raises(errors.InvalidStatusTransition):
        update_order(order_id=order.pk, actor=manager, status="CANCELLED")

    order.refresh_from_db()
    assert order.status == Order.Status.DELIVERED
    assert order.track_number == "TRK1"
    assert [(log.status, log.comment) for log in order.logs.all()] == [
        ("NEW", "Order created"),
        ("SHIPPED", "Status updated"),
        ("DELIVERED", "handed over"),
    ]


def test_cancel_restocks(customer, manager, make_product):
    p = make_product(stock=5)
    order = place(customer, [{"product_id": p.pk, "quantity": 2}])

    update_order(order_id=order.pk, actor=manager, status="CANCELLED")

    p.refresh_from_db()
    assert p.stock == 5
    order.refresh_from_db()
    assert order.total == Decimal("1000.00") * 2


def test_selling_out_clears_in_stock_flag_and_cancel_restores_it(customer, manager, make_product):
    p = make_product(stock=2)
    other = make_product(stock=5)
    order = place(customer, [{"product_id": p.pk, "quantity": 2}, {"product_id": other.pk, "quantity": 1}])

    p.refresh_from_db()
    other.refresh_from_db()
    assert (p.stock, p.is_in_stock) == (0, False)
    assert (other.stock, other.is_in_stock) == (4, True)

    # 품절 상품은 다음 주문에서 바로 거절
    with pytest.raises(errors.ItemUnavailable):
        place(customer, [{"product_id": p.pk, "quantity": 1}])

    update_order(order_id=order.pk, actor=manager, status="CANCELLED")
    p.refresh_from_db()
    assert (p.stock, p.is_in_stock) == (2, True)


def test_update_missing_order(manager):
    with pytest.raises(errors.NotFoundError):
        update_order(order_id="5f0c7b7e-5c4d-4c55-9f4e-000000000000", actor=manager, status="SHIPPED")


def test_order_log_is_append_only(customer, make_product):
    p = make_product()
    order = place(customer, [{"product_id": p.pk, "quantity": 1}])
    log = order.logs.get()

    log.comment = "edited"
    with pytest.raises(ValueError):
        log.save()
    with pytest.raises(ValueError):
        log.delete()
    assert OrderLog.objects.get(pk=log.pk).comment == "Order created"


def test_orders_visible_to(customer, other_customer, manager, make_product):
    p = make_product(stock=10)
    mine = place(customer, [{"product_id": p.pk, "quantity": 1}], contact={"first_name": "Anna", "phone": "1"})
    theirs = place(other_customer, [{"product_id": p.pk, "quantity": 1}])

    assert list(orders_visible_to(customer)) == [mine]
    # user_id 필터는 직원에게만 적용된다
    assert list(orders_visible_to(customer, user_id=other_customer.pk)) == [mine]
    assert set(orders_visible_to(manager)) == {mine, theirs}
    assert list(orders_visible_to(manager, user_id=other_customer.pk)) == [theirs]
    assert list(orders_visible_to(manager, search="anna")) == [mine]
    assert list(orders_visible_to(manager, search=theirs.order_number.lower())) == [theirs]
    assert list(orders_visible_to(manager, status="SHIPPED")) == []
    assert Product.objects.get(pk=p.pk).stock == 8
