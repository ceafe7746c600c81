import logging
from functools import wraps

from django.db import IntegrityError, transaction

from . import errors

logger = logging.getLogger("shop.orders")


def is_order_number_conflict(exc: Exception) -> bool:
    # sqlite: "UNIQUE constraint failed: shop_order.order_number"
    # postgres: 'duplicate key ... "shop_order_order_number_key"'
    return isinstance(exc, IntegrityError) and "order_number" in str(exc).lower()


def retry_on_order_number_conflict(fn):
    """주문번호 유니크 충돌일 때만 재시도한다.

    각 시도는 저장지점(savepoint) 안에서 실행되므로 실패한 INSERT 만 롤백되고
    바깥 트랜잭션은 유지된다. 감싼 함수는 호출될 때마다 새 주문번호를 만들어야 한다.
    """
    @wraps(fn)
    def wrapper(*args, attempts=3, **kwargs):
        for attempt in range(1, attempts + 1):
            try:
                with transaction.atomic():
                    return fn(*args, **kwargs)
            except IntegrityError as e:
                if not is_order_number_conflict(e):
                    raise
                logger.warning(f"[retry] {fn.__name__} order number collision ({attempt}/{attempts})")
        raise errors.ConflictError("Could not allocate a unique order number")
    return wrapper
