import json
import logging
from dataclasses import dataclass, fields
from decimal import Decimal

from django.conf import settings

from .models import Setting

logger = logging.getLogger("shop.config")

# Setting.key -> StoreConfig 필드
SETTING_KEYS = {
    "freeDeliveryThreshold": "free_delivery_threshold",
    "courierFee": "courier_fee",
    "transportFee": "transport_fee",
    "orderNumberAttempts": "order_number_attempts",
    "defaultCurrency": "default_currency",
    "defaultCategory": "default_category",
    "defaultVariantStock": "default_variant_stock",
    "importMaxFileSize": "import_max_file_size",
}


@dataclass(frozen=True)
class StoreConfig:
    """요청 하나에서 한 번 읽어서 파이프라인에 주입하는 설정."""
    free_delivery_threshold: Decimal = Decimal("3000")
    courier_fee: Decimal = Decimal("500")
    transport_fee: Decimal = Decimal("1000")
    order_number_attempts: int = 3
    default_currency: str = "RUB"
    default_category: str = "Без категории"
    default_variant_stock: int = 0
    import_max_file_size: int = 10 * 1024 * 1024

    def __post_init__(self):
        for name in ("free_delivery_threshold", "courier_fee", "transport_fee"):
            value = getattr(self, name)
            if not value.is_finite() or value < 0:
                raise ValueError(f"{name} must be a non-negative number")
        if self.order_number_attempts < 1:
            raise ValueError("order_number_attempts must be >= 1")
        if self.default_variant_stock < 0:
            raise ValueError("default_variant_stock must be non-negative")
        if self.import_max_file_size < 1:
            raise ValueError("import_max_file_size must be positive")
        if len(self.default_currency) != 3:
            raise ValueError("default_currency must be a 3-letter code")
        if not self.default_category.strip() or len(self.default_category) > 200:
            raise ValueError("default_category must be 1..200 characters")


def parse_setting_value(setting: Setting):
    if setting.type == Setting.Type.NUMBER:
        return Decimal(setting.value)
    if setting.type == Setting.Type.BOOLEAN:
        return setting.value == "true"
    if setting.type == Setting.Type.JSON:
        return json.loads(setting.value)
    return setting.value


def _coerce(field_type, value):
    if field_type in (Decimal, "Decimal"):
        return Decimal(str(value))
    if field_type in (int, "int"):
        return int(value)
    return str(value)


def load_store_config(overrides=None) -> StoreConfig:
    """settings.SHOP 기본값 위에 Setting 테이블 값을 덮어쓴다."""
    shop = getattr(settings, "SHOP", {})
    types = {f.name: f.type for f in fields(StoreConfig)}
    values = {}
    for name, field_type in types.items():
        if name.upper() in shop:
            values[name] = _coerce(field_type, shop[name.upper()])

    # 행마다 따로 검증: 잘못된 값 하나가 나머지 설정이나 요청 전체를 막지 않는다
    for setting in Setting.objects.filter(key__in=SETTING_KEYS):
        name = SETTING_KEYS[setting.key]
        try:
            value = _coerce(types[name], parse_setting_value(setting))
            StoreConfig(**{**values, name: value})
        except (ValueError, ArithmeticError, json.JSONDecodeError) as e:
            logger.warning(f"ignoring malformed setting {setting.key}={setting.value!r}: {e}")
            continue
        values[name] = value

    values.update(overrides or {})
    return StoreConfig(**values)
