from decimal import Decimal

import pytest

from .catalog import CategoryResolver, unique_slug
from .config import StoreConfig, load_store_config
from .models import Category, Order, Setting

pytestmark = pytest.mark.django_db


def test_defaults_come_from_settings(settings):
    settings.SHOP = {**settings.SHOP, "COURIER_FEE": 700}
    config = load_store_config()
    assert config.courier_fee == Decimal("700")
    assert config.free_delivery_threshold == Decimal("3000")
    assert config.order_number_attempts == 3


def test_setting_rows_override_defaults():
    Setting.objects.create(key="freeDeliveryThreshold", value="5000", type=Setting.Type.NUMBER)
    Setting.objects.create(key="defaultCurrency", value="EUR")
    Setting.objects.create(key="courierFee", value="lots", type=Setting.Type.NUMBER)

    config = load_store_config()
    assert config.free_delivery_threshold == Decimal("5000")
    assert config.default_currency == "EUR"
    assert config.courier_fee == Decimal("500")  # 잘못된 값은 무시


def test_explicit_overrides_win():
    Setting.objects.create(key="transportFee", value="1500", type=Setting.Type.NUMBER)
    assert load_store_config({"transport_fee": Decimal("0")}).transport_fee == Decimal("0")


def test_config_is_validated():
    with pytest.raises(ValueError):
        StoreConfig(order_number_attempts=0)
    with pytest.raises(ValueError):
        StoreConfig(courier_fee=Decimal("-1"))
    with pytest.raises(ValueError):
        StoreConfig(import_max_file_size=0)


def test_out_of_range_setting_rows_are_ignored():
    Setting.objects.create(key="orderNumberAttempts", value="0", type=Setting.Type.NUMBER)
    Setting.objects.create(key="courierFee", value="-5", type=Setting.Type.NUMBER)
    Setting.objects.create(key="transportFee", value="Infinity", type=Setting.Type.NUMBER)
    Setting.objects.create(key="freeDeliveryThreshold", value="4000", type=Setting.Type.NUMBER)

    config = load_store_config()
    assert config.order_number_attempts == 3
    assert config.courier_fee == Decimal("500")
    assert config.transport_fee == Decimal("1000")
    assert config.free_delivery_threshold == Decimal("4000")


@pytest.mark.parametrize(
    "current, new, allowed",
    [
        ("NEW", "PROCESSING", True),
        ("NEW", "DELIVERED", True),
        ("SHIPPED", "PROCESSING", False),
        ("PROCESSING", "CANCELLED", True),
        ("DELIVERED", "CANCELLED", False),
        ("CANCELLED", "NEW", False),
        ("CANCELLED", "CANCELLED", False),
    ],
)
def test_order_transitions(current, new, allowed):
    assert Order(status=current).can_transition_to(new) is allowed


def test_unique_slug():
    Category.objects.create(name="Постельное бельё", slug="постельное-бельё")
    assert unique_slug(Category, "Постельное бельё") == "постельное-бельё-2"
    assert unique_slug(Category, "!!!", fallback="BED-1") == "bed-1"


def test_category_resolver():
    resolver = CategoryResolver(auto_create=False, default_name="Misc")
    assert resolver.resolve("Unknown").name == "Misc"
    assert resolver.resolve("").name == "Misc"
    assert Category.objects.count() == 1

    creating = CategoryResolver(default_name="Misc")
    towels = creating.resolve("Towels")
    assert creating.resolve("TOWELS") == towels
    assert towels.slug == "towels"

    with pytest.raises(LookupError):
        CategoryResolver(mapping={"Towels": 999}).resolve("Towels")
