import itertools
from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from apps.shop.models import Category, Product

_sku_seq = itertools.count(1)


@pytest.fixture
def customer(django_user_model):
    return django_user_model.objects.create_user(
        username="customer", email="customer@example.com", password="pw", first_name="Ivan", last_name="Petrov"
    )


@pytest.fixture
def other_customer(django_user_model):
    return django_user_model.objects.create_user(username="other", email="other@example.com", password="pw")


@pytest.fixture
def manager(django_user_model):
    return django_user_model.objects.create_user(
        username="manager", email="manager@example.com", password="pw", role="MANAGER"
    )


@pytest.fixture
def category(db):
    return Category.objects.create(name="Bedding", slug="bedding")


@pytest.fixture
def make_product(category):
    def make(sku=None, price="1000.00", stock=10, **kwargs):
        sku = sku or f"SKU{next(_sku_seq):04d}"
        kwargs.setdefault("title", f"Product {sku}")
        kwargs.setdefault("slug", sku.lower())
        kwargs.setdefault("category", category)
        return Product.objects.create(sku=sku, price=Decimal(price), stock=stock, **kwargs)
    return make


@pytest.fixture
def anon_api():
    return APIClient()


@pytest.fixture
def api(customer):
    client = APIClient()
    client.force_authenticate(user=customer)
    return client


@pytest.fixture
def staff_api(manager):
    client = APIClient()
    client.force_authenticate(user=manager)
    return client
