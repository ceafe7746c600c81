# apps/users/models.py
from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    class Role(models.TextChoices):
        ADMIN = "ADMIN", "Admin"
        MANAGER = "MANAGER", "Manager"
        CUSTOMER = "CUSTOMER", "Customer"

    role = models.CharField(max_length=20, choices=Role.choices, default=Role.CUSTOMER)
    phone = models.CharField(max_length=32, blank=True)
    company = models.CharField(max_length=200, blank=True)

    @property
    def is_shop_staff(self) -> bool:
        return self.is_staff or self.role in (self.Role.ADMIN, self.Role.MANAGER)


class Address(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="addresses")
    city = models.CharField(max_length=120)
    street = models.CharField(max_length=200)
    house = models.CharField(max_length=30, blank=True)
    flat = models.CharField(max_length=30, blank=True)
    postal_code = models.CharField(max_length=20, blank=True)
    comment = models.CharField(max_length=255, blank=True)
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return ", ".join(p for p in (self.postal_code, self.city, self.street, self.house, self.flat) if p)
