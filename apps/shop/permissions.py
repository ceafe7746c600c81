from rest_framework.permissions import BasePermission


class IsShopStaff(BasePermission):
    """ADMIN/MANAGER 역할 또는 is_staff."""
    message = "Insufficient permissions"

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and getattr(user, "is_shop_staff", user.is_staff))
