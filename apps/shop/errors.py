from rest_framework import status
from rest_framework.exceptions import APIException


class ShopError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal error"
    default_code = "error"


class ValidationError(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid data"
    default_code = "invalid"


class CartEmpty(ValidationError):
    default_detail = "Cart is empty"
    default_code = "cart_empty"


class ItemUnavailable(ValidationError):
    default_detail = "Item is unavailable"
    default_code = "item_unavailable"


class InsufficientStock(ValidationError):
    default_detail = "Not enough items in stock"
    default_code = "insufficient_stock"


class AddressNotFound(ValidationError):
    default_detail = "Delivery address not found"
    default_code = "address_not_found"


class InvalidStatusTransition(ValidationError):
    default_detail = "Invalid order status transition"
    default_code = "invalid_status_transition"


class AuthError(ShopError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Sign in to continue"
    default_code = "not_authenticated"


class AuthorizationError(ShopError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Insufficient permissions"
    default_code = "permission_denied"


class NotFoundError(ShopError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"
    default_code = "not_found"


class ConflictError(ShopError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Uniqueness conflict"
    default_code = "conflict"


class StorageError(ShopError):
    default_detail = "Database error"
    default_code = "storage_error"


class StructuralError(ValidationError):
    """파일 구조 자체가 잘못된 경우. 행 처리 전에 중단한다."""
    default_detail = "Invalid file structure"
    default_code = "invalid_structure"

    def __init__(self, details, detail=None):
        super().__init__(detail)
        self.details = list(details)


class RowError(Exception):
    """행(또는 XML 노드) 단위 검증 실패. importer 밖으로 나가지 않는다."""

    def __init__(self, row, message, label="Row"):
        super().__init__(f"{label} {row}: {message}")
        self.row = row
        self.message = message
