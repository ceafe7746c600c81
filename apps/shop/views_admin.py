import logging

from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from . import errors
from .config import load_store_config
from .exceptions import success
from .exporters import export_csv, export_filename, export_xml, filter_products
from .importers.csv_import import column_schema, generate_sample_csv, import_csv
from .importers.wordpress import import_wordpress
from .permissions import IsShopStaff
from .serializers import CSVImportOptionsIn, ExportFilterIn, WPImportOptionsIn

logger = logging.getLogger("shop.imports")

XML_CONTENT_TYPES = {"application/xml", "text/xml"}


def _form_fields(request) -> dict:
    # QueryDict 그대로 넘기면 빠진 BooleanField 가 False 로 읽혀 기본값이 무시된다
    return {k: request.data.get(k) for k in request.data.keys() if k not in request.FILES}


def _check_size(upload, config):
    if upload.size > config.import_max_file_size:
        limit_mb = config.import_max_file_size // (1024 * 1024)
        raise errors.ValidationError(f"File {upload.name} is too large (max {limit_mb}MB)")


def _import_response(result, what: str):
    body = {"success": result.success, "data": result.as_dict()}
    if result.success:
        body["message"] = f"{what} finished: {result.created} created, {result.updated} updated"
        return Response(body, status=status.HTTP_200_OK)
    body["error"] = f"{what} failed"
    return Response(body, status=status.HTTP_400_BAD_REQUEST)


def _attachment(content, content_type: str, filename: str) -> HttpResponse:
    response = HttpResponse(content, content_type=content_type)
    response["Content-Disposition"] = f'attachment; filename="{filename}"'
    return response


@api_view(["GET", "POST"])
@permission_classes([IsShopStaff])
def csv_import(request):
    config = load_store_config()
    if request.method == "GET":
        action = request.query_params.get("action")
        if action == "sample":
            return _attachment(generate_sample_csv(), "text/csv; charset=utf-8", "products_sample.csv")
        if action == "validate":
            return success(column_schema(config))
        raise errors.ValidationError("Unknown action")

    upload = request.FILES.get("file")
    if upload is None:
        raise errors.ValidationError("No file uploaded")
    if not upload.name.lower().endswith(".csv"):
        raise errors.ValidationError("Only .csv files are supported")
    _check_size(upload, config)

    ser = CSVImportOptionsIn(data=_form_fields(request))
    ser.is_valid(raise_exception=True)
    try:
        content = upload.read().decode("utf-8")
    except UnicodeDecodeError:
        raise errors.ValidationError("File must be UTF-8 encoded")

    logger.info(f"csv import started by user={request.user.pk}: {upload.name} ({upload.size} bytes)")
    result = import_csv(content, ser.to_options(), config)
    return _import_response(result, "Import")


@api_view(["GET", "POST"])
@permission_classes([IsShopStaff])
def wordpress_import(request):
    config = load_store_config()
    if request.method == "GET":
        return success({
            "endpoint": "/api/admin/import/wordpress",
            "method": "POST",
            "contentType": "multipart/form-data",
            "files": "one or more WordPress/WooCommerce WXR exports in field 'files'",
            "options": {
                "defaultCurrency": config.default_currency,
                "updateExisting": False,
                "skipInvalid": False,
                "autoCreateCategories": True,
                "createAllVariants": True,
                "categoryMapping": "JSON object: category name -> category id",
            },
            "maxFileSize": f"{config.import_max_file_size // (1024 * 1024)}MB",
        })

    uploads = request.FILES.getlist("files")
    if not uploads:
        raise errors.ValidationError("No files uploaded")
    for upload in uploads:
        if not (upload.name.lower().endswith(".xml") or upload.content_type in XML_CONTENT_TYPES):
            raise errors.ValidationError(f"File {upload.name} is not an XML file")
        _check_size(upload, config)

    ser = WPImportOptionsIn(data=_form_fields(request))
    ser.is_valid(raise_exception=True)

    logger.info(f"wordpress import started by user={request.user.pk}: {[u.name for u in uploads]}")
    result = import_wordpress([u.read() for u in uploads], ser.to_options(config), config)
    return _import_response(result, "WordPress import")


@api_view(["GET", "POST"])
@permission_classes([IsShopStaff])
def export(request):
    if request.method == "GET":
        ser = ExportFilterIn(data=request.query_params.dict())
    else:
        ser = ExportFilterIn(data=request.data)
    ser.is_valid(raise_exception=True)
    f = dict(ser.validated_data)
    fmt = f.pop("format")
    if request.method == "POST" and not f.get("product_ids"):
        raise errors.ValidationError("productIds is required")

    products = list(filter_products(**f))
    logger.info(f"export: {len(products)} products as {fmt} by user={request.user.pk}")
    if fmt == "xml":
        return _attachment(export_xml(products), "application/xml; charset=utf-8", export_filename("xml"))
    return _attachment(export_csv(products), "text/csv; charset=utf-8", export_filename("csv"))
