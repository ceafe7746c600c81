import logging
import time

logger = logging.getLogger("shop.api")


class RequestLogMiddleware:
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        started = time.monotonic()
        response = self.get_response(request)
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(f"{request.method} {request.path} -> {response.status_code} ({elapsed_ms:.0f}ms)")
        return response
