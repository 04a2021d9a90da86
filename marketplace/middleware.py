import logging

from django.http import JsonResponse

from .errors import MarketplaceError

logger = logging.getLogger(__name__)


class ApiErrorMiddleware:
    """Render service errors as JSON with a stable ``error`` kind.

    Unknown exceptions are logged and collapsed into a generic internal
    error so nothing about storage or internals leaks to the client.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    def process_exception(self, request, exception):
        if isinstance(exception, MarketplaceError):
            if exception.status_code >= 500:
                logger.error("%s %s -> %s: %s", request.method, request.path, exception.kind, exception.message)
            return JsonResponse(exception.as_dict(), status=exception.status_code)
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return JsonResponse({"error": "internal_error", "message": "Internal server error"}, status=500)
