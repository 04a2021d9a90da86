import logging

from django.http import JsonResponse

logger = logging.getLogger(__name__)


def error_404_view(request, exception):
    return JsonResponse({"error": "not_found", "message": "Not found"}, status=404)


def error_500_view(request):
    logger.error("Internal error rendering %s %s", request.method, request.path)
    return JsonResponse({"error": "internal_error", "message": "Internal server error"}, status=500)


def csrf_failure(request, reason=""):
    return JsonResponse({"error": "forbidden", "message": "CSRF verification failed"}, status=403)
