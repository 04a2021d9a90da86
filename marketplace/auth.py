import json
from dataclasses import dataclass
from functools import wraps

from django.http import JsonResponse

from .errors import ValidationError


@dataclass(frozen=True)
class RequestContext:
    """Who is acting on a request, passed explicitly into every service call."""

    user_id: int
    actor_id: str | None = None

    @classmethod
    def from_request(cls, request) -> "RequestContext":
        return cls(user_id=request.user.pk, actor_id=str(request.user.pk))


def api_login_required(view):
    """Like ``login_required`` but answers 401 JSON instead of redirecting."""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"error": "unauthorized", "message": "Authentication required"}, status=401)
        return view(request, *args, **kwargs)

    return wrapper


def staff_required(view):
    @wraps(view)
    @api_login_required
    def wrapper(request, *args, **kwargs):
        if not request.user.is_staff:
            return JsonResponse({"error": "forbidden", "message": "Staff access required"}, status=403)
        return view(request, *args, **kwargs)

    return wrapper


def json_body(request) -> dict:
    """Decode a JSON object body; an empty body counts as ``{}``."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data
