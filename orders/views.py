from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from marketplace.auth import RequestContext, api_login_required, json_body, staff_required

from . import services


@require_POST
@api_login_required
def checkout_view(request):
    body = json_body(request)
    result = services.checkout(
        RequestContext.from_request(request),
        shipping_address=body.get("shippingAddress"),
        pincode=body.get("pincode"),
        payment_method=body.get("paymentMethod"),
        items=body.get("items"),
    )
    return JsonResponse(result, status=201)


@require_GET
@api_login_required
def order_list_view(request):
    try:
        page = int(request.GET.get("page", "1"))
    except ValueError:
        page = 1
    return JsonResponse(services.list_orders(RequestContext.from_request(request), page=page))


@require_GET
@api_login_required
def order_detail_view(request, order_id):
    return JsonResponse(services.get_order_detail(RequestContext.from_request(request), order_id))


@require_GET
@api_login_required
def order_tracking_view(request, order_id):
    return JsonResponse(services.tracking(RequestContext.from_request(request), order_id))


@require_POST
@staff_required
def order_status_view(request, order_id):
    body = json_body(request)
    result = services.update_status(
        RequestContext.from_request(request),
        order_id,
        status=body.get("status"),
        remarks=body.get("remarks") or None,
    )
    return JsonResponse(result)


@require_GET
@api_login_required
def cart_summary_view(request):
    return JsonResponse(services.cart_summary(RequestContext.from_request(request)))
