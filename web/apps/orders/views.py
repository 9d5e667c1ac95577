"""HTTP views for the orders app.

This module contains the DRF API views of the orders core. Views are kept
intentionally small: they resolve the caller, validate requests (via
Pydantic), delegate to a domain service and render the result.

Services come from the ``providers`` module, which wires the configured
store (ORM or in-memory) and the notifier/payments ports (HTTP clients or
in-process stubs). Domain errors are mapped to HTTP in one place,
``OrdersAPIView.handle_exception``.

Idempotency: when an ``Idempotency-Key`` header is provided, order creation
and checkout are processed at most once. The first request creates a
record and, upon completion, stores the response. Retries with the same
payload replay the stored response with an ``Idempotent-Replay`` header.
Reusing the key with a different payload returns HTTP 409.
"""

import hmac
import logging

import httpx
from django.conf import settings
from django.core.paginator import Paginator
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .auth import require_principal
from .errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    OrderError,
    PaymentNotEnabledError,
    StoreUnavailable,
    ValidationError,
)
from .idempotency import finalize, get_or_create_idempotent
from .schemas import (
    CartEntryPatchDTO,
    CartItemIn,
    CheckoutDTO,
    CreateOrderDTO,
    OrderPatchDTO,
    OrderReadDTO,
    PaymentWebhookDTO,
)

logger = logging.getLogger("orders")

PAYMENT_COMPLETED_EVENT = "checkout.session.completed"
MAX_PAGE_SIZE = 100

ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (PaymentNotEnabledError, status.HTTP_409_CONFLICT),
    (StoreUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def error_response(exc: OrderError) -> Response:
    """Render a domain error as ``{"detail": <code>}`` with its HTTP status."""
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), status.HTTP_400_BAD_REQUEST)
    if exc.code == "UNAUTHENTICATED":
        status_code = status.HTTP_401_UNAUTHORIZED
    body = {"detail": exc.code}
    if isinstance(exc, InvalidTransitionError):
        body.update(current=exc.current, target=exc.target)
    return Response(body, status=status_code)


def order_body(order) -> dict:
    return OrderReadDTO.from_order(order, providers.get_lifecycle()).model_dump(mode="json")


def _collection_body(collection) -> dict:
    return {"user_ref": collection.user_ref, "items": [e.to_document() for e in collection.items]}


def run_idempotent(request, principal, scope: str, produce):
    """Run ``produce`` at most once per caller and ``Idempotency-Key``.

    ``produce`` returns ``(response, order_ref)``. Without the header it
    simply runs. Domain errors raised by ``produce`` are stored like any
    other response so retries get the same answer.
    """
    key = request.headers.get("Idempotency-Key")
    if not key:
        return produce()[0]

    existing, rec = get_or_create_idempotent(principal.user_id, key, scope, request.data)
    if existing:
        if not rec.response_status:
            raise ConflictError("IDEMPOTENCY_IN_PROGRESS")
        resp = Response(rec.response_body, status=rec.response_status)
        resp["Idempotent-Replay"] = "true"
        return resp

    order_ref = None
    try:
        resp, order_ref = produce()
    except OrderError as exc:
        resp = error_response(exc)
    finalize(rec, resp.status_code, resp.data, order_ref=order_ref)
    return resp


class OrdersAPIView(APIView):
    """Base view mapping orders-core and DTO errors to HTTP responses."""

    throttle_classes = [ScopedRateThrottle]

    def handle_exception(self, exc):
        if isinstance(exc, OrderError):
            return error_response(exc)
        if isinstance(exc, PydanticValidationError):
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return super().handle_exception(exc)


class OrdersCollectionView(OrdersAPIView):
    """List the caller's orders or create a new one."""

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        """List orders newest first.

        Query params: ``scope`` (``self`` or ``all``; ``all`` is honoured
        for admins only), ``page`` and ``page_size``.
        """
        principal = require_principal(request)
        scope = request.GET.get("scope", "self")
        try:
            page_size = min(max(int(request.GET.get("page_size", 20)), 1), MAX_PAGE_SIZE)
        except ValueError:
            raise ValidationError("INVALID_PAGE_SIZE")

        orders = providers.get_order_service().list_orders(principal, scope=scope)
        p = Paginator(orders, page_size)
        page_obj = p.get_page(request.GET.get("page", 1))
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": [order_body(o) for o in page_obj.object_list],
            },
            status=200,
        )

    def post(self, request):
        """Create a new order from explicit line items.

        Returns:
            Response: One of the following responses.
            - 201 with the order when it is created.
            - The stored response, with ``Idempotent-Replay: true``, when
              the same idempotency key and payload are retried.
            - 409 ``IDEMPOTENCY_CONFLICT`` when a key is reused with a
              different payload.
            - 400 for DTO or domain validation errors.
            - 503 ``STORE_UNAVAILABLE`` when the store cannot be reached.
        """
        principal = require_principal(request)
        dto = CreateOrderDTO.model_validate(request.data)

        def produce():
            order = providers.get_order_service().create_order(
                principal, [i.to_domain() for i in dto.items], dto.customer.to_domain()
            )
            return Response(order_body(order), status=status.HTTP_201_CREATED), order.id

        return run_idempotent(request, principal, "orders", produce)


class OrderDetailView(OrdersAPIView):
    """Read an order (owner or admin) or apply an admin edit."""

    def get_throttles(self):
        self.throttle_scope = "orders_detail" if self.request.method == "GET" else "orders_update"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request, oid):
        principal = require_principal(request)
        order = providers.get_order_service().get_order(principal, str(oid))
        return Response(order_body(order), status=200)

    def put(self, request, oid):
        """Apply an admin edit.

        The body may carry ``status``, ``shipping_fee``, ``tax``, ``offer``,
        ``payment_enabled`` and the ``revision`` last seen. The response is
        the updated order plus ``changed_fields``; an edit that changes
        nothing returns the order as is with an empty list.
        """
        principal = require_principal(request)
        dto = OrderPatchDTO.model_validate(request.data)
        result = providers.get_order_service().apply_edit(
            principal, str(oid), dto.to_patch(), expected_revision=dto.revision
        )
        body = order_body(result.order)
        body["changed_fields"] = sorted(result.changes)
        return Response(body, status=200)


class OrderPaymentView(OrdersAPIView):
    """Start a payment session for one of the caller's orders."""

    throttle_scope = "orders_update"

    def post(self, request, oid):
        principal = require_principal(request)
        service = providers.get_order_service()
        try:
            session_id = service.start_payment(principal, str(oid), providers.get_payments())
        except (RuntimeError, httpx.HTTPError):
            logger.warning("payment session failed", extra={"order_id": str(oid)})
            return Response({"detail": "UPSTREAM_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return Response({"order_id": str(oid), "session_id": session_id}, status=status.HTTP_201_CREATED)


class PaymentWebhookView(OrdersAPIView):
    """Completion callback from the payments service.

    Authenticated with the shared ``X-Webhook-Secret`` header rather than a
    user principal. Events other than a completed session are acknowledged
    and ignored.
    """

    throttle_classes = []

    def post(self, request):
        secret = request.headers.get("X-Webhook-Secret", "")
        if not hmac.compare_digest(secret.encode("utf-8"), settings.PAYMENTS_WEBHOOK_SECRET.encode("utf-8")):
            return Response({"detail": "INVALID_SIGNATURE"}, status=status.HTTP_401_UNAUTHORIZED)

        event = PaymentWebhookDTO.model_validate(request.data)
        if event.type != PAYMENT_COMPLETED_EVENT:
            return Response({"received": True, "ignored": True}, status=200)

        order = providers.get_order_service().on_payment_completed(event.order_id)
        return Response({"received": True, "order_number": order.order_number, "status": order.status.value}, status=200)


class CheckoutView(OrdersAPIView):
    """Turn the caller's cart into an order."""

    throttle_scope = "orders_create"

    def post(self, request):
        """Create an order from the cart, then clear the cart.

        ``cart_cleared`` is false when the order was created but the cart
        could not be emptied; the client may retry ``DELETE /api/cart/``.
        """
        principal = require_principal(request)
        dto = CheckoutDTO.model_validate(request.data)

        def produce():
            result = providers.get_checkout_service().checkout(
                principal, dto.customer.to_domain(), dto.rental_unit, dto.rental_duration
            )
            body = {"order": order_body(result.order), "cart_cleared": result.cart_cleared}
            return Response(body, status=status.HTTP_201_CREATED), result.order.id

        return run_idempotent(request, principal, "checkout", produce)


class CartView(OrdersAPIView):
    throttle_scope = "carts"

    def get(self, request):
        principal = require_principal(request)
        return Response(_collection_body(providers.get_cart_service().get(principal.user_id)))

    def post(self, request):
        """Add one unit of a catalog product to the cart."""
        principal = require_principal(request)
        dto = CartItemIn.model_validate(request.data)
        cart = providers.get_cart_service().add_product(principal.user_id, dto.product_ref)
        return Response(_collection_body(cart), status=status.HTTP_200_OK)

    def delete(self, request):
        principal = require_principal(request)
        providers.get_cart_service().clear(principal.user_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CartItemView(OrdersAPIView):
    throttle_scope = "carts"

    def put(self, request, product_ref: str):
        """Change a line's quantity and/or switch it between purchase and rental."""
        principal = require_principal(request)
        dto = CartEntryPatchDTO.model_validate(request.data)
        carts = providers.get_cart_service()
        cart = None
        if dto.quantity is not None:
            cart = carts.set_quantity(principal.user_id, product_ref, dto.quantity)
        if dto.mode is not None:
            cart = carts.set_mode(principal.user_id, product_ref, dto.mode, dto.rental_unit, dto.rental_duration)
        return Response(_collection_body(cart))

    def delete(self, request, product_ref: str):
        principal = require_principal(request)
        cart = providers.get_cart_service().remove(principal.user_id, product_ref)
        return Response(_collection_body(cart))


class WishlistView(OrdersAPIView):
    throttle_scope = "carts"

    def get(self, request):
        principal = require_principal(request)
        return Response(_collection_body(providers.get_wishlist_service().get(principal.user_id)))

    def post(self, request):
        principal = require_principal(request)
        dto = CartItemIn.model_validate(request.data)
        wishlist = providers.get_wishlist_service().add_product(principal.user_id, dto.product_ref)
        return Response(_collection_body(wishlist))

    def delete(self, request):
        principal = require_principal(request)
        providers.get_wishlist_service().clear(principal.user_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class WishlistItemView(OrdersAPIView):
    throttle_scope = "carts"

    def delete(self, request, product_ref: str):
        principal = require_principal(request)
        wishlist = providers.get_wishlist_service().remove(principal.user_id, product_ref)
        return Response(_collection_body(wishlist))
