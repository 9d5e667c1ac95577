"""Gateway middleware: request ids, trusted caller identity and size limits.

Every incoming HTTP request receives a request identifier. It is read
from the incoming ``X-Request-Id`` header when provided by the client, or
generated server-side otherwise. The id is stored on the ``request``
object and in a context variable so code running downstream (log filters,
outbound HTTP clients) can access it without passing the value explicitly.

Credentials are verified by the edge proxy in front of this service; it
forwards the authenticated caller as ``X-User-Id`` and ``X-User-Admin``.
``TrustedPrincipalMiddleware`` copies those onto the request for the
orders app to build its principal from.

Behavior contract:
- If the incoming request contains the ``X-Request-Id`` header, that value
  is reused as the request id.
- Otherwise a new UUIDv4 is generated.
- The response will include the same id in the ``X-Request-ID`` header.
"""

import contextvars
import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
USER_REF_CTX = contextvars.ContextVar("user_ref", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

TRUTHY = {"1", "true", "yes"}


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The name of the incoming HTTP header (in Django's
            ``request.META`` casing) that may contain a client-provided id.
        RESPONSE_HEADER (str): The name of the header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"       # incoming header as found in request.META
    RESPONSE_HEADER = "X-Request-ID"   # header to add to outgoing responses

    def process_request(self, request):
        """Populate the request with a request id and set the context var."""
        rid = request.META.get(self.HEADER)
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Ensure the response carries the request id header.

        Prefers the id attached to the request object and falls back to the
        ContextVar value (for example in some error handlers).
        """
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        return response


class TrustedPrincipalMiddleware(MiddlewareMixin):
    """Expose the caller forwarded by the edge proxy.

    Sets ``request.user_ref`` (None when the header is absent) and
    ``request.is_admin``, and records the user in ``USER_REF_CTX`` for
    log correlation.
    """

    USER_HEADER = "HTTP_X_USER_ID"
    ADMIN_HEADER = "HTTP_X_USER_ADMIN"

    def process_request(self, request):
        user_ref = (request.META.get(self.USER_HEADER) or "").strip() or None
        request.user_ref = user_ref
        request.is_admin = bool(user_ref) and request.META.get(self.ADMIN_HEADER, "").lower() in TRUTHY
        USER_REF_CTX.set(user_ref or "-")


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
