from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import circuit_states


def health_view(_request):
    """Report database reachability and downstream circuit breaker states.

    Only the database decides the HTTP status; an open circuit means a
    collaborator is degraded, which the orders core tolerates.
    """
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        db_ok = False

    circuits = circuit_states()
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                **{name: {"ok": state != "OPEN", "circuit": state} for name, state in circuits.items()},
            },
        },
        status=code,
    )
