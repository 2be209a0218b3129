"""Health endpoint: database reachability plus the reconciliation backlog."""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.checkout.idempotency import DjangoAttemptStore

logger = logging.getLogger(__name__)


def health_view(_request):
    db_ok = False
    backlog = {}
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        backlog = DjangoAttemptStore().backlog()
        db_ok = True
    except DatabaseError:
        logger.exception("health check: database unavailable")

    code = 200 if db_ok else 503
    return JsonResponse(
        {"ok": db_ok, "components": {"db": {"ok": db_ok}, "reconciliation": backlog}},
        status=code,
    )
