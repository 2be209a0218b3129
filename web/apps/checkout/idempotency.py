"""Database-backed checkout attempt store.

Checkout attempts double as idempotency records: one row per key, created
with a unique insert so two racing requests cannot both claim the same key.
Retries with the same payload get the stored attempt back (and through it
the stored response); reuse of a key with a different payload is a
conflict.
"""

from datetime import datetime
from typing import List, Optional

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from .domain import AttemptState, CheckoutAttempt, canonical_hash
from .errors import CheckoutConflict
from .models import CheckoutAttemptModel

STUCK_STATES = [
    AttemptState.VALIDATING.value,
    AttemptState.AWAITING_PAYMENT.value,
    AttemptState.VERIFYING.value,
    AttemptState.PERSISTING.value,
]
RESTARTABLE_STATES = [AttemptState.PAYMENT_FAILED.value, AttemptState.CANCELLED.value]


def _to_domain(rec: CheckoutAttemptModel) -> CheckoutAttempt:
    return CheckoutAttempt(
        key=rec.key,
        user_id=rec.user_id,
        request_hash=rec.request_hash,
        payment_method=rec.payment_method,
        state=AttemptState(rec.state),
        draft=rec.draft or {},
        intent_id=rec.intent_id,
        order_id=str(rec.order_id) if rec.order_id else None,
        response_status=rec.response_status,
        response_body=rec.response_body or {},
        failure_reason=rec.failure_reason,
        cart_cleared=rec.cart_cleared,
        generation=rec.generation,
        updated_at=rec.updated_at,
    )


class DjangoAttemptStore:
    """Attempt store persisting ``CheckoutAttempt`` rows with the Django ORM."""

    @transaction.atomic
    def get_or_create(self, key: str, user_id: str, payload: dict, payment_method: str) -> tuple:
        """Get-or-create the attempt for ``key``.

        The create path runs in a nested savepoint so an ``IntegrityError``
        from a racing insert only rolls back that block; the existing row is
        then read under ``SELECT ... FOR UPDATE``.

        Returns:
            tuple[bool, CheckoutAttempt]: ``(existing, attempt)``.

        Raises:
            CheckoutConflict: ``IDEMPOTENCY_CONFLICT`` when the key exists
                with a different payload.
        """
        h = canonical_hash(payload)
        try:
            with transaction.atomic():
                rec = CheckoutAttemptModel.objects.create(
                    key=key, user_id=user_id, request_hash=h, payment_method=payment_method
                )
                return False, _to_domain(rec)
        except IntegrityError:
            rec = CheckoutAttemptModel.objects.select_for_update().get(key=key)
            if rec.request_hash != h or rec.user_id != user_id:
                raise CheckoutConflict("IDEMPOTENCY_CONFLICT")
            return True, _to_domain(rec)

    def get_by_intent(self, intent_id: str) -> Optional[CheckoutAttempt]:
        rec = CheckoutAttemptModel.objects.filter(intent_id=intent_id).first()
        return _to_domain(rec) if rec else None

    def save(self, attempt: CheckoutAttempt) -> None:
        """Persist the mutable fields of ``attempt``."""
        attempt.updated_at = timezone.now()
        CheckoutAttemptModel.objects.filter(key=attempt.key).update(
            state=attempt.state.value,
            draft=attempt.draft,
            intent_id=attempt.intent_id,
            order_id=attempt.order_id,
            response_status=attempt.response_status,
            response_body=attempt.response_body,
            failure_reason=attempt.failure_reason,
            cart_cleared=attempt.cart_cleared,
            updated_at=attempt.updated_at,
        )

    def discard(self, attempt: CheckoutAttempt) -> None:
        CheckoutAttemptModel.objects.filter(key=attempt.key).delete()

    def restart(self, attempt: CheckoutAttempt) -> bool:
        # Conditional update: only one racing request wins the restart
        updated = CheckoutAttemptModel.objects.filter(key=attempt.key, state__in=RESTARTABLE_STATES).update(
            state=AttemptState.VALIDATING.value,
            generation=F("generation") + 1,
            intent_id=None,
            response_status=0,
            response_body={},
            failure_reason=None,
            updated_at=timezone.now(),
        )
        if not updated:
            return False
        fresh = _to_domain(CheckoutAttemptModel.objects.get(key=attempt.key))
        for name, value in vars(fresh).items():
            setattr(attempt, name, value)
        return True

    def pending_reconciliation(self, older_than: datetime) -> List[CheckoutAttempt]:
        unknown = CheckoutAttemptModel.objects.filter(state=AttemptState.UNKNOWN.value)
        stale = CheckoutAttemptModel.objects.filter(state__in=STUCK_STATES, updated_at__lte=older_than)
        return [_to_domain(rec) for rec in (unknown | stale).order_by("updated_at")]

    def pending_cart_clears(self) -> List[CheckoutAttempt]:
        qs = CheckoutAttemptModel.objects.filter(state=AttemptState.COMPLETED.value, cart_cleared=False)
        return [_to_domain(rec) for rec in qs.order_by("updated_at")]

    def backlog(self) -> dict:
        """Counts surfaced by the health endpoint."""
        return {
            "unknown_payments": CheckoutAttemptModel.objects.filter(state=AttemptState.UNKNOWN.value).count(),
            "pending_cart_clears": CheckoutAttemptModel.objects.filter(
                state=AttemptState.COMPLETED.value, cart_cleared=False
            ).count(),
        }
