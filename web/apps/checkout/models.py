from django.db import models


class CheckoutAttemptModel(models.Model):
    # Idempotency key (client supplied or derived)
    key = models.CharField(max_length=200, primary_key=True)
    user_id = models.CharField(max_length=64, db_index=True)
    request_hash = models.CharField(max_length=64)
    payment_method = models.CharField(max_length=16)

    class State(models.TextChoices):
        VALIDATING = "validating"
        AWAITING_PAYMENT = "awaiting_payment"
        VERIFYING = "verifying"
        UNKNOWN = "unknown"
        PERSISTING = "persisting"
        COMPLETED = "completed"
        PAYMENT_FAILED = "payment_failed"
        CANCELLED = "cancelled"

    state = models.CharField(max_length=32, choices=State.choices, default=State.VALIDATING)
    # Priced order draft carried between the two legs of an online payment
    draft = models.JSONField(default=dict)
    intent_id = models.CharField(max_length=64, null=True, blank=True, unique=True)
    order_id = models.UUIDField(null=True, blank=True)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    failure_reason = models.CharField(max_length=64, null=True, blank=True)
    cart_cleared = models.BooleanField(default=True)
    generation = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "checkout_attempts"
        indexes = [models.Index(fields=["state", "updated_at"], name="checkout_state_updated_idx")]


class CouponModel(models.Model):
    class Type(models.TextChoices):
        PERCENTAGE = "percentage"
        FIXED = "fixed"

    code = models.CharField(max_length=32, primary_key=True)
    type = models.CharField(max_length=16, choices=Type.choices)
    # Percent for percentage coupons, minor units for fixed ones
    value = models.PositiveIntegerField()
    max_discount_cents = models.PositiveIntegerField(null=True, blank=True)
    min_order_cents = models.PositiveIntegerField(default=0)
    expires_at = models.DateTimeField()
    is_active = models.BooleanField(default=True)
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    usage_count = models.PositiveIntegerField(default=0)
    per_user_limit = models.PositiveIntegerField(default=1)
    stackable = models.BooleanField(default=True)
    applicable_product_ids = models.JSONField(default=list, blank=True)
    allowed_user_ids = models.JSONField(default=list, blank=True)
    restricted_user_ids = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "coupons"

    def save(self, *args, **kwargs):
        # Codes are matched case-insensitively
        self.code = self.code.strip().upper()
        super().save(*args, **kwargs)
