import uuid
from django.db import models, transaction

from .domain import format_order_number


class OrderModel(models.Model):
    # UUID PK exposed through the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal incremental counter; the order number is derived from it
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)
    order_number = models.CharField(max_length=20, unique=True, editable=False)

    # Checkout token the order was created under: one order per key
    idempotency_key = models.CharField(max_length=200, unique=True)
    user_id = models.CharField(max_length=64, db_index=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        PROCESSING = "processing"
        SHIPPED = "shipped"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending"
        PAID = "paid"
        FAILED = "failed"
        REFUNDED = "refunded"

    class PaymentMethod(models.TextChoices):
        RAZORPAY = "razorpay"
        COD = "cod"

    order_status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices)

    # Frozen at creation
    items = models.JSONField(default=list)
    subtotal_cents = models.PositiveIntegerField(default=0)
    shipping_cents = models.PositiveIntegerField(default=0)
    tax_cents = models.PositiveIntegerField(default=0)
    total_discount_cents = models.PositiveIntegerField(default=0)
    total_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="INR")
    applied_coupons = models.JSONField(default=list, blank=True)
    shipping_address = models.JSONField(default=dict)
    billing_address = models.JSONField(default=dict)
    customer_info = models.JSONField(default=dict)

    payment_details = models.JSONField(default=dict, blank=True)
    notes = models.TextField(blank=True, default="")
    tracking_number = models.CharField(max_length=64, null=True, blank=True)
    estimated_delivery = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]
        indexes = [models.Index(fields=["user_id", "-created_at"], name="orders_user_created_idx")]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` and the order number only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last or last.internal_id is None else last.internal_id + 1
                self.order_number = format_order_number(self.internal_id)
                super().save(*args, **kwargs)
            return

        super().save(*args, **kwargs)
