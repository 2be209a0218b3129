from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CheckoutAttemptModel",
            fields=[
                ("key", models.CharField(max_length=200, primary_key=True, serialize=False)),
                ("user_id", models.CharField(db_index=True, max_length=64)),
                ("request_hash", models.CharField(max_length=64)),
                ("payment_method", models.CharField(max_length=16)),
                (
                    "state",
                    models.CharField(
                        choices=[
                            ("validating", "Validating"),
                            ("awaiting_payment", "Awaiting Payment"),
                            ("verifying", "Verifying"),
                            ("unknown", "Unknown"),
                            ("persisting", "Persisting"),
                            ("completed", "Completed"),
                            ("payment_failed", "Payment Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="validating",
                        max_length=32,
                    ),
                ),
                ("draft", models.JSONField(default=dict)),
                ("intent_id", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("order_id", models.UUIDField(blank=True, null=True)),
                ("response_status", models.PositiveSmallIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("failure_reason", models.CharField(blank=True, max_length=64, null=True)),
                ("cart_cleared", models.BooleanField(default=True)),
                ("generation", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "checkout_attempts",
                "indexes": [models.Index(fields=["state", "updated_at"], name="checkout_state_updated_idx")],
            },
        ),
        migrations.CreateModel(
            name="CouponModel",
            fields=[
                ("code", models.CharField(max_length=32, primary_key=True, serialize=False)),
                (
                    "type",
                    models.CharField(
                        choices=[("percentage", "Percentage"), ("fixed", "Fixed")],
                        max_length=16,
                    ),
                ),
                ("value", models.PositiveIntegerField()),
                ("max_discount_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("min_order_cents", models.PositiveIntegerField(default=0)),
                ("expires_at", models.DateTimeField()),
                ("is_active", models.BooleanField(default=True)),
                ("usage_limit", models.PositiveIntegerField(blank=True, null=True)),
                ("usage_count", models.PositiveIntegerField(default=0)),
                ("per_user_limit", models.PositiveIntegerField(default=1)),
                ("stackable", models.BooleanField(default=True)),
                ("applicable_product_ids", models.JSONField(blank=True, default=list)),
                ("allowed_user_ids", models.JSONField(blank=True, default=list)),
                ("restricted_user_ids", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "coupons",
            },
        ),
    ]
