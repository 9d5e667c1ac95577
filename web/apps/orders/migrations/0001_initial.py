import uuid
from decimal import Decimal

import django.core.serializers.json
import django.utils.timezone
from django.db import migrations, models


def money(**kwargs):
    return models.DecimalField(max_digits=20, decimal_places=8, **kwargs)


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(max_length=40, unique=True)),
                ("owner_user_ref", models.CharField(db_index=True, max_length=64)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("processing", "Processing"),
                            ("paid", "Paid"),
                            ("confirmed", "Confirmed"),
                            ("sent", "Sent"),
                            ("delivered", "Delivered"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="processing",
                        max_length=16,
                    ),
                ),
                ("payment_enabled", models.BooleanField(default=False)),
                ("items", models.JSONField(encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("customer", models.JSONField(encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("offer", models.JSONField(default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                (
                    "original_values",
                    models.JSONField(blank=True, null=True, encoder=django.core.serializers.json.DjangoJSONEncoder),
                ),
                ("subtotal", money()),
                ("tax", money()),
                ("shipping_fee", money()),
                ("total", money()),
                ("has_rental_items", models.BooleanField(default=False)),
                ("has_mixed_items", models.BooleanField(default=False)),
                ("revision", models.PositiveIntegerField(default=0)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={"db_table": "orders", "ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="ProductModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=200)),
                ("brand", models.CharField(blank=True, max_length=100, null=True)),
                ("price", money()),
                ("is_rentable", models.BooleanField(default=False)),
                ("hourly_rate", money(default=Decimal("0"))),
                ("daily_rate", money(default=Decimal("0"))),
                ("image", models.URLField(blank=True, max_length=500, null=True)),
            ],
            options={"db_table": "products"},
        ),
        migrations.CreateModel(
            name="CartModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_ref", models.CharField(max_length=64, unique=True)),
                ("items", models.JSONField(default=list, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"db_table": "carts"},
        ),
        migrations.CreateModel(
            name="WishlistModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_ref", models.CharField(max_length=64, unique=True)),
                ("items", models.JSONField(default=list, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"db_table": "wishlists"},
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_ref", models.CharField(max_length=64)),
                ("key", models.CharField(max_length=200)),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveSmallIntegerField(default=0)),
                (
                    "response_body",
                    models.JSONField(default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder),
                ),
                ("order_ref", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={"db_table": "idempotency_keys"},
        ),
        migrations.AddConstraint(
            model_name="idempotencykey",
            constraint=models.UniqueConstraint(fields=("user_ref", "key"), name="uniq_idempotency_user_key"),
        ),
    ]
