import decimal

import django.core.validators
import django.db.models.deletion
import uuid6
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Gem",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid6.uuid7,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=200)),
                (
                    "price",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        max_digits=12,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(
                                decimal.Decimal("0.00")
                            )
                        ],
                    ),
                ),
                ("contact_for_price", models.BooleanField(default=False)),
                (
                    "gst_category",
                    models.CharField(
                        blank=True,
                        choices=[
                            (
                                "rough_unworked",
                                "Rough/Unworked Precious & Semi-precious Stones",
                            ),
                            (
                                "cut_polished",
                                "Cut & Polished Loose Gemstones (excl. diamonds)",
                            ),
                            ("rough_diamonds", "Rough/Unpolished Diamonds"),
                            ("cut_diamonds", "Cut & Polished Loose Diamonds"),
                        ],
                        max_length=32,
                        null=True,
                    ),
                ),
                ("stock", models.PositiveIntegerField(default=1)),
                ("sales", models.PositiveIntegerField(default=0)),
                (
                    "seller",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="gems",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "gems",
                "ordering": ["name"],
                "indexes": [
                    models.Index(fields=["seller"], name="gems_seller_idx"),
                    models.Index(fields=["stock"], name="gems_stock_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(stock__gte=0),
                        name="gems_stock_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(sales__gte=0),
                        name="gems_sales_non_negative",
                    ),
                ],
            },
        ),
    ]
