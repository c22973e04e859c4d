from decimal import Decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Catalyst",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=500)),
                ("description", models.TextField(blank=True, null=True)),
                ("ticker", models.CharField(db_index=True, max_length=15)),
                ("price_before", models.DecimalField(blank=True, decimal_places=4, max_digits=14, null=True)),
                ("price_after", models.DecimalField(blank=True, decimal_places=4, max_digits=14, null=True)),
                ("event_date", models.DateTimeField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["ticker", "is_active"], name="idx_catalyst_tkr_active"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockAlertSettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("ticker", models.CharField(max_length=15, unique=True)),
                ("tolerance_points", models.DecimalField(decimal_places=4, default=Decimal("2.0"), max_digits=14)),
                ("minimum_move", models.DecimalField(decimal_places=4, default=Decimal("10.0"), max_digits=14)),
                ("auto_create_alerts", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Stock Alert Settings",
                "verbose_name_plural": "Stock Alert Settings",
            },
        ),
        migrations.CreateModel(
            name="TriggeredAlert",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("catalyst_ref", models.CharField(max_length=64)),
                ("catalyst_title", models.CharField(blank=True, default="", max_length=500)),
                ("ticker", models.CharField(db_index=True, max_length=15)),
                ("price_before", models.DecimalField(decimal_places=4, max_digits=14)),
                ("price_after", models.DecimalField(decimal_places=4, max_digits=14)),
                ("current_price", models.DecimalField(decimal_places=4, max_digits=14)),
                ("tolerance_points", models.DecimalField(decimal_places=4, max_digits=14)),
                ("minimum_move", models.DecimalField(decimal_places=4, max_digits=14)),
                ("triggered_at", models.DateTimeField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "catalyst",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to="pricewatch.catalyst",
                    ),
                ),
            ],
            options={
                "ordering": ["-triggered_at"],
                "indexes": [
                    models.Index(fields=["ticker", "-triggered_at"], name="idx_alert_tkr_time_desc"),
                ],
            },
        ),
    ]
