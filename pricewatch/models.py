from django.conf import settings
from django.db import models

from catalysttracker import const

# Create your models here.


def _price_field(**kwargs):
    return models.DecimalField(
        max_digits=const.PRICE_MAX_DIGITS,
        decimal_places=const.PRICE_DECIMAL_PLACES,
        **kwargs,
    )


class Catalyst(models.Model):
    """A news/catalyst event whose reference price alerts are measured from"""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, blank=True, null=True
    )
    title = models.CharField(max_length=500)
    description = models.TextField(blank=True, null=True)
    ticker = models.CharField(max_length=15, db_index=True)

    # Price just before the news hit; baseline for move calculations
    price_before = _price_field(blank=True, null=True)
    # Price after the initial reaction, when recorded
    price_after = _price_field(blank=True, null=True)

    event_date = models.DateTimeField(blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["ticker", "is_active"], name="idx_catalyst_tkr_active"),
        ]
        ordering = ["-created_at"]

    def save(self, *args, **kwargs):
        self.ticker = (self.ticker or "").strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.ticker}: {self.title}"


class StockAlertSettings(models.Model):
    """Per-ticker alert thresholds"""

    ticker = models.CharField(max_length=15, unique=True)
    tolerance_points = _price_field(default=const.DEFAULT_TOLERANCE_POINTS)
    minimum_move = _price_field(default=const.DEFAULT_MINIMUM_MOVE)
    auto_create_alerts = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Stock Alert Settings"
        verbose_name_plural = "Stock Alert Settings"

    def save(self, *args, **kwargs):
        self.ticker = (self.ticker or "").strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return (
            f"{self.ticker} tolerance={self.tolerance_points} "
            f"minimum={self.minimum_move}"
        )


class TriggeredAlert(models.Model):
    """Durable record of an alert delivered by the price monitor"""

    catalyst = models.ForeignKey(
        Catalyst, on_delete=models.SET_NULL, blank=True, null=True
    )
    catalyst_ref = models.CharField(max_length=64)
    catalyst_title = models.CharField(max_length=500, blank=True, default="")
    ticker = models.CharField(max_length=15, db_index=True)
    price_before = _price_field()
    price_after = _price_field()
    current_price = _price_field()
    tolerance_points = _price_field()
    minimum_move = _price_field()
    triggered_at = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["ticker", "-triggered_at"], name="idx_alert_tkr_time_desc"),
        ]
        ordering = ["-triggered_at"]

    def __str__(self):
        return f"{self.ticker} {self.catalyst_ref} @ {self.current_price} ({self.triggered_at})"
