# pricewatch/serializers.py

from rest_framework import serializers

from pricewatch.models import Catalyst, StockAlertSettings, TriggeredAlert
from pricewatch.services.monitor.exceptions import InvalidSymbolError
from pricewatch.services.monitor.utils import normalize_symbol


class CatalystSerializer(serializers.ModelSerializer):
    class Meta:
        model = Catalyst
        fields = [
            "id",
            "title",
            "description",
            "ticker",
            "price_before",
            "price_after",
            "event_date",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_ticker(self, value):
        try:
            return normalize_symbol(value)
        except InvalidSymbolError as exc:
            raise serializers.ValidationError(str(exc))

    def validate_price_before(self, value):
        if value is not None and value <= 0:
            raise serializers.ValidationError("Reference price must be positive.")
        return value


class StockAlertSettingsSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockAlertSettings
        fields = [
            "id",
            "ticker",
            "tolerance_points",
            "minimum_move",
            "auto_create_alerts",
            "updated_at",
        ]
        read_only_fields = ["id", "updated_at"]

    def validate_ticker(self, value):
        try:
            return normalize_symbol(value)
        except InvalidSymbolError as exc:
            raise serializers.ValidationError(str(exc))

    def validate(self, attrs):
        for name in ("tolerance_points", "minimum_move"):
            value = attrs.get(name)
            if value is not None and value < 0:
                raise serializers.ValidationError({name: "Must be zero or greater."})
        return attrs


class TriggeredAlertSerializer(serializers.ModelSerializer):
    class Meta:
        model = TriggeredAlert
        fields = [
            "id",
            "catalyst",
            "catalyst_ref",
            "catalyst_title",
            "ticker",
            "price_before",
            "price_after",
            "current_price",
            "tolerance_points",
            "minimum_move",
            "triggered_at",
        ]
        read_only_fields = fields


class SymbolListSerializer(serializers.Serializer):
    symbols = serializers.ListField(
        child=serializers.CharField(max_length=32), allow_empty=False
    )
