from django.contrib import admin

from pricewatch.models import Catalyst, StockAlertSettings, TriggeredAlert

# Register your models here.


@admin.register(Catalyst)
class CatalystAdmin(admin.ModelAdmin):
    list_display = ["ticker", "title", "price_before", "price_after", "is_active", "created_at"]
    list_filter = ["is_active"]
    search_fields = ["ticker", "title"]


@admin.register(TriggeredAlert)
class TriggeredAlertAdmin(admin.ModelAdmin):
    list_display = ["ticker", "catalyst_ref", "current_price", "triggered_at"]
    search_fields = ["ticker", "catalyst_title"]
    readonly_fields = ["created_at"]


admin.site.register(StockAlertSettings)
