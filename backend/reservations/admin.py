from django.contrib import admin

from .models import AppliedGatewayEvent, BookedDay, Reservation


class AppliedGatewayEventInline(admin.TabularInline):
    model = AppliedGatewayEvent
    extra = 0
    can_delete = False
    readonly_fields = ("gateway_event_id", "created_at")


@admin.register(Reservation)
class ReservationAdmin(admin.ModelAdmin):
    """Read-only view; state changes must go through the reservation engine."""

    list_display = ("id", "item_id", "renter_uid", "start_date", "end_date", "status", "total")
    list_filter = ("status", "is_free", "start_date")
    search_fields = ("id", "item_id", "renter_uid", "item_owner_uid", "payment_reference")
    inlines = (AppliedGatewayEventInline,)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(BookedDay)
class BookedDayAdmin(admin.ModelAdmin):
    list_display = ("item_id", "day", "reservation_id")
    list_filter = ("day",)
    search_fields = ("item_id", "reservation_id")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
