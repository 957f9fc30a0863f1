from django.contrib import admin
from .models import PageHistory


@admin.register(PageHistory)
class PageHistoryAdmin(admin.ModelAdmin):
    list_display = ("id", "event_type", "page", "user", "created_at", "single_sent_at", "digest_sent_at")
    list_filter = ("event_type", "created_at", "single_sent_at", "digest_sent_at")
    search_fields = ("page__title", "user__username", "user__email")
    raw_id_fields = ("page", "user")

    # history is append only
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
