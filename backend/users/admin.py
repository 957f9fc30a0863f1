from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User, Group


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ["username", "email", "receive_notifications", "is_staff"]
    list_filter = BaseUserAdmin.list_filter + ("receive_notifications",)
    fieldsets = BaseUserAdmin.fieldsets + (
        ("Notifications", {"fields": ("receive_notifications",)}),
    )


@admin.register(Group)
class GroupAdmin(admin.ModelAdmin):
    list_display = ["name", "full_name", "created_at"]
    search_fields = ["name", "full_name"]
