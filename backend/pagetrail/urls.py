"""
URL configuration for the pagetrail project.

The `urlpatterns` list routes URLs to views. For more information please see:
    https://docs.djangoproject.com/en/5.1/topics/http/urls/
"""

from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # Admin
    path("admin/", admin.site.urls),

    # Core API endpoints
    path("api/profiles/", include("users.api.urls")),
    path("api/pages/", include("page_history.api.urls")),
]

# Admin site customization
admin.site.site_header = "Pagetrail Admin"
admin.site.site_title = "Pagetrail Admin"
admin.site.index_title = "Page history and notifications"
