from django.urls import path
from . import views

urlpatterns = [
    path(
        "me/notifications/",
        views.NotificationPreferenceDetail.as_view(),
        name="notification-preference",
    ),
]
