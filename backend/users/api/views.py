from rest_framework import generics, permissions

from users.api.serializers import NotificationPreferenceSerializer


class NotificationPreferenceDetail(generics.RetrieveUpdateAPIView):
    """
    GET   /api/profiles/me/notifications/
    PATCH /api/profiles/me/notifications/  {"receive_notifications": "digest"}
    """
    serializer_class = NotificationPreferenceSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self):
        return self.request.user

    def update(self, request, *args, **kwargs):
        kwargs["partial"] = True
        return super().update(request, *args, **kwargs)
