from rest_framework import serializers
from users.models import User


class NotificationPreferenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "username", "email", "receive_notifications"]
        read_only_fields = ["id", "username", "email"]
