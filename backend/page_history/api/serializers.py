from rest_framework import serializers
from page_history.models import PageHistory


class PageHistorySerializer(serializers.ModelSerializer):
    description_key = serializers.CharField(read_only=True)
    description_params = serializers.DictField(read_only=True)
    details_key = serializers.CharField(read_only=True, allow_null=True)

    class Meta:
        model = PageHistory
        fields = [
            "id",
            "user",
            "page",
            "event_type",
            "description_key",
            "description_params",
            "details_key",
            "details",
            "created_at",
        ]
        read_only_fields = ["id", "user", "page", "event_type", "details", "created_at"]
