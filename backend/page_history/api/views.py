from rest_framework import generics, permissions
from django.shortcuts import get_object_or_404

from page_history.selectors import histories_for_page, readable_pages
from .serializers import PageHistorySerializer


class PageHistoryList(generics.ListAPIView):
    """
    GET /api/pages/<page_id>/history/  -> newest first

    Pages the user cannot read answer 404, same as unknown ones.
    """
    serializer_class = PageHistorySerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        page = get_object_or_404(readable_pages(self.request.user), pk=self.kwargs["page_id"])
        return histories_for_page(page).prefetch_related("item")
