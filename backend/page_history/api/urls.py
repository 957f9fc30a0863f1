from django.urls import path
from .views import PageHistoryList

urlpatterns = [
    path("<int:page_id>/history/", PageHistoryList.as_view(), name="page-history-list"),
]
