# dx_core/common/api/pagination.py
from __future__ import annotations

from django.conf import settings
from rest_framework.pagination import PageNumberPagination


class PipelinePagination(PageNumberPagination):
    """
    Page size defaults to DX_PAGE_SIZE; clients may ask for up to 200 rows.
    """
    page_size_query_param = "page_size"
    max_page_size = 200

    def get_page_size(self, request):
        self.page_size = getattr(settings, "DX_PAGE_SIZE", 20)
        return super().get_page_size(request)
