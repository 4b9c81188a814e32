from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardResultsSetPagination(PageNumberPagination):
    """Shared pagination behavior for list endpoints.

    Clients page with `?page=` and tune the page size with `?limit=`; values
    are capped to keep payload sizes predictable.
    """

    page_size = 10
    page_size_query_param = "limit"
    max_page_size = 200

    def get_paginated_response(self, data):
        return Response(
            {
                "count": self.page.paginator.count,
                "page": self.page.number,
                "limit": self.get_page_size(self.request),
                "next": self.get_next_link(),
                "previous": self.get_previous_link(),
                "results": data,
            }
        )


class LineItemResultsSetPagination(StandardResultsSetPagination):
    page_size = 50


def parse_page_params(query_params, *, default_limit=10, max_limit=200):
    """Read `page` / `limit` from query params for lists paginated in Python."""
    try:
        page = max(int(query_params.get("page", 1)), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(query_params.get("limit", default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    limit = min(max(limit, 1), max_limit)
    return page, limit
