import math
from typing import Tuple

from schemas import Pagination


def window(page: int, limit: int) -> Tuple[int, int]:
    """(skip, limit) for a 1-based page. Skipping past the end is allowed."""
    return (page - 1) * limit, limit


def paginate(page: int, limit: int, total: int) -> Pagination:
    """Page metadata for a count; consistent for any page, including over-paging."""
    total_pages = math.ceil(total / limit) if total > 0 else 0
    return Pagination(
        current_page=page,
        total_pages=total_pages,
        total_products=total,
        has_next_page=page < total_pages,
        # an empty result has no neighbouring pages at all
        has_prev_page=page > 1 and total_pages > 0,
        limit=limit,
    )
