"""
Sort strategy resolver.
"""
from typing import List, NamedTuple, Optional

ASCENDING = 1
DESCENDING = -1

# pseudo-field for the store-computed text relevance
RELEVANCE = "score"

DEFAULT_SORT = "newest"


class SortKey(NamedTuple):
    field: str
    direction: int


SORT_KEYS = {
    "newest": [SortKey("createdAt", DESCENDING)],
    "oldest": [SortKey("createdAt", ASCENDING)],
    "price-low": [SortKey("price", ASCENDING)],
    "price-high": [SortKey("price", DESCENDING)],
    "popular": [SortKey("stats.sales", DESCENDING), SortKey("stats.views", DESCENDING)],
    "rating": [SortKey("stats.rating.average", DESCENDING), SortKey("stats.rating.count", DESCENDING)],
}

# final tiebreaker so every ordering is total
TIEBREAKER = SortKey("_id", DESCENDING)


def resolve_sort(sort: Optional[str] = None, search: Optional[str] = None) -> List[SortKey]:
    """Ordered sort criteria for a sort key.

    With a search term the relevance score leads and the resolved key breaks ties.
    """
    keys = list(SORT_KEYS.get(sort or DEFAULT_SORT, SORT_KEYS[DEFAULT_SORT]))
    if search:
        keys.insert(0, SortKey(RELEVANCE, DESCENDING))
    keys.append(TIEBREAKER)
    return keys
