"""Validation and normalisation of search requests.

Every check here runs before a connection is acquired, so a rejected request never
reaches the database.
"""
from __future__ import annotations

from ..errors import LimitTooHigh, UnsupportedGroup, UnsupportedSortParam
from ..schemas import DEFAULT_LIMIT, MAX_LIMIT, GroupKey, SearchParams, SortKey

_SORT_KEYS = {key.value for key in SortKey}
_GROUP_KEYS = {key.value for key in GroupKey}


def prepare_search_params(params: SearchParams) -> SearchParams:
    """Return a validated copy of ``params`` with defaults applied.

    - ``limit`` of 0 (or less) becomes the default page size, above 100 is rejected
    - a legacy leading ``-`` on ``order_by`` is dropped
    - an empty ``order_by`` sorts by relevance when there is a text query, by
      sequence number otherwise
    - ``group_by`` must name a groupable field and cannot be combined with
      ``only_count``
    """

    limit = params.limit
    if limit > MAX_LIMIT:
        raise LimitTooHigh()
    if limit <= 0:
        limit = DEFAULT_LIMIT

    order_by = params.order_by.strip().removeprefix("-")
    if not order_by:
        order_by = SortKey.SEARCH_RANK.value if params.search_query else SortKey.SEQUENCE_ID.value
    if order_by not in _SORT_KEYS:
        raise UnsupportedSortParam(order_by)

    group_by = params.group_by.strip()
    if group_by:
        if group_by not in _GROUP_KEYS:
            raise UnsupportedGroup()
        if params.only_count:
            raise UnsupportedGroup("grouping cannot be combined with only_count")

    return params.model_copy(
        update={
            "limit": limit,
            "offset": max(params.offset, 0),
            "order_by": order_by,
            "group_by": group_by,
        }
    )
