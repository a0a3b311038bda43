from typing import Dict, Iterable

from crm_activity.schemas.activity import Activity


def merge(*result_lists: Iterable[Activity]) -> Dict[str, Activity]:
    """Combine overlapping result lists into one collection keyed by id.

    Later lists win on id collision. Dict insertion order keeps the
    position of an id's first appearance, so output order depends only
    on argument order.
    """
    merged: Dict[str, Activity] = {}
    for items in result_lists:
        for item in items:
            merged[item.id] = item
    return merged
