"""Read-side projections over the flat entry collection.

Nothing here mutates entries; every view can be recomputed from the same
snapshot with the same result.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from .models import Entry, EntryStatus, Reply


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"

    def toggled(self) -> "SortOrder":
        return SortOrder.DESC if self is SortOrder.ASC else SortOrder.ASC


@dataclass
class GroupedView:
    """Entries bucketed by group, then category, both alphabetical."""
    groups: "OrderedDict[str, OrderedDict[str, List[Entry]]]" = field(default_factory=OrderedDict)
    unsorted: List[Entry] = field(default_factory=list)

    def __len__(self) -> int:
        grouped = sum(len(items) for cats in self.groups.values() for items in cats.values())
        return grouped + len(self.unsorted)

    def to_dict(self) -> Dict:
        return {
            "groups": {
                group: {cat: [e.to_dict() for e in items] for cat, items in cats.items()}
                for group, cats in self.groups.items()
            },
            "unsorted": [e.to_dict() for e in self.unsorted]
        }


def thread_key(entry: Entry) -> str:
    """sessionId, else sessionRef, else the raw id."""
    return entry.session_id or entry.session_ref or entry.id


def matches(entry: Entry, query: Optional[str]) -> bool:
    if not query:
        return True
    return query.casefold() in entry.content.casefold()


def sort_entries(entries: Iterable[Entry], order: SortOrder) -> List[Entry]:
    return sorted(entries, key=lambda e: e.timestamp, reverse=order is SortOrder.DESC)


def resolve(
    entries: Sequence[Entry],
    root: Entry,
    query: Optional[str] = None,
    order: SortOrder = SortOrder.ASC
) -> List[Entry]:
    """Replies of a thread, excluding trash, filtered and sorted.

    Replies match on the root's thread key; legacy replies that point at the
    root's raw id are included too.
    """
    keys = {thread_key(root), root.id}
    replies = [
        e for e in entries
        if isinstance(e.role, Reply)
        and e.role.thread_key in keys
        and e.id != root.id
        and e.status is not EntryStatus.TRASH
        and matches(e, query)
    ]
    return sort_entries(replies, order)


def find_root(entries: Sequence[Entry], reference: str) -> Optional[Entry]:
    """Locate the anchor of a thread by entry id, thread key or one of its replies."""
    anchor = _anchor(entries, reference)
    if anchor is not None:
        return anchor
    for entry in entries:
        if entry.id == reference and entry.is_reply:
            return _anchor(entries, entry.session_ref)
    return None


def _anchor(entries: Sequence[Entry], reference: str) -> Optional[Entry]:
    for entry in entries:
        if entry.id == reference and not entry.is_reply:
            return entry
    for entry in entries:
        if not entry.is_reply and thread_key(entry) == reference:
            return entry
    return None


def roots(
    entries: Sequence[Entry],
    statuses: Iterable[EntryStatus] = (EntryStatus.ACTIVE,),
    query: Optional[str] = None,
    order: SortOrder = SortOrder.DESC
) -> List[Entry]:
    """Thread anchors with one of the given statuses."""
    wanted = set(statuses)
    selected = [
        e for e in entries
        if not e.is_reply and e.status in wanted and matches(e, query)
    ]
    return sort_entries(selected, order)


def group(entries: Iterable[Entry]) -> GroupedView:
    """Bucket entries by group then category; entries without a group are unsorted.

    Input order is kept inside each bucket.
    """
    buckets: Dict[str, Dict[str, List[Entry]]] = {}
    view = GroupedView()
    for entry in entries:
        if not entry.group:
            view.unsorted.append(entry)
            continue
        category = entry.category or ""
        buckets.setdefault(entry.group, {}).setdefault(category, []).append(entry)

    for group_name in sorted(buckets, key=str.casefold):
        cats = buckets[group_name]
        view.groups[group_name] = OrderedDict(
            (cat, cats[cat]) for cat in sorted(cats, key=str.casefold)
        )
    return view


class ThreadResolver:
    """Thread views over a snapshot of the local cache."""

    def thread(
        self,
        entries: Sequence[Entry],
        reference: str,
        query: Optional[str] = None,
        order: SortOrder = SortOrder.ASC
    ) -> Optional[Dict]:
        root = find_root(entries, reference)
        if root is None:
            return None
        replies = resolve(entries, root, query=query, order=order)
        return {"root": root, "replies": replies, "grouped": group(replies), "order": order}

    def context_list(
        self,
        entries: Sequence[Entry],
        statuses: Iterable[EntryStatus] = (EntryStatus.ACTIVE,),
        query: Optional[str] = None,
        order: SortOrder = SortOrder.DESC
    ) -> GroupedView:
        return group(roots(entries, statuses=statuses, query=query, order=order))
