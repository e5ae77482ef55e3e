"""Tests for thread resolution and grouped views."""

import pytest

from ahacapture.engine.models import EntryStatus
from ahacapture.engine.threads import (
    SortOrder,
    ThreadResolver,
    find_root,
    group,
    resolve,
    roots,
)

from .conftest import NOW, make_entry


@pytest.fixture
def thread_entries():
    return [
        make_entry("root", session_id="T1", note="Topic", timestamp=NOW),
        make_entry("c1", session_ref="T1", content="alpha", timestamp=NOW + 1),
        make_entry("c2", session_ref="T1", content="beta", timestamp=NOW + 2),
        make_entry("c3", session_ref="T1", content="gamma", timestamp=NOW + 3,
                   status=EntryStatus.TRASH, deleted_at=NOW + 10),
        make_entry("other", session_ref="T2", timestamp=NOW + 4),
    ]


def test_resolve_excludes_trash_in_both_orders(thread_entries):
    root = thread_entries[0]

    asc = resolve(thread_entries, root, order=SortOrder.ASC)
    desc = resolve(thread_entries, root, order=SortOrder.DESC)

    assert [e.id for e in asc] == ["c1", "c2"]
    assert [e.id for e in desc] == ["c2", "c1"]


def test_resolve_query_is_case_insensitive(thread_entries):
    replies = resolve(thread_entries, thread_entries[0], query="BET")
    assert [e.id for e in replies] == ["c2"]


def test_resolve_includes_done_replies(thread_entries):
    entries = thread_entries + [
        make_entry("c4", session_ref="T1", status=EntryStatus.DONE, timestamp=NOW + 5)
    ]
    assert [e.id for e in resolve(entries, entries[0])] == ["c1", "c2", "c4"]


def test_legacy_replies_pointing_at_raw_id():
    entries = [
        make_entry("legacy", timestamp=NOW),
        make_entry("r1", session_ref="legacy", timestamp=NOW + 1),
    ]
    assert [e.id for e in resolve(entries, entries[0])] == ["r1"]


def test_find_root_by_id_key_or_reply(thread_entries):
    assert find_root(thread_entries, "root").id == "root"
    assert find_root(thread_entries, "T1").id == "root"
    assert find_root(thread_entries, "c2").id == "root"
    assert find_root(thread_entries, "nothing") is None
    # Reply whose root is not cached
    assert find_root(thread_entries, "other") is None


def test_sort_order_toggles():
    assert SortOrder.ASC.toggled() is SortOrder.DESC
    assert SortOrder.DESC.toggled() is SortOrder.ASC


def test_group_alphabetical_with_unsorted_bucket():
    entries = [
        make_entry("a", group="work", category="Zeta"),
        make_entry("b", group="Home", category="chores"),
        make_entry("c", group="work", category="alpha"),
        make_entry("d", group=None, category=None),
    ]

    view = group(entries)

    assert list(view.groups) == ["Home", "work"]
    assert list(view.groups["work"]) == ["alpha", "Zeta"]
    assert [e.id for e in view.unsorted] == ["d"]
    assert len(view) == 4
    assert view.to_dict()["unsorted"][0]["id"] == "d"


def test_roots_filter_status_and_skip_replies(thread_entries):
    entries = thread_entries + [
        make_entry("done_root", session_id="T3", status=EntryStatus.DONE, timestamp=NOW + 7),
        make_entry("legacy", timestamp=NOW + 8),
    ]

    active = roots(entries)
    assert [e.id for e in active] == ["legacy", "root"]

    both = roots(entries, statuses=[EntryStatus.ACTIVE, EntryStatus.DONE], order=SortOrder.ASC)
    assert [e.id for e in both] == ["root", "done_root", "legacy"]


def test_resolver_thread_view(thread_entries):
    view = ThreadResolver().thread(thread_entries, "c1", order=SortOrder.DESC)

    assert view["root"].id == "root"
    assert [e.id for e in view["replies"]] == ["c2", "c1"]
    assert len(view["grouped"]) == 2
    assert view["order"] is SortOrder.DESC

    assert ThreadResolver().thread(thread_entries, "missing") is None


def test_resolver_context_list(thread_entries):
    view = ThreadResolver().context_list(thread_entries, query="content of root")
    assert [e.id for e in view.groups["Work"]["Ideas"]] == ["root"]


def test_projections_do_not_mutate(thread_entries):
    before = list(thread_entries)
    resolve(thread_entries, thread_entries[0], order=SortOrder.DESC)
    group(thread_entries)
    assert thread_entries == before
