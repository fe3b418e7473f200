"""Tests for the bounded, de-duplicating group member lookup."""

from __future__ import annotations

import threading

from core.models import DirectoryIndex
from core.scope import GroupMemberLookup, fncResolveScopeDetailed

from fakes import FakeGroups, policy, principal


def test_members_are_returned_as_frozenset() -> None:
    with GroupMemberLookup(FakeGroups({"g": ["a", "b", "a"]})) as lookup:
        assert lookup("g") == frozenset({"a", "b"})
        assert lookup.failures == {}


def test_each_group_fetched_once() -> None:
    groups = FakeGroups({"g": ["a"]})
    with GroupMemberLookup(groups, max_workers=3) as lookup:
        for _ in range(5):
            lookup("g")
    assert groups.calls == ["g"]


def test_error_degrades_to_empty_and_is_recorded(capsys) -> None:
    with GroupMemberLookup(FakeGroups(broken=["g"])) as lookup:
        assert lookup("g") == frozenset()
        assert lookup("g") == frozenset()
    assert "unreachable" in lookup.failures["g"]
    # warned once even though asked twice
    assert capsys.readouterr().out.count("membership lookup failed") == 1


def test_timeout_degrades_to_empty() -> None:
    release = threading.Event()

    def slow(group_id):
        release.wait(5)
        return ["late"]

    lookup = GroupMemberLookup(slow, max_workers=1, timeout=0.05)
    try:
        assert lookup("g") == frozenset()
        assert "timed out" in lookup.failures["g"]
    finally:
        release.set()
        lookup.close()


def test_none_result_is_treated_as_no_members() -> None:
    with GroupMemberLookup(lambda gid: None) as lookup:
        assert lookup("g") == frozenset()
        assert lookup.failures == {}


def test_timed_out_group_stays_empty_after_fetch_finishes() -> None:
    release = threading.Event()
    finished = threading.Event()

    def slow(group_id):
        release.wait(5)
        finished.set()
        return ["late"]

    lookup = GroupMemberLookup(slow, max_workers=1, timeout=0.05)
    try:
        assert lookup("g") == frozenset()
        release.set()
        assert finished.wait(5)
        # later callers see the same empty set, not the late members
        assert lookup("g") == frozenset()
        assert "timed out" in lookup.failures["g"]
    finally:
        lookup.close()


def test_timed_out_group_is_consistent_across_policies() -> None:
    release = threading.Event()
    finished = threading.Event()

    def slow(group_id):
        release.wait(5)
        finished.set()
        return ["A", "B"]

    index = DirectoryIndex([principal("A"), principal("B")])
    lookup = GroupMemberLookup(slow, max_workers=1, timeout=0.05)
    try:
        first, failed_first = fncResolveScopeDetailed(policy("p1", include_groups=["G"]), index, lookup)
        release.set()
        assert finished.wait(5)
        second, failed_second = fncResolveScopeDetailed(
            policy("p2", include=["A"], include_groups=["G"]), index, lookup)
    finally:
        lookup.close()

    assert first == frozenset()
    assert second == frozenset({"A"})
    assert failed_first == failed_second == ["G"]
