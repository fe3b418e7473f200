# ================================================================
# File     : scope.py
# Purpose  : Resolve a Conditional Access rule set to the exact set
#            of users currently in scope
#            - include users ("All" or explicit ids) + include groups
#            - then exclude users + exclude groups
#            - group lookups fail soft (zero members + warning)
# Notes    : Exclusions are applied strictly after all inclusions,
#            so an id both included and excluded ends up excluded.
#            Directory roles are not evaluated.
# ================================================================

import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from core.models import AllPrincipals, DirectoryIndex, Policy
from core.utils import fncPrintMessage

MemberLookup = Callable[[str], Iterable[str]]


class GroupMemberLookup:
    """
    Bounded, de-duplicating wrapper around a group member fetcher.

    Each group id is fetched at most once per run on a small worker pool;
    callers wait at most `timeout` seconds. Timeouts and fetch errors
    degrade to an empty member set, are recorded in `failures`, and the
    group stays empty for every later caller in the run.
    """

    def __init__(self, fetch: MemberLookup, max_workers: int = 4, timeout: Optional[float] = 60.0):
        self._fetch = fetch
        self._pool = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="grp")
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self.timeout = timeout
        self.failures: Dict[str, str] = {}

    def _submit(self, group_id: str) -> Future:
        with self._lock:
            fut = self._futures.get(group_id)
            if fut is None:
                fut = self._pool.submit(lambda: frozenset(self._fetch(group_id) or ()))
                self._futures[group_id] = fut
            return fut

    def __call__(self, group_id: str) -> FrozenSet[str]:
        # A failed group stays empty for the rest of the run
        with self._lock:
            if group_id in self.failures:
                return frozenset()
        fut = self._submit(group_id)
        try:
            return fut.result(timeout=self.timeout)
        except FuturesTimeout:
            self._fail(group_id, f"timed out after {self.timeout}s")
        except Exception as ex:
            self._fail(group_id, str(ex))
        return frozenset()

    def _fail(self, group_id: str, why: str) -> None:
        with self._lock:
            first = group_id not in self.failures
            self.failures.setdefault(group_id, why)
        if first:
            fncPrintMessage(f"Group {group_id} membership lookup failed ({why}); contributing no members.", "warn")

    def close(self) -> None:
        # Abandoned lookups are left to finish in the background
        self._pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def _group_members(group_id: str, lookup: MemberLookup, directory: DirectoryIndex,
                   failed: List[str]) -> FrozenSet[str]:
    try:
        members = lookup(group_id)
    except Exception as ex:
        fncPrintMessage(f"Group {group_id} membership lookup failed ({ex}); contributing no members.", "warn")
        failed.append(group_id)
        return frozenset()
    if isinstance(lookup, GroupMemberLookup) and group_id in lookup.failures:
        failed.append(group_id)
    return directory.known(members or ())


# ================================================================
# Function: fncResolveScopeDetailed
# Purpose : Resolve one policy; also return groups whose lookup failed
# ================================================================
def fncResolveScopeDetailed(policy: Policy, directory: DirectoryIndex,
                            lookup: MemberLookup) -> Tuple[FrozenSet[str], List[str]]:
    rules = policy.rules
    failed: List[str] = []
    working: Set[str] = set()

    # Inclusions
    if isinstance(rules.include_principals, AllPrincipals):
        working |= directory.ids
    else:
        working |= directory.known(rules.include_principals.ids)

    for gid in sorted(rules.include_groups):
        working |= _group_members(gid, lookup, directory, failed)

    # Exclusions, strictly after every inclusion
    working -= directory.known(rules.exclude_principals)

    for gid in sorted(rules.exclude_groups):
        working -= _group_members(gid, lookup, directory, failed)

    if rules.has_roles:
        fncPrintMessage(
            f"Policy '{policy.label}' targets {len(rules.include_roles)} included / "
            f"{len(rules.exclude_roles)} excluded directory role(s); roles are not evaluated, "
            "scope may be undercounted.",
            "warn",
        )

    fncPrintMessage(f"Policy '{policy.label}' resolved to {len(working)} principal(s)", "debug")
    return frozenset(working), failed


# ================================================================
# Function: fncResolveScope
# Purpose : Set of principal ids currently in scope of `policy`
# Notes   : Deterministic for a fixed snapshot and lookup results
# ================================================================
def fncResolveScope(policy: Policy, directory: DirectoryIndex, lookup: MemberLookup) -> FrozenSet[str]:
    scope, _ = fncResolveScopeDetailed(policy, directory, lookup)
    return scope
