from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from curriculum_sync.domain.exceptions import SchemaDriftError
from curriculum_sync.domain.interfaces import (
    IAggregateSaver,
    INotificationSink,
    IRemoteStore,
    ISubscription,
    IUserAccountService,
)
from curriculum_sync.domain.schemas import Course, Lesson, Module, Quiz, Stage, Walkthrough
from curriculum_sync.services.curriculum.store import CurriculumStore


def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            if row.get(column) not in value:
                return False
        elif row.get(column) != value:
            return False
    return True


class FakeSubscription(ISubscription):
    def __init__(self, remote: "FakeRemoteStore", table: str):
        self.remote = remote
        self.table = table
        self.active = True

    async def unsubscribe(self) -> None:
        self.active = False


class FakeRemoteStore(IRemoteStore):
    """
    In-memory tables with call recording, queued failures and simulated
    missing columns (schema drift).
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.calls: List[Tuple[str, str, Any]] = []
        self.missing_columns: Dict[str, Set[str]] = defaultdict(set)
        self.listeners: Dict[str, Callable[[Dict[str, Any]], Any]] = {}
        self.subscriptions: List[FakeSubscription] = []
        self._failures: List[Tuple[str, Optional[str], Exception]] = []

    # --- test controls ---

    def seed(self, table: str, *rows: Dict[str, Any]) -> None:
        self.tables[table].extend(dict(row) for row in rows)

    def fail_next(self, operation: str, table: Optional[str], exc: Exception) -> None:
        self._failures.append((operation, table, exc))

    def calls_for(self, operation: str, table: Optional[str] = None) -> List[Any]:
        return [
            payload
            for op, tbl, payload in self.calls
            if op == operation and (table is None or tbl == table)
        ]

    def _record(self, operation: str, table: str, payload: Any) -> None:
        self.calls.append((operation, table, payload))
        for index, (op, tbl, exc) in enumerate(self._failures):
            if op == operation and (tbl is None or tbl == table):
                del self._failures[index]
                raise exc

    def _check_columns(self, table: str, rows: Sequence[Dict[str, Any]]) -> None:
        for row in rows:
            for column in row:
                if column in self.missing_columns[table]:
                    raise SchemaDriftError(
                        f"Could not find the '{column}' column of '{table}' in the schema cache",
                        column=column,
                        table=table,
                        code="PGRST204",
                    )

    # --- IRemoteStore ---

    async def select(self, table, filters=None, columns="*", limit=None):
        self._record("select", table, {"filters": filters, "columns": columns})
        if columns != "*":
            self._check_columns(table, [{c.strip(): None for c in columns.split(",")}])
        rows = [dict(row) for row in self.tables[table] if _matches(row, filters)]
        return rows[:limit] if limit is not None else rows

    async def insert(self, table, rows):
        rows = [dict(row) for row in rows]
        self._record("insert", table, rows)
        self._check_columns(table, rows)
        self.tables[table].extend(dict(row) for row in rows)
        return rows

    async def update(self, table, patch, filters):
        self._record("update", table, {"patch": dict(patch), "filters": filters})
        self._check_columns(table, [patch])
        for row in self.tables[table]:
            if _matches(row, filters):
                row.update(patch)

    async def upsert(self, table, rows, on_conflict="id"):
        rows = [dict(row) for row in rows]
        self._record("upsert", table, rows)
        self._check_columns(table, rows)
        keys = [key.strip() for key in on_conflict.split(",")]
        for incoming in rows:
            existing = next(
                (
                    row
                    for row in self.tables[table]
                    if all(row.get(k) == incoming.get(k) for k in keys)
                ),
                None,
            )
            if existing is None:
                self.tables[table].append(dict(incoming))
            else:
                existing.update(incoming)

    async def delete(self, table, filters):
        self._record("delete", table, filters)
        self.tables[table] = [row for row in self.tables[table] if not _matches(row, filters)]

    async def subscribe(self, table, on_change):
        self._record("subscribe", table, None)
        self.listeners[table] = on_change
        subscription = FakeSubscription(self, table)
        self.subscriptions.append(subscription)
        return subscription


class FakeNotificationSink(INotificationSink):
    def __init__(self, fail: bool = False):
        self.events: List[Tuple[Any, Dict[str, Any]]] = []
        self.fail = fail

    async def emit(self, event_kind, payload):
        self.events.append((event_kind, dict(payload)))
        if self.fail:
            raise RuntimeError("sink offline")

    def kinds(self) -> List[str]:
        return [kind.value for kind, _ in self.events]


class FakeAccounts(IUserAccountService):
    def __init__(self, fail: bool = False):
        self.awards: List[Tuple[str, int, int]] = []
        self.fail = fail

    async def award_points(self, user_id, xp, currency):
        if self.fail:
            raise RuntimeError("profile service down")
        self.awards.append((user_id, xp, currency))


class FakeAggregateSaver(IAggregateSaver):
    def __init__(self, assigned_id: Optional[str] = None, error: Optional[Exception] = None):
        self.calls: List[Tuple[Dict[str, Any], List[Dict[str, Any]]]] = []
        self.assigned_id = assigned_id
        self.error = error

    async def save_aggregate_atomically(self, header, child_rows):
        self.calls.append((dict(header), [dict(row) for row in child_rows]))
        if self.error is not None:
            raise self.error
        return self.assigned_id or header["id"]


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def sink() -> FakeNotificationSink:
    return FakeNotificationSink()


@pytest.fixture
def accounts() -> FakeAccounts:
    return FakeAccounts()


@pytest.fixture
def store() -> CurriculumStore:
    store = CurriculumStore()
    store.bind("user-1")
    return store


@pytest.fixture
def course_tree(store: CurriculumStore) -> CurriculumStore:
    """
    c1 -> s1 -> m1 [q1, l1], m2 [w1]; c1 also holds the direct lesson l0.
    """
    store.install_many(
        [
            Course(id="c1", title="Python Basics"),
            Stage(id="s1", course_id="c1", title="Foundations", xp_reward=50),
            Module(id="m1", stage_id="s1", title="Variables", order=0, xp_reward=20),
            Module(id="m2", stage_id="s1", title="Loops", order=1),
            Quiz(id="q1", course_id="c1", module_id="m1", title="Quiz 1", order=0, xp_reward=10),
            Lesson(id="l1", course_id="c1", module_id="m1", title="Lesson 1", order=1, xp_reward=5),
            Walkthrough(id="w1", course_id="c1", module_id="m2", title="Walk 1", order=0),
            Lesson(id="l0", course_id="c1", title="Welcome", order=0),
        ]
    )
    return store


@pytest.fixture
def saver() -> FakeAggregateSaver:
    return FakeAggregateSaver()
