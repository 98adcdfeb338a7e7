"""Storage collaborator contract: what the core expects from the data layer."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeNotification:
    """One row-level change pushed by the store after commit."""

    table: str
    kind: ChangeKind
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    committed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def record(self) -> dict[str, Any]:
        """The row the change is about: new for inserts/updates, old for deletes."""
        return self.new if self.new is not None else (self.old or {})


@dataclass(frozen=True)
class Condition:
    """A single column predicate used by query/count/update guards.

    Supported ops: eq, neq, gt, gte, lt, lte, in, is_null, not_null, ilike.
    """

    column: str
    op: str = "eq"
    value: Any = None

    def matches(self, row: dict[str, Any]) -> bool:
        """Evaluate against a plain row dict (used for subscription filters)."""
        actual = row.get(self.column)
        if self.op == "eq":
            return _same(actual, self.value)
        if self.op == "neq":
            return not _same(actual, self.value)
        if self.op == "in":
            return any(_same(actual, v) for v in self.value)
        if self.op == "is_null":
            return actual is None
        if self.op == "not_null":
            return actual is not None
        raise ValueError(f"Operator {self.op!r} is not supported in subscription filters")


def _same(a: Any, b: Any) -> bool:
    # Payloads that crossed a JSON transport carry ids as strings
    if a is None or b is None:
        return a is b
    return a == b or str(a) == str(b)


def eq(column: str, value: Any) -> Condition:
    return Condition(column, "eq", value)


def gte(column: str, value: Any) -> Condition:
    return Condition(column, "gte", value)


def lt(column: str, value: Any) -> Condition:
    return Condition(column, "lt", value)


def in_(column: str, values: Sequence[Any]) -> Condition:
    return Condition(column, "in", list(values))


def is_null(column: str) -> Condition:
    return Condition(column, "is_null")


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = True


class DataStore(ABC):
    """Abstract storage/realtime provider.

    Rows travel as plain dicts keyed by column name. Every successful write
    publishes a ChangeNotification to subscribers after commit.
    """

    @abstractmethod
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it with generated columns filled in."""
        ...

    @abstractmethod
    async def update(
        self,
        table: str,
        row_id: Any,
        fields: dict[str, Any],
        guard: Sequence[Condition] = (),
    ) -> dict[str, Any]:
        """Apply a partial update. Raises NotFoundError when no row matches id + guard."""
        ...

    @abstractmethod
    async def delete(self, table: str, row_id: Any) -> None:
        """Delete one row by id. Raises NotFoundError when missing."""
        ...

    @abstractmethod
    async def query(
        self,
        table: str,
        conditions: Sequence[Condition] = (),
        order: Sequence[Order] = (),
        offset: int = 0,
        limit: int | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def count(self, table: str, conditions: Sequence[Condition] = ()) -> int:
        ...

    @abstractmethod
    async def increment(self, table: str, row_id: Any, column: str, amount: int = 1) -> None:
        """Atomic ``column = column + amount`` at the storage layer."""
        ...

    @abstractmethod
    async def upsert(
        self,
        table: str,
        row: dict[str, Any],
        conflict_columns: Sequence[str],
        update_fields: dict[str, Any] | None = None,
        increment_fields: dict[str, int] | None = None,
    ) -> dict[str, Any]:
        """Insert ``row`` or, on conflict, set ``update_fields`` / add ``increment_fields``."""
        ...

    @abstractmethod
    async def rpc(self, name: str, **kwargs) -> Any:
        """Call a trusted server-side function (bypasses row-level restrictions)."""
        ...

    @abstractmethod
    def subscribe(
        self,
        table: str,
        kinds: Sequence[ChangeKind] | None = None,
        condition: Condition | None = None,
    ):
        """Return a cancelable async stream of ChangeNotification for ``table``."""
        ...
