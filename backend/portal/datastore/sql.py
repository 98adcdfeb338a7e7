"""SQLAlchemy-backed data store with post-commit change notifications."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Sequence

from sqlalchemy import Table, Uuid, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from portal.datastore.base import ChangeKind, ChangeNotification, Condition, DataStore, Order
from portal.datastore.feed import ChangeFeed
from portal.exceptions import NotFoundError, TransientStorageError, ValidationError
from portal.models import ActivityEvent  # noqa: F401  registers every table on Base.metadata
from portal.models.base import Base, utcnow

logger = logging.getLogger(__name__)


class SqlDataStore(DataStore):
    """DataStore over any SQLAlchemy async engine (PostgreSQL in production, SQLite locally)."""

    def __init__(self, engine: AsyncEngine, feed: ChangeFeed | None = None):
        self.engine = engine
        self.feed = feed or ChangeFeed()
        self.session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        self._rpc = {
            "get_global_application_counts": self._global_application_counts,
        }

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    # --- Helpers ---

    def _table(self, name: str) -> Table:
        table = Base.metadata.tables.get(name)
        if table is None:
            raise ValidationError(f"Unknown table '{name}'")
        return table

    @staticmethod
    def _coerce(table: Table, column: str, value: Any) -> Any:
        if column not in table.c:
            raise ValidationError(f"Unknown column '{column}' on {table.name}")
        if isinstance(table.c[column].type, Uuid) and isinstance(value, str):
            try:
                return uuid.UUID(value)
            except ValueError:
                raise ValidationError(f"Malformed id for {table.name}.{column}: {value!r}")
        return value

    def _values(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        return {key: self._coerce(table, key, value) for key, value in row.items()}

    def _clause(self, table: Table, condition: Condition):
        col = table.c[condition.column] if condition.column in table.c else None
        if col is None:
            raise ValidationError(f"Unknown column '{condition.column}' on {table.name}")
        op = condition.op
        if op == "is_null":
            return col.is_(None)
        if op == "not_null":
            return col.isnot(None)
        if op == "in":
            return col.in_([self._coerce(table, condition.column, v) for v in condition.value])
        value = self._coerce(table, condition.column, condition.value)
        if op == "eq":
            return col == value
        if op == "neq":
            return col != value
        if op == "gt":
            return col > value
        if op == "gte":
            return col >= value
        if op == "lt":
            return col < value
        if op == "lte":
            return col <= value
        if op == "ilike":
            return col.ilike(value)
        raise ValidationError(f"Unsupported operator '{op}'")

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except IntegrityError as e:
            logger.warning("Integrity violation: %s", e.orig)
            raise ValidationError("Write rejected by data integrity rules") from e
        except (OperationalError, InterfaceError, PoolTimeoutError, OSError) as e:
            logger.error("Storage unavailable: %s", e)
            raise TransientStorageError("Storage is temporarily unavailable") from e

    async def _publish(self, notifications: list[ChangeNotification]) -> None:
        for notification in notifications:
            try:
                await self.feed.publish(notification)
            except Exception:
                # The write is already committed; a lost notification only delays readers
                logger.exception("Failed to publish %s on %s", notification.kind.value, notification.table)

    async def _select_one(self, session: AsyncSession, table: Table, row_id: Any) -> dict[str, Any] | None:
        result = await session.execute(select(table).where(table.c.id == row_id))
        row = result.first()
        return dict(row._mapping) if row else None

    async def _cascaded(self, session: AsyncSession, table: Table, row: dict[str, Any]) -> list[ChangeNotification]:
        """Rows the database will remove through ON DELETE CASCADE when ``row`` goes."""
        notifications = []
        for child in Base.metadata.sorted_tables:
            for fk in child.foreign_keys:
                if fk.column.table is not table or (fk.ondelete or "").upper() != "CASCADE":
                    continue
                result = await session.execute(select(child).where(fk.parent == row[fk.column.name]))
                for dependent in result.all():
                    old = dict(dependent._mapping)
                    notifications.extend(await self._cascaded(session, child, old))
                    notifications.append(ChangeNotification(child.name, ChangeKind.DELETE, old=old))
        return notifications

    # --- Writes ---

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        t = self._table(table)
        values = self._values(t, row)
        async with self._transaction() as session:
            result = await session.execute(insert(t).values(**values).returning(*t.c))
            created = dict(result.one()._mapping)
        await self._publish([ChangeNotification(table, ChangeKind.INSERT, new=created)])
        return created

    async def update(
        self,
        table: str,
        row_id: Any,
        fields: dict[str, Any],
        guard: Sequence[Condition] = (),
    ) -> dict[str, Any]:
        t = self._table(table)
        row_id = self._coerce(t, "id", row_id)
        values = self._values(t, fields)
        async with self._transaction() as session:
            old = await self._select_one(session, t, row_id)
            stmt = (
                update(t)
                .where(t.c.id == row_id, *(self._clause(t, c) for c in guard))
                .values(**values)
                .returning(*t.c)
            )
            row = (await session.execute(stmt)).first()
            if row is None:
                raise NotFoundError(f"{table} row {row_id} not found")
            new = dict(row._mapping)
        await self._publish([ChangeNotification(table, ChangeKind.UPDATE, new=new, old=old)])
        return new

    async def delete(self, table: str, row_id: Any) -> None:
        t = self._table(table)
        row_id = self._coerce(t, "id", row_id)
        async with self._transaction() as session:
            old = await self._select_one(session, t, row_id)
            if old is None:
                raise NotFoundError(f"{table} row {row_id} not found")
            cascaded = await self._cascaded(session, t, old)
            await session.execute(delete(t).where(t.c.id == row_id))
        await self._publish(cascaded + [ChangeNotification(table, ChangeKind.DELETE, old=old)])

    async def increment(self, table: str, row_id: Any, column: str, amount: int = 1) -> None:
        t = self._table(table)
        row_id = self._coerce(t, "id", row_id)
        if column not in t.c:
            raise ValidationError(f"Unknown column '{column}' on {table}")
        async with self._transaction() as session:
            # Single UPDATE ... SET col = col + n: concurrent writers never lose an increment
            stmt = update(t).where(t.c.id == row_id).values({column: t.c[column] + amount}).returning(*t.c)
            row = (await session.execute(stmt)).first()
            if row is None:
                raise NotFoundError(f"{table} row {row_id} not found")
            new = dict(row._mapping)
        await self._publish([ChangeNotification(table, ChangeKind.UPDATE, new=new)])

    def _dialect_insert(self, table: Table):
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            raise NotImplementedError(f"Upsert is not supported on {dialect}")
        return dialect_insert(table)

    async def upsert(
        self,
        table: str,
        row: dict[str, Any],
        conflict_columns: Sequence[str],
        update_fields: dict[str, Any] | None = None,
        increment_fields: dict[str, int] | None = None,
    ) -> dict[str, Any]:
        t = self._table(table)
        values = self._values(t, row)
        set_: dict[str, Any] = dict(self._values(t, update_fields or {}))
        for column, amount in (increment_fields or {}).items():
            set_[column] = t.c[column] + amount
        if "updated_at" in t.c:
            set_["updated_at"] = utcnow()

        async with self._transaction() as session:
            lookup = select(t).where(*(t.c[c] == values[c] for c in conflict_columns))
            existing = (await session.execute(lookup)).first()
            old = dict(existing._mapping) if existing else None
            stmt = (
                self._dialect_insert(t)
                .values(**values)
                .on_conflict_do_update(index_elements=list(conflict_columns), set_=set_)
                .returning(*t.c)
            )
            new = dict((await session.execute(stmt)).one()._mapping)
        kind = ChangeKind.UPDATE if old else ChangeKind.INSERT
        await self._publish([ChangeNotification(table, kind, new=new, old=old)])
        return new

    # --- Reads ---

    async def query(
        self,
        table: str,
        conditions: Sequence[Condition] = (),
        order: Sequence[Order] = (),
        offset: int = 0,
        limit: int | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        t = self._table(table)
        selected = [t.c[name] for name in columns] if columns else [t]
        stmt = select(*selected).where(*(self._clause(t, c) for c in conditions))
        for o in order:
            stmt = stmt.order_by(t.c[o.column].desc() if o.descending else t.c[o.column].asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [dict(row._mapping) for row in result]

    async def count(self, table: str, conditions: Sequence[Condition] = ()) -> int:
        t = self._table(table)
        stmt = select(func.count()).select_from(t).where(*(self._clause(t, c) for c in conditions))
        async with self._transaction() as session:
            return (await session.execute(stmt)).scalar() or 0

    async def rpc(self, name: str, **kwargs) -> Any:
        fn = self._rpc.get(name)
        if fn is None:
            raise NotFoundError(f"Unknown function '{name}'")
        return await fn(**kwargs)

    async def _global_application_counts(self) -> list[dict[str, Any]]:
        """Apply counts for every listing, computed over all users' events."""
        t = self._table("activity_logs")
        stmt = (
            select(t.c.internship_id, func.count(t.c.id).label("application_count"))
            .where(t.c.event == "apply")
            .group_by(t.c.internship_id)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [
                {"internship_id": row.internship_id, "application_count": row.application_count}
                for row in result
            ]

    # --- Realtime ---

    def subscribe(
        self,
        table: str,
        kinds: Sequence[ChangeKind] | None = None,
        condition: Condition | None = None,
    ):
        self._table(table)
        return self.feed.subscribe(table, kinds, condition)
