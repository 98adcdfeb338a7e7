"""Data access layer: storage contract, SQL implementation and change feeds."""

from portal.datastore.base import (
    ChangeKind,
    ChangeNotification,
    Condition,
    DataStore,
    Order,
    eq,
    gte,
    in_,
    is_null,
    lt,
)
from portal.datastore.feed import ChangeFeed, RedisChangeFeed, Subscription
from portal.datastore.sql import SqlDataStore

__all__ = [
    "ChangeKind",
    "ChangeNotification",
    "Condition",
    "DataStore",
    "Order",
    "eq",
    "gte",
    "in_",
    "is_null",
    "lt",
    "ChangeFeed",
    "RedisChangeFeed",
    "Subscription",
    "SqlDataStore",
]
