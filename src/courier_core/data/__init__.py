"""Persistence: domain models, table mappings and the transactional store."""

from courier_core.data.store import PersistenceStore, SqlAlchemyStore, StoreTransaction, create_store_engine

__all__ = ["PersistenceStore", "SqlAlchemyStore", "StoreTransaction", "create_store_engine"]
