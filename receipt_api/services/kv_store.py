"""
Key-value store port and its adapters.

The receipt service only needs a handful of primitives: get, put with optional
expiry and metadata, delete, prefix listing and an atomic "set if absent"
(try_acquire) for dedup markers. Two backends implement them:

- SqlKVStore: a single ``kv_entries`` table through SQLAlchemy (SQLite/PostgreSQL)
- RedisKVStore: native keys with EX expiry through redis-py
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import redis
from sqlalchemy import Column, DateTime, Float, String, Text, create_engine, or_, update
from sqlalchemy import delete as sql_delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from receipt_api.core.errors import StoreError
from receipt_api.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

Base = declarative_base()


class KVStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when missing or expired"""
        pass

    @abstractmethod
    def put(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Write value under key, replacing any previous value"""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. Returns True if a live value was removed"""
        pass

    @abstractmethod
    def list_keys(self, prefix: str) -> List[str]:
        """Live keys starting with prefix, in no guaranteed order"""
        pass

    @abstractmethod
    def try_acquire(self, key: str, ttl_seconds: int) -> bool:
        """Set key with expiry only if it is absent. True when this call set it"""
        pass

    def purge_expired(self) -> int:
        """Drop expired keys. Backends with native expiry have nothing to do"""
        return 0

    @abstractmethod
    def ping(self) -> bool:
        pass

    def close(self) -> None:
        pass


# ============================================================================
# SQL BACKEND
# ============================================================================

class KVEntry(Base):
    """One key of the SQL-backed store. expires_at is epoch seconds, NULL = no expiry."""

    __tablename__ = "kv_entries"

    key = Column(String(512), primary_key=True)
    value = Column(Text, nullable=False)
    meta = Column(Text, nullable=True)  # JSON, optional
    expires_at = Column(Float, nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<KVEntry(key={self.key}, expires_at={self.expires_at})>"


class SqlKVStore(KVStore):
    def __init__(self, engine, clock: Clock = system_clock):
        self.engine = engine
        self.clock = clock
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        Base.metadata.create_all(bind=engine)

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        if ttl_seconds is None:
            return None
        return self.clock() + ttl_seconds

    def _is_live(self, row: KVEntry, now: float) -> bool:
        return row.expires_at is None or row.expires_at > now

    def get(self, key: str) -> Optional[str]:
        try:
            with self.SessionLocal() as db:
                row = db.get(KVEntry, key)
                if row is None:
                    return None
                if not self._is_live(row, self.clock()):
                    db.delete(row)
                    db.commit()
                    return None
                return row.value
        except SQLAlchemyError as e:
            raise StoreError(f"get failed: {e}", operation="get") from e

    def put(self, key, value, ttl_seconds=None, metadata=None) -> None:
        meta = json.dumps(metadata) if metadata else None
        try:
            with self.SessionLocal() as db:
                db.merge(KVEntry(key=key, value=value, meta=meta, expires_at=self._expiry(ttl_seconds)))
                db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"put failed: {e}", operation="put") from e

    def delete(self, key: str) -> bool:
        try:
            with self.SessionLocal() as db:
                row = db.get(KVEntry, key)
                if row is None:
                    return False
                live = self._is_live(row, self.clock())
                db.delete(row)
                db.commit()
                return live
        except SQLAlchemyError as e:
            raise StoreError(f"delete failed: {e}", operation="delete") from e

    def list_keys(self, prefix: str) -> List[str]:
        now = self.clock()
        try:
            with self.SessionLocal() as db:
                rows = (
                    db.query(KVEntry.key)
                    .filter(
                        KVEntry.key.startswith(prefix, autoescape=True),
                        or_(KVEntry.expires_at.is_(None), KVEntry.expires_at > now),
                    )
                    .all()
                )
                return [row.key for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"list failed: {e}", operation="list") from e

    def try_acquire(self, key: str, ttl_seconds: int) -> bool:
        """
        Insert the key; on a unique violation take it over only if the existing
        row has expired. The conditional UPDATE keeps the takeover atomic when
        two requests race for the same expired marker.
        """
        self.purge_expired()
        now = self.clock()
        expires_at = now + ttl_seconds
        try:
            with self.SessionLocal() as db:
                try:
                    db.add(KVEntry(key=key, value="1", expires_at=expires_at))
                    db.commit()
                    return True
                except IntegrityError:
                    db.rollback()
                result = db.execute(
                    update(KVEntry)
                    .where(
                        KVEntry.key == key,
                        KVEntry.expires_at.is_not(None),
                        KVEntry.expires_at <= now,
                    )
                    .values(value="1", meta=None, expires_at=expires_at)
                )
                db.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise StoreError(f"try_acquire failed: {e}", operation="try_acquire") from e

    def purge_expired(self) -> int:
        """
        Delete every expired row. Runs before each try_acquire (once per ingest)
        so dedup markers and 14-day index entries do not pile up.
        """
        now = self.clock()
        try:
            with self.SessionLocal() as db:
                result = db.execute(
                    sql_delete(KVEntry).where(KVEntry.expires_at.is_not(None), KVEntry.expires_at <= now)
                )
                removed = result.rowcount
                db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"purge failed: {e}", operation="purge") from e
        if removed:
            logger.debug("kv purge removed %s expired keys", removed)
        return removed

    def ping(self) -> bool:
        try:
            with self.SessionLocal() as db:
                db.query(KVEntry.key).limit(1).all()
            return True
        except SQLAlchemyError as e:
            logger.warning("kv ping failed: %s", e)
            return False

    def close(self) -> None:
        self.engine.dispose()


# ============================================================================
# REDIS BACKEND
# ============================================================================

# Metadata lives in a sibling key sharing the value's expiry
META_SUFFIX = "::meta"

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class RedisKVStore(KVStore):
    def __init__(self, client: "redis.Redis"):
        self.client = client

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            raise StoreError(f"get failed: {e}", operation="get") from e

    def put(self, key, value, ttl_seconds=None, metadata=None) -> None:
        try:
            if metadata:
                pipe = self.client.pipeline()
                pipe.set(key, value, ex=ttl_seconds)
                pipe.set(key + META_SUFFIX, json.dumps(metadata), ex=ttl_seconds)
                pipe.execute()
            else:
                self.client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as e:
            raise StoreError(f"put failed: {e}", operation="put") from e

    def delete(self, key: str) -> bool:
        try:
            removed = self.client.delete(key)
            self.client.delete(key + META_SUFFIX)
            return bool(removed)
        except redis.RedisError as e:
            raise StoreError(f"delete failed: {e}", operation="delete") from e

    def list_keys(self, prefix: str) -> List[str]:
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        try:
            return [
                k for k in self.client.scan_iter(match=pattern, count=500)
                if not k.endswith(META_SUFFIX)
            ]
        except redis.RedisError as e:
            raise StoreError(f"list failed: {e}", operation="list") from e

    def try_acquire(self, key: str, ttl_seconds: int) -> bool:
        try:
            return bool(self.client.set(key, "1", nx=True, ex=ttl_seconds))
        except redis.RedisError as e:
            raise StoreError(f"try_acquire failed: {e}", operation="try_acquire") from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning("kv ping failed: %s", e)
            return False

    def close(self) -> None:
        self.client.close()


def build_store(url: str, timeout_seconds: float = 5.0, clock: Clock = system_clock) -> KVStore:
    """
    Build a store from KV_URL.

    redis:// / rediss:// / unix:// -> RedisKVStore
    memory://                     -> SqlKVStore on a private in-process SQLite
    anything else                 -> SqlKVStore on that SQLAlchemy URL
    """
    if url.startswith(("redis://", "rediss://", "unix://")):
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        logger.info("Using Redis key-value store")
        return RedisKVStore(client)

    if url.startswith("memory://"):
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        logger.info("Using in-process SQLite key-value store")
        return SqlKVStore(engine, clock=clock)

    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False}, pool_pre_ping=True)
    else:
        engine = create_engine(url, pool_pre_ping=True, pool_timeout=timeout_seconds)
    # Never log credentials
    logger.info(f"Using SQL key-value store: {url.split('@')[-1] if '@' in url else url}")
    return SqlKVStore(engine, clock=clock)
