# storage.py
import os
import json
import logging
from datetime import datetime, date, timedelta, timezone
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple

from sqlalchemy import create_engine, MetaData, Table, Column, String, DateTime, Text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.sql import select, insert, update, delete
from sqlalchemy.pool import NullPool

from config import STORAGE
from errors import StorageQuotaError

logger = logging.getLogger(__name__)


def _get_db_url() -> str:
    url = os.getenv("DATABASE_URL", "").strip()
    if not url:
        try:
            import streamlit as st
            url = str(st.secrets.get("DATABASE_URL", "")).strip()
        except Exception:
            logger.debug("No DATABASE_URL in Streamlit secrets", exc_info=True)
    return url

_engine = None

def get_engine():
    global _engine
    if _engine is None:
        db_url = _get_db_url()
        if db_url:
            _engine = create_engine(db_url, pool_pre_ping=True, poolclass=NullPool)
        else:
            _engine = create_engine(STORAGE["sqlite_url"], connect_args={"check_same_thread": False})
    return _engine

metadata = MetaData()

# One row per storage key, value is the serialized JSON record
kv_records = Table(
    "kv_records", metadata,
    Column("key", String(120), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

def init_db(engine=None) -> None:
    metadata.create_all(engine or get_engine())

def get_item(key: str, engine=None) -> Optional[str]:
    with (engine or get_engine()).begin() as conn:
        row = conn.execute(
            select(kv_records.c.value).where(kv_records.c.key == key)
        ).fetchone()
    return row[0] if row else None

def set_item(key: str, value: str, engine=None, max_bytes: Optional[int] = None) -> None:
    limit = STORAGE["max_payload_bytes"] if max_bytes is None else max_bytes
    size = len(value.encode("utf-8"))
    if size > limit:
        raise StorageQuotaError(f"Record '{key}' is {size} bytes, quota is {limit}")

    try:
        with (engine or get_engine()).begin() as conn:
            exists = conn.execute(
                select(kv_records.c.key).where(kv_records.c.key == key)
            ).fetchone()
            if exists:
                conn.execute(
                    update(kv_records).where(kv_records.c.key == key)
                    .values(value=value, updated_at=datetime.now())
                )
            else:
                conn.execute(insert(kv_records).values(key=key, value=value, updated_at=datetime.now()))
    except OperationalError as exc:
        if "full" in str(exc.orig).lower():
            raise StorageQuotaError(f"Storage is full while writing '{key}'") from exc
        raise

def remove_item(key: str, engine=None) -> None:
    with (engine or get_engine()).begin() as conn:
        conn.execute(delete(kv_records).where(kv_records.c.key == key))


# -------------------------
# Timestamps
# -------------------------
def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def parse_timestamp(value: str) -> datetime:
    moment = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


# -------------------------
# History
# -------------------------
class SaveOutcome(NamedTuple):
    status: str                  # "ok" | "degraded" | "fatal"
    history: List[Dict]
    message: Optional[str] = None


class HistoryRepo:
    """Newest-first log of calculations, capped at ``max_items`` entries."""

    def __init__(
        self,
        engine=None,
        key: str = STORAGE["history_key"],
        max_items: int = STORAGE["max_history_items"],
        max_payload_bytes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine or get_engine()
        self.key = key
        self.max_items = max_items
        self.max_payload_bytes = max_payload_bytes
        self.clock = clock
        init_db(self.engine)

    def _write(self, items: List[Dict]) -> None:
        set_item(self.key, json.dumps(items), self.engine, self.max_payload_bytes)

    def all(self) -> List[Dict]:
        try:
            raw = get_item(self.key, self.engine)
            if not raw:
                return []
            items = json.loads(raw)
        except (ValueError, SQLAlchemyError):
            logger.exception("Error reading history")
            return []
        if not isinstance(items, list):
            logger.error("Error reading history: expected a list, got %s", type(items).__name__)
            return []
        if not all(isinstance(item, dict) for item in items):
            logger.error("Error reading history: entries must be objects")
            return []
        return items

    def _next_id(self, history: List[Dict], now: datetime) -> int:
        new_id = int(now.timestamp() * 1000)
        if history and isinstance(history[0].get("id"), int):
            new_id = max(new_id, history[0]["id"] + 1)
        return new_id

    def append(self, inputs: Mapping, result: Mapping) -> SaveOutcome:
        history = self.all()
        now = self.clock()
        item = {
            "id": self._next_id(history, now),
            "timestamp": to_iso(now),
            "inputs": dict(inputs),
            "result": dict(result),
        }
        updated = [item] + history
        updated = updated[: self.max_items]

        try:
            self._write(updated)
        except StorageQuotaError:
            logger.exception("Error saving history item")
            return self._shrink(history)
        return SaveOutcome("ok", updated)

    def _shrink(self, history: List[Dict]) -> SaveOutcome:
        reduced = history[: self.max_items // 2]
        try:
            self._write(reduced)
        except (StorageQuotaError, SQLAlchemyError):
            logger.exception("Retry after shrinking history failed")
            return SaveOutcome(
                "fatal", history,
                "Unable to save: storage is full. Please clear some history.",
            )
        logger.warning("History shrunk to %d items after quota error", len(reduced))
        return SaveOutcome(
            "degraded", reduced,
            "Storage quota exceeded. Older history items were removed.",
        )

    def clear(self) -> List[Dict]:
        try:
            remove_item(self.key, self.engine)
        except SQLAlchemyError:
            logger.exception("Error clearing history")
        return []


def filter_by_range(items: List[Dict], days: int, now: Optional[datetime] = None) -> List[Dict]:
    """Items no older than ``days`` * 24h; an item exactly on the cutoff is kept."""
    cutoff = (now or utcnow()) - timedelta(days=days)
    kept = []
    for item in items:
        try:
            moment = parse_timestamp(item["timestamp"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping history item with bad timestamp: %r", item.get("id") if isinstance(item, dict) else item)
            continue
        if moment >= cutoff:
            kept.append(item)
    return kept


def group_by_day(items: List[Dict]) -> List[Tuple[date, List[Dict]]]:
    """Groups newest-first items by local calendar day, keeping their order."""
    groups: List[Tuple[date, List[Dict]]] = []
    for item in items:
        day = parse_timestamp(item["timestamp"]).astimezone().date()
        if groups and groups[-1][0] == day:
            groups[-1][1].append(item)
        else:
            groups.append((day, [item]))
    return groups


# -------------------------
# Settings
# -------------------------
SETTINGS_FIELDS = ("unit", "target_bg", "carb_ratio", "correction_factor")


class SettingsRepo:
    def __init__(self, engine=None, key: str = STORAGE["settings_key"]):
        self.engine = engine or get_engine()
        self.key = key
        init_db(self.engine)

    def save(self, settings: Mapping) -> None:
        # Less critical than history, failures are only logged
        payload = {k: settings.get(k) for k in SETTINGS_FIELDS}
        try:
            set_item(self.key, json.dumps(payload), self.engine)
        except (StorageQuotaError, SQLAlchemyError, TypeError, ValueError):
            logger.exception("Error saving settings")

    def load(self) -> Optional[Dict]:
        try:
            raw = get_item(self.key, self.engine)
            if not raw:
                return None
            settings = json.loads(raw)
        except (ValueError, SQLAlchemyError):
            logger.exception("Error reading settings")
            return None
        if not isinstance(settings, dict):
            logger.error("Error reading settings: expected an object, got %s", type(settings).__name__)
            return None
        return settings
