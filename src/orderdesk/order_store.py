"""Order storage for orderdesk."""

import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol

from . import settings
from .errors import (
    ConcurrentModificationError,
    InvalidSchemaVersionError,
    OrderNotFoundError,
    OrderNumberCollisionError,
)
from .models import Order

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
ORDERS_FILE = "orders.json"


class OrderRepository(Protocol):
    """Persistence port used by OrderService.

    save() is a compare-and-set: it succeeds only if the stored version
    still equals the version the order was loaded with.
    """

    def add(self, order: Order) -> None:
        """Insert a new order. Raises OrderNumberCollisionError on a taken number."""
        ...

    def get(self, order_id: str) -> Order:
        """Load an order by ID. Raises OrderNotFoundError."""
        ...

    def get_by_number(self, order_number: str) -> Order:
        """Load an order by order number. Raises OrderNotFoundError."""
        ...

    def list_orders(self) -> list[Order]:
        """Snapshot of all orders."""
        ...

    def save(self, order: Order) -> None:
        """Write an order back. Raises ConcurrentModificationError if it changed meanwhile."""
        ...


def _find(records: list[dict[str, Any]], key: str, value: str) -> int | None:
    for i, record in enumerate(records):
        if record.get(key) == value:
            return i
    return None


def _insert(records: list[dict[str, Any]], order: Order) -> int:
    if _find(records, "order_number", order.order_number) is not None:
        raise OrderNumberCollisionError(order.order_number)
    record = order.to_dict()
    record["version"] = 1
    records.append(record)
    return 1


def _compare_and_set(records: list[dict[str, Any]], order: Order) -> int:
    """Replace the stored record if its version still matches. Returns the new version."""
    idx = _find(records, "id", order.id)
    if idx is None:
        raise OrderNotFoundError(order.id)

    found = records[idx].get("version", 0)
    if found != order.version:
        raise ConcurrentModificationError(order.id, order.version, found)

    record = order.to_dict()
    record["version"] = found + 1
    records[idx] = record
    return found + 1


class MemoryOrderStore:
    """In-process order store. Orders are kept serialized so callers never share state."""

    def __init__(self) -> None:
        self._records: list[dict[str, Any]] = []
        self._mutex = threading.Lock()

    def add(self, order: Order) -> None:
        with self._mutex:
            order.version = _insert(self._records, order)

    def get(self, order_id: str) -> Order:
        with self._mutex:
            idx = _find(self._records, "id", order_id)
            if idx is None:
                raise OrderNotFoundError(order_id)
            return Order.from_dict(self._records[idx])

    def get_by_number(self, order_number: str) -> Order:
        with self._mutex:
            idx = _find(self._records, "order_number", order_number)
            if idx is None:
                raise OrderNotFoundError(order_number)
            return Order.from_dict(self._records[idx])

    def list_orders(self) -> list[Order]:
        with self._mutex:
            return [Order.from_dict(r) for r in self._records]

    def save(self, order: Order) -> None:
        with self._mutex:
            order.version = _compare_and_set(self._records, order)


class JsonOrderStore:
    """Manages orders in a single JSON file guarded by an exclusive file lock."""

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize JsonOrderStore.

        Args:
            config_dir: Override data directory (for testing).
        """
        self.config_dir = config_dir or settings.DATA_DIR
        self.config_path = self.config_dir / ORDERS_FILE

    def _ensure_dir(self) -> None:
        """Ensure data directory exists."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the orders file for read-modify-write operations."""
        self._ensure_dir()
        lock_path = self.config_dir / ".orders.lock"
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load_data(self) -> dict[str, Any]:
        """
        Load orders data from disk.

        Raises:
            InvalidSchemaVersionError: If schema version is unsupported.
        """
        if not self.config_path.exists():
            return {"schema_version": SCHEMA_VERSION, "orders": []}

        with open(self.config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        version = data.get("schema_version", 0)
        if version != SCHEMA_VERSION:
            raise InvalidSchemaVersionError(version, SCHEMA_VERSION)
        return data

    def _save_data(self, data: dict[str, Any]) -> None:
        """Save orders data to disk atomically."""
        self._ensure_dir()

        fd, temp_path = tempfile.mkstemp(
            dir=self.config_dir, prefix=".orders_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self.config_path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def add(self, order: Order) -> None:
        with self._lock():
            data = self._load_data()
            version = _insert(data["orders"], order)
            self._save_data(data)
            order.version = version
        logger.debug("Stored new order %s", order.order_number)

    def get(self, order_id: str) -> Order:
        data = self._load_data()
        idx = _find(data["orders"], "id", order_id)
        if idx is None:
            raise OrderNotFoundError(order_id)
        return Order.from_dict(data["orders"][idx])

    def get_by_number(self, order_number: str) -> Order:
        data = self._load_data()
        idx = _find(data["orders"], "order_number", order_number)
        if idx is None:
            raise OrderNotFoundError(order_number)
        return Order.from_dict(data["orders"][idx])

    def list_orders(self) -> list[Order]:
        data = self._load_data()
        return [Order.from_dict(r) for r in data.get("orders", [])]

    def save(self, order: Order) -> None:
        with self._lock():
            data = self._load_data()
            version = _compare_and_set(data["orders"], order)
            self._save_data(data)
            order.version = version
