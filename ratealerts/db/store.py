"""SQLite alert store."""

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ratealerts.errors import AlertNotFoundError, PersistenceUnavailableError
from ratealerts.models import Alert, AlertStatus

logger = logging.getLogger(__name__)


def _parse_record(alert_id: str, payload: str) -> Optional[Alert]:
    try:
        return Alert.model_validate_json(payload)
    except ValidationError as e:
        logger.warning("Skipping unreadable alert record %s: %s", alert_id, e)
        return None


class AlertStore:
    """Durable mapping of alert IDs to alert records.

    Each alert is stored as one JSON record keyed by ID, with an
    autoincrement sequence column that preserves insertion order. When the
    database cannot be opened or read, the store keeps working on its
    in-memory mirror (empty at startup, last-known afterwards) instead of
    failing.

    Writes that fail are kept as pending and win over the disk copy on
    every read until a later flush succeeds, so a committed transition is
    never undone by re-reading stale data.
    """

    def __init__(self, db_path: Optional[Path] = None, timeout: float = 5.0):
        """Initialize the alert store.

        Args:
            db_path: Path to the SQLite database file. ``None`` keeps
                alerts in memory only.
            timeout: Seconds to wait for another process's lock.
        """
        self.db_path = db_path
        self.timeout = timeout
        self._lock = threading.RLock()
        self._alert_locks: dict[str, threading.Lock] = {}
        self._mirror: dict[str, Alert] = {}
        # id -> record still to be written (None: still to be deleted)
        self._pending: dict[str, Optional[Alert]] = {}
        self._persistent = False

        if db_path is not None:
            try:
                self._ensure_db_dir()
                self._init_schema()
                self._persistent = True
                self._mirror = self._load()
            except (PersistenceUnavailableError, OSError) as e:
                logger.warning(
                    "Alert database %s unavailable, running in memory: %s", db_path, e
                )
                self._persistent = False
                self._mirror = {}

    @property
    def is_persistent(self) -> bool:
        return self._persistent

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._pending)

    def _ensure_db_dir(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        """Initialize database schema on first run."""
        try:
            conn = self._get_connection()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS alerts (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        payload TEXT NOT NULL
                    )
                """)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceUnavailableError(str(e)) from e

    def _load(self) -> dict[str, Alert]:
        """Read every alert from disk, skipping records that fail to parse.

        Raises:
            PersistenceUnavailableError: If the database cannot be read.
        """
        try:
            conn = self._get_connection()
            try:
                rows = conn.execute("SELECT id, payload FROM alerts ORDER BY seq").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceUnavailableError(str(e)) from e

        alerts: dict[str, Alert] = {}
        for row in rows:
            alert = _parse_record(row["id"], row["payload"])
            if alert is not None:
                alerts[row["id"]] = alert
        return alerts

    def _persist(self, alert: Alert) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """
                INSERT INTO alerts (id, payload) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET payload = excluded.payload
                """,
                (alert.id, alert.model_dump_json()),
            )
            conn.commit()
        finally:
            conn.close()

    def _unpersist(self, alert_id: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
            conn.commit()
        finally:
            conn.close()

    def _write(self, alert: Alert) -> None:
        if not self._persistent:
            return
        try:
            self._persist(alert)
        except sqlite3.Error as e:
            logger.warning("Could not persist alert %s, keeping it in memory: %s", alert.id, e)
            self._pending[alert.id] = alert
        else:
            self._pending.pop(alert.id, None)

    def _remove(self, alert_id: str) -> None:
        if not self._persistent:
            return
        try:
            self._unpersist(alert_id)
        except sqlite3.Error as e:
            logger.warning("Could not delete alert %s on disk: %s", alert_id, e)
            self._pending[alert_id] = None
        else:
            self._pending.pop(alert_id, None)

    def _flush_pending(self) -> None:
        for alert_id, alert in list(self._pending.items()):
            try:
                if alert is None:
                    self._unpersist(alert_id)
                else:
                    self._persist(alert)
            except sqlite3.Error as e:
                logger.debug("Pending alert writes still blocked: %s", e)
                return
            del self._pending[alert_id]
            logger.info("Pending write for alert %s saved", alert_id)

    def _refresh(self) -> dict[str, Alert]:
        """Re-read the mirror from disk, falling back to the last-known state.

        Pending writes are retried first; any still pending override the
        disk copy.
        """
        if not self._persistent:
            return self._mirror

        self._flush_pending()
        try:
            alerts = self._load()
        except PersistenceUnavailableError as e:
            logger.warning("Alert database read failed, using last-known alerts: %s", e)
            return self._mirror

        for alert_id, alert in self._pending.items():
            if alert is None:
                alerts.pop(alert_id, None)
            else:
                alerts[alert_id] = alert
        self._mirror = alerts
        return self._mirror

    # ==================== Reads ====================

    def get_all(self) -> list[Alert]:
        """Get all alerts in insertion order."""
        with self._lock:
            return list(self._refresh().values())

    def find(self, alert_id: str) -> Optional[Alert]:
        """Get an alert by ID, or None if absent."""
        with self._lock:
            return self._refresh().get(alert_id)

    def get(self, alert_id: str) -> Alert:
        """Get an alert by ID.

        Raises:
            AlertNotFoundError: If no alert has this ID.
        """
        alert = self.find(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def count_by_status(self, status: AlertStatus) -> int:
        return sum(1 for alert in self.get_all() if alert.status == status)

    # ==================== Writes ====================

    def upsert(self, alert: Alert) -> None:
        """Insert a new alert, or replace an existing one in place.

        Replacing keeps the alert's original position in ``get_all``.
        """
        with self._lock:
            self._refresh()
            self._mirror[alert.id] = alert
            self._write(alert)

    def delete(self, alert_id: str) -> None:
        """Delete an alert.

        Takes the alert's lock so a delete never lands in the middle of an
        evaluation of the same alert.

        Raises:
            AlertNotFoundError: If no alert has this ID.
        """
        with self.lock_for(alert_id), self._lock:
            if alert_id not in self._refresh():
                raise AlertNotFoundError(alert_id)
            del self._mirror[alert_id]
            self._remove(alert_id)
            self._alert_locks.pop(alert_id, None)

    def update_status(
        self,
        alert_id: str,
        status: AlertStatus,
        triggered_at: Optional[datetime] = None,
        expected: Optional[AlertStatus] = None,
    ) -> Optional[Alert]:
        """Set an alert's status atomically.

        On disk the read and the write run in one ``BEGIN IMMEDIATE``
        transaction. With ``expected``, the write only happens while the
        alert still has that status, so several processes sharing the
        database cannot make the same transition twice.

        Args:
            alert_id: Alert ID.
            status: New status.
            triggered_at: Trigger time; required when ``status`` is
                triggered and cleared otherwise.
            expected: Status the alert must currently have, if any.

        Returns:
            The updated alert, or None if it is no longer in ``expected``.

        Raises:
            AlertNotFoundError: If no alert has this ID.
            ValueError: If a triggered status comes without a time.
        """
        if status == AlertStatus.TRIGGERED and triggered_at is None:
            raise ValueError("triggered status requires triggered_at")
        if status != AlertStatus.TRIGGERED:
            triggered_at = None
        change = {"status": status, "triggered_at": triggered_at}

        with self._lock:
            self._refresh()
            if self._persistent and alert_id not in self._pending:
                try:
                    current, updated = self._update_on_disk(alert_id, change, expected)
                except sqlite3.Error as e:
                    logger.warning(
                        "Could not update alert %s on disk, keeping it in memory: %s", alert_id, e
                    )
                else:
                    if current is None:
                        self._mirror.pop(alert_id, None)
                        raise AlertNotFoundError(alert_id)
                    self._mirror[alert_id] = updated or current
                    return updated

            current = self._mirror.get(alert_id)
            if current is None:
                raise AlertNotFoundError(alert_id)
            if expected is not None and current.status != expected:
                return None
            updated = current.model_copy(update=change)
            self._mirror[alert_id] = updated
            if self._persistent:
                self._pending[alert_id] = updated
            return updated

    def _update_on_disk(
        self,
        alert_id: str,
        change: dict,
        expected: Optional[AlertStatus],
    ) -> tuple[Optional[Alert], Optional[Alert]]:
        """Read-check-write in a single write transaction.

        Returns:
            ``(current, updated)``; ``updated`` is None when nothing changed.
        """
        conn = self._get_connection()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT payload FROM alerts WHERE id = ?", (alert_id,)).fetchone()
            current = _parse_record(alert_id, row["payload"]) if row is not None else None
            if current is None or (expected is not None and current.status != expected):
                conn.rollback()
                return current, None

            updated = current.model_copy(update=change)
            conn.execute(
                "UPDATE alerts SET payload = ? WHERE id = ?",
                (updated.model_dump_json(), alert_id),
            )
            conn.commit()
            return current, updated
        finally:
            conn.close()

    def lock_for(self, alert_id: str) -> threading.Lock:
        """Get the lock guarding read-decide-write sequences on one alert."""
        with self._lock:
            lock = self._alert_locks.get(alert_id)
            if lock is None:
                lock = self._alert_locks[alert_id] = threading.Lock()
            return lock
