"""
History Store
=============
Best-effort record of every completed analysis, on one of two backends.

Backend Selection (re-checked on EVERY call):
    DatabaseManager.is_ready() True   → DatabaseHistoryBackend (one row per entry)
    otherwise                          → FileHistoryBackend (JSON list on disk)
    A connection-level database error flips the signal off and the same call
    is served by the file backend instead.

File Backend — single-writer discipline:
    - An in-memory cache mirrors the file contents.
    - record() appends to the cache, then enqueues a write job on an ordered
      asyncio.Queue consumed by ONE writer task. Jobs run one at a time in
      submission order; a failed job does not block the next one.
    - Each job trims the cache to the newest `max_items` entries, serialises
      the whole trimmed cache and replaces the file (temp file + os.replace).
    - Write failures are logged and swallowed.
    - load() at startup reads the file if it exists and holds a JSON list;
      anything else (missing, corrupt) starts with an empty cache.

Failure Policy:
    record() never raises. History is auxiliary to report delivery.

Lifecycle:
    store = build_history_store()
    await store.start()     # load file, connect database
    ...
    await store.close()     # drain writer, dispose engine
"""
import asyncio
import json
import logging
import os
import tempfile
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, OperationalError

from app.core import config
from app.db.database import DatabaseManager
from app.db.models import HistoryRecord
from app.models.history_entry import HistoryEntry
from app.models.report import CanonicalReport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# File backend
# ---------------------------------------------------------------------------
class FileHistoryBackend:
    """
    JSON-file history with an in-memory cache and a single writer task.

    Parameters
    ----------
    path : str
        History file path; parent directories are created on first write.
    max_items : int
        Retention bound; older entries are discarded oldest-first.
    """

    def __init__(self, path: str, max_items: int = 50) -> None:
        self.path = path
        self.max_items = max_items
        self._cache: list[HistoryEntry] = []
        self._queue: Optional[asyncio.Queue] = None
        self._writer: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # -------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------
    def load(self) -> int:
        """Load the file into the cache. Returns the number of entries loaded."""
        self._cache = []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return 0
        except (OSError, ValueError) as e:
            logger.warning("History file %s unreadable, starting empty: %s", self.path, e)
            return 0

        if not isinstance(data, list):
            logger.warning("History file %s is not a JSON list, starting empty", self.path)
            return 0

        for item in data:
            try:
                self._cache.append(HistoryEntry.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed history entry: %s", e.errors()[:1])
        self._cache = self._cache[-self.max_items:]
        logger.info("Loaded %d history entries from %s", len(self._cache), self.path)
        return len(self._cache)

    # -------------------------------------------------------------------
    # Writer task
    # -------------------------------------------------------------------
    def _ensure_writer(self) -> None:
        loop = asyncio.get_running_loop()
        if self._writer is None or self._writer.done() or self._loop is not loop:
            self._loop = loop
            self._queue = asyncio.Queue()
            self._writer = loop.create_task(self._run_writer(self._queue))

    async def _run_writer(self, queue: asyncio.Queue) -> None:
        while True:
            job = await queue.get()
            try:
                if job is None:
                    return
                self._cache = self._cache[-self.max_items:]
                snapshot = [entry.to_wire() for entry in self._cache]
                await asyncio.to_thread(self._write_file, snapshot)
            except Exception as e:
                logger.error("Failed to write history file %s: %s", self.path, e, exc_info=True)
            finally:
                if job is not None and not job.done():
                    job.set_result(None)
                queue.task_done()

    def _write_file(self, snapshot: list[dict]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".history-", suffix=".json", dir=directory)
        try:
            try:
                f = os.fdopen(fd, "w", encoding="utf-8")
            except BaseException:
                os.close(fd)
                raise
            with f:
                json.dump(snapshot, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def record(self, entry: HistoryEntry) -> None:
        """Append to the cache and wait for the queued write to finish."""
        self._cache.append(entry)
        self._ensure_writer()
        job = self._loop.create_future()
        await self._queue.put(job)
        # Shielded: an abandoned request does not cancel the write
        await asyncio.shield(job)

    def recent(self, limit: int) -> List[HistoryEntry]:
        if limit <= 0:
            return []
        return list(reversed(self._cache[-limit:]))

    def __len__(self) -> int:
        return len(self._cache)

    async def close(self) -> None:
        """Drain pending writes and stop the writer task."""
        if self._writer is None or self._writer.done():
            return
        if self._loop is not asyncio.get_running_loop():
            self._writer = None
            return
        await self._queue.put(None)
        await self._writer
        self._writer = None


# ---------------------------------------------------------------------------
# Database backend
# ---------------------------------------------------------------------------
class DatabaseHistoryBackend:
    """History rows via SQLAlchemy. Methods are blocking; call them in a thread."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    def insert(self, entry: HistoryEntry) -> None:
        with self.db.get_session() as session:
            session.add(HistoryRecord(
                original_code=entry.original_code,
                language=entry.language,
                fixed_code=entry.fixed_code,
                explanation=entry.explanation,
                report=entry.report.to_wire(),
                model_name=entry.model,
                created_at=entry.created_at,
            ))

    def recent(self, limit: int) -> List[HistoryEntry]:
        with self.db.get_session() as session:
            rows = (
                session.query(HistoryRecord)
                .order_by(HistoryRecord.created_at.desc())
                .limit(limit)
                .all()
            )
            return [self._to_entry(row) for row in rows]

    @staticmethod
    def _to_entry(row: HistoryRecord) -> HistoryEntry:
        return HistoryEntry(
            original_code=row.original_code,
            language=row.language,
            fixed_code=row.fixed_code,
            explanation=row.explanation or "",
            report=CanonicalReport.model_validate(row.report),
            model=row.model_name,
            created_at=row.created_at,
        )


def _is_connection_error(error: Exception) -> bool:
    return isinstance(error, OperationalError) or (
        isinstance(error, DBAPIError) and error.connection_invalidated
    )


# ---------------------------------------------------------------------------
# Store (gateway)
# ---------------------------------------------------------------------------
class HistoryStore:
    """
    Uniform record/recent interface over the database and file backends.

    Parameters
    ----------
    file_backend : FileHistoryBackend
        Always present; used whenever the database is not ready.
    db : DatabaseManager or None
        Optional database; its is_ready() flag selects the backend per call.
    read_limit : int
        Default number of entries returned by recent().
    """

    def __init__(
        self,
        file_backend: FileHistoryBackend,
        db: Optional[DatabaseManager] = None,
        read_limit: int = 10,
    ) -> None:
        self.file_backend = file_backend
        self.db = db
        self.db_backend = DatabaseHistoryBackend(db) if db is not None else None
        self.read_limit = read_limit

    def _db_ready(self) -> bool:
        return self.db is not None and self.db.is_ready()

    @property
    def backend_name(self) -> str:
        return "database" if self._db_ready() else "file"

    async def start(self) -> None:
        self.file_backend.load()
        if self.db is not None:
            await asyncio.to_thread(self.db.connect)

    async def close(self) -> None:
        await self.file_backend.close()
        if self.db is not None:
            self.db.dispose()

    async def record(self, entry: HistoryEntry) -> None:
        """Persist one entry. Never raises."""
        if self._db_ready():
            try:
                await asyncio.to_thread(self.db_backend.insert, entry)
                return
            except Exception as e:
                if not _is_connection_error(e):
                    logger.error("Failed to save history entry to database: %s", e, exc_info=True)
                    return
                self.db.mark_unavailable(str(e))
                logger.warning("Database unreachable; writing history entry to file instead")

        try:
            await self.file_backend.record(entry)
        except Exception as e:
            logger.error("Failed to save history entry to file: %s", e, exc_info=True)

    async def recent(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        """Most recent entries, newest first."""
        limit = self.read_limit if limit is None else limit
        if self._db_ready():
            try:
                return await asyncio.to_thread(self.db_backend.recent, limit)
            except Exception as e:
                if not _is_connection_error(e):
                    raise
                self.db.mark_unavailable(str(e))
        return self.file_backend.recent(limit)


def build_history_store(
    history_file: Optional[str] = None,
    database_url: Optional[str] = None,
) -> HistoryStore:
    """Construct the store from configuration (arguments override config)."""
    file_backend = FileHistoryBackend(
        history_file or config.HISTORY_FILE,
        max_items=config.MAX_HISTORY_ITEMS,
    )
    url = database_url if database_url is not None else config.DATABASE_URL
    db = DatabaseManager(url, disabled=config.DB_DISABLED) if url else None
    return HistoryStore(file_backend, db=db, read_limit=config.HISTORY_READ_LIMIT)
