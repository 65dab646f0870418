#!/usr/bin/env python3
"""
Database models and operations for the trends pipeline.

This module contains all database-related classes and functions,
providing a clean separation between data access and business logic.
Every operation runs on a single worker task that owns the SQLite
connection; callers go through DatabaseQueue.execute().
"""

from os import path, access, R_OK
from time import time
from sqlite3 import connect, Row, Error
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Dict, List, Optional, Any, Iterable
import math

from config import config, get_logger
from telemetry import trace_span
from youtube import normalize_youtube_link

logger = get_logger("models")

# Terminal summary states. NULL means "not attempted yet".
SUMMARY_UNAVAILABLE = "[요약 불가]"
SUMMARY_NO_TRANSCRIPT = "[자막 없음]"
SUMMARY_FAILED = "[요약 실패]"
SUMMARY_INVALID_URL = "[URL 파싱 실패]"
SENTINEL_SUMMARIES = (
    SUMMARY_UNAVAILABLE,
    SUMMARY_NO_TRANSCRIPT,
    SUMMARY_FAILED,
    SUMMARY_INVALID_URL,
)

# Markers left by an earlier English prompt format
ENGLISH_SUMMARY_MARKERS = ("Main topic", "Expected topic", "Key points", "Video title:")

PRUNABLE_TABLES = ("videos", "news")

_SENTINEL_PLACEHOLDERS = ','.join('?' for _ in SENTINEL_SUMMARIES)


def is_sentinel_summary(summary: Optional[str]) -> bool:
    return summary in SENTINEL_SUMMARIES


def initialize_database(conn) -> None:
    """Initialize the database with the defined schema from SQL file."""
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='videos'")
        videos_table_exists = cursor.fetchone() is not None

        if not videos_table_exists:
            logger.info("Database is new or empty. Initializing schema.")
            schema_sql = _read_schema_file()
            cursor.executescript(schema_sql)
            conn.commit()
            logger.info("Database schema initialized successfully")
        else:
            logger.info("Database already exists with proper schema")
            _run_migrations(conn)

    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        cursor.close()


def _run_migrations(conn) -> None:
    """Run any necessary database migrations."""
    cursor = conn.cursor()

    try:
        # Migration 1: email_sent flag on videos
        cursor.execute("PRAGMA table_info(videos)")
        columns = [column[1] for column in cursor.fetchall()]
        if 'email_sent' not in columns:
            logger.info("Adding email_sent column to videos table")
            cursor.execute("ALTER TABLE videos ADD COLUMN email_sent INTEGER NOT NULL DEFAULT 0")
            conn.commit()
            logger.info("Migration completed: added email_sent column")

        # Migration 2: channel registry (databases created before channel management)
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='channels'")
        if cursor.fetchone() is None:
            logger.info("Creating channels table")
            cursor.execute("""
                CREATE TABLE channels (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    channel_id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    category TEXT NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at INTEGER NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_channels_active ON channels(active)")
            conn.commit()
            logger.info("Migration completed: created channels table")

    except Exception as e:
        logger.error(f"Error running migrations: {e}")
        raise
    finally:
        cursor.close()


def _read_schema_file() -> str:
    """Read the schema from the SQL file."""
    schema_path = config.SCHEMA_FILE_PATH

    try:
        if not path.isfile(schema_path):
            raise FileNotFoundError(f"Schema file not found at {schema_path}")

        if not access(schema_path, R_OK):
            raise PermissionError(f"No read permission for schema file at {schema_path}")

        file_size = path.getsize(schema_path)
        max_size = config.SCHEMA_FILE_SIZE_LIMIT_MB * 1024 * 1024
        if file_size > max_size:
            raise ValueError(f"Schema file too large: {file_size} bytes (limit: {max_size} bytes)")

        with open(schema_path, 'r', encoding='utf-8') as f:
            return f.read()
    except Exception as e:
        logger.error(f"Error reading schema file: {e}")
        raise


def _video_row(row) -> Dict[str, Any]:
    return {
        'id': row['id'],
        'title': row['title'],
        'link': row['link'],
        'pub_date': row['pub_date'],
        'source': row['source'],
        'thumbnail': row['thumbnail'],
        'summary': row['summary'],
        'email_sent': bool(row['email_sent']),
        'created_at': row['created_at'],
    }


def _news_row(row) -> Dict[str, Any]:
    return {
        'id': row['id'],
        'title': row['title'],
        'link': row['link'],
        'pub_date': row['pub_date'],
        'source': row['source'],
        'summary': row['summary'],
        'created_at': row['created_at'],
    }


def _channel_row(row) -> Dict[str, Any]:
    return {
        'channel_id': row['channel_id'],
        'name': row['name'],
        'category': row['category'],
        'active': bool(row['active']),
        'created_at': row['created_at'],
    }


class DatabaseQueue:
    """A queue for database operations to ensure thread safety."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None
        self._ready = Event()
        self._startup_error: Optional[BaseException] = None

    async def start(self) -> None:
        """Start the database worker and wait until the schema is in place."""
        if self.running:
            return

        self.running = True
        self._ready.clear()
        self._startup_error = None
        self.worker_task = create_task(self._worker())
        await self._ready.wait()
        if self._startup_error is not None:
            self.running = False
            raise self._startup_error
        logger.info("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker."""
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass

        if self.conn:
            self.conn.close()
            self.conn = None

        # Release anyone still waiting on an operation
        for event in self.events.values():
            event.set()
        self.events.clear()
        self.results.clear()

        logger.info("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing database operations."""
        if not path.isfile(self.db_path):
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")
        else:
            logger.info(f"Using existing database at {self.db_path}")

        try:
            self.conn = connect(self.db_path)
            self.conn.row_factory = Row
            initialize_database(self.conn)
        except Exception as e:
            self._startup_error = e
            self._ready.set()
            return
        self._ready.set()

        while self.running:
            try:
                try:
                    operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                try:
                    if hasattr(self, operation_name):
                        method = getattr(self, operation_name)
                        result = method(**params)
                        self.results[operation_id] = {"result": result}
                    else:
                        self.results[operation_id] = {"error": f"Unknown operation: {operation_name}"}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    self.results[operation_id] = {"error": str(e)}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.info("Database worker cancelled")
                break
            except Exception as e:
                logger.error(f"Unexpected error in database worker: {e}")

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {
            "db.operation": operation_name,
            "db.params.keys": ",".join(sorted(params.keys())) if params else "",
        },
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a database operation."""
        operation_id = str(uuid4())

        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()

            result = self.results.pop(operation_id, {"error": "Database worker stopped"})
            if "error" in result:
                raise Exception(result["error"])

            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Video Operations
    def upsert_videos(self, items: List[Dict[str, Any]], max_rows: Optional[int] = None) -> Dict[str, int]:
        """Insert or refresh videos keyed by canonical link, then enforce retention.

        Title, publish date, source and thumbnail are overwritten on conflict;
        summary and email_sent are never touched here.

        Returns:
            Dict with counts: inserted, updated, pruned
        """
        inserted = updated = 0
        cursor = None
        try:
            cursor = self.conn.cursor()
            now = int(time())
            for item in items:
                link = normalize_youtube_link(item['link'])
                cursor.execute("SELECT id FROM videos WHERE link = ?", (link,))
                exists = cursor.fetchone() is not None
                cursor.execute("""
                    INSERT INTO videos (link, title, pub_date, source, thumbnail, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(link) DO UPDATE SET
                        title = excluded.title,
                        pub_date = excluded.pub_date,
                        source = excluded.source,
                        thumbnail = excluded.thumbnail
                """, (
                    link,
                    item.get('title') or "No Title",
                    int(item.get('pub_date') or now),
                    item.get('source') or '',
                    item.get('thumbnail'),
                    now,
                ))
                if exists:
                    updated += 1
                else:
                    inserted += 1
            self.conn.commit()
        except Error as e:
            logger.error(f"Error upserting videos: {e}")
            self.conn.rollback()
            return {'inserted': 0, 'updated': 0, 'pruned': 0}
        finally:
            if cursor:
                cursor.close()

        pruned = self.prune_table('videos', max_rows or config.MAX_STORED_ROWS)
        return {'inserted': inserted, 'updated': updated, 'pruned': pruned}

    def upsert_news(self, items: List[Dict[str, Any]], max_rows: Optional[int] = None) -> Dict[str, int]:
        """Insert or refresh news keyed by raw link, then enforce retention."""
        inserted = updated = 0
        cursor = None
        try:
            cursor = self.conn.cursor()
            now = int(time())
            for item in items:
                link = item['link']
                cursor.execute("SELECT id FROM news WHERE link = ?", (link,))
                exists = cursor.fetchone() is not None
                cursor.execute("""
                    INSERT INTO news (link, title, pub_date, source, summary, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(link) DO UPDATE SET
                        title = excluded.title,
                        pub_date = excluded.pub_date,
                        source = excluded.source
                """, (
                    link,
                    item.get('title') or "No Title",
                    int(item.get('pub_date') or now),
                    item.get('source') or "Google News",
                    item.get('summary'),
                    now,
                ))
                if exists:
                    updated += 1
                else:
                    inserted += 1
            self.conn.commit()
        except Error as e:
            logger.error(f"Error upserting news: {e}")
            self.conn.rollback()
            return {'inserted': 0, 'updated': 0, 'pruned': 0}
        finally:
            if cursor:
                cursor.close()

        pruned = self.prune_table('news', max_rows or config.MAX_STORED_ROWS)
        return {'inserted': inserted, 'updated': updated, 'pruned': pruned}

    def prune_table(self, table: str, max_rows: int) -> int:
        """Retain only the ``max_rows`` most recently published rows of a table.

        Returns:
            Number of rows deleted.
        """
        if table not in PRUNABLE_TABLES:
            raise ValueError(f"Cannot prune table {table}")
        if max_rows <= 0:
            return 0
        cursor = None
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                DELETE FROM {table} WHERE id IN (
                    SELECT id FROM {table}
                    ORDER BY pub_date DESC, id DESC
                    LIMIT -1 OFFSET ?
                )
            """, (max_rows,))
            deleted = cursor.rowcount
            self.conn.commit()
            if deleted > 0:
                logger.info("Pruned %d old rows from %s (kept %d)", deleted, table, max_rows)
            return deleted
        except Error as e:
            logger.error(f"Error pruning {table}: {e}")
            try:
                self.conn.rollback()
            except Exception:
                pass
            return 0
        finally:
            if cursor:
                cursor.close()

    def list_pending_videos(self, limit: int) -> List[Dict[str, Any]]:
        """Unsummarized videos, newest first."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT * FROM videos WHERE summary IS NULL ORDER BY pub_date DESC LIMIT ?",
                (limit,),
            )
            return [_video_row(row) for row in cursor.fetchall()]
        except Error as e:
            logger.error(f"Error listing pending videos: {e}")
            return []

    def list_pending_news(self, limit: int) -> List[Dict[str, Any]]:
        """Unsummarized news, newest first."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT * FROM news WHERE summary IS NULL ORDER BY pub_date DESC LIMIT ?",
                (limit,),
            )
            return [_news_row(row) for row in cursor.fetchall()]
        except Error as e:
            logger.error(f"Error listing pending news: {e}")
            return []

    def update_video_summary(self, video_id: int, summary: str) -> bool:
        try:
            cursor = self.conn.cursor()
            cursor.execute("UPDATE videos SET summary = ? WHERE id = ?", (summary, video_id))
            self.conn.commit()
            return cursor.rowcount > 0
        except Error as e:
            logger.error(f"Error updating summary for video {video_id}: {e}")
            return False

    def update_news_summary(self, news_id: int, summary: str) -> bool:
        try:
            cursor = self.conn.cursor()
            cursor.execute("UPDATE news SET summary = ? WHERE id = ?", (summary, news_id))
            self.conn.commit()
            return cursor.rowcount > 0
        except Error as e:
            logger.error(f"Error updating summary for news {news_id}: {e}")
            return False

    def reset_failed_summaries(self) -> int:
        """Null out sentinel summaries so the next batch retries them."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                f"UPDATE videos SET summary = NULL WHERE summary IN ({_SENTINEL_PLACEHOLDERS})",
                SENTINEL_SUMMARIES,
            )
            count = cursor.rowcount
            self.conn.commit()
            logger.info(f"Reset {count} failed summaries")
            return count
        except Error as e:
            logger.error(f"Error resetting failed summaries: {e}")
            return 0

    def reset_english_summaries(self) -> List[str]:
        """Null out summaries produced in the old English format.

        Returns:
            Titles of the videos that were reset.
        """
        clause = " OR ".join("summary LIKE ?" for _ in ENGLISH_SUMMARY_MARKERS)
        params = [f"%{marker}%" for marker in ENGLISH_SUMMARY_MARKERS]
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"SELECT id, title FROM videos WHERE {clause}", params)
            rows = cursor.fetchall()
            if not rows:
                return []
            ids = [row['id'] for row in rows]
            placeholders = ','.join('?' for _ in ids)
            cursor.execute(f"UPDATE videos SET summary = NULL WHERE id IN ({placeholders})", ids)
            self.conn.commit()
            logger.info(f"Reset {len(ids)} English-format summaries")
            return [row['title'] for row in rows]
        except Error as e:
            logger.error(f"Error resetting English summaries: {e}")
            return []

    def delete_videos_before(self, cutoff_ts: int) -> int:
        try:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM videos WHERE pub_date < ?", (cutoff_ts,))
            deleted = cursor.rowcount
            self.conn.commit()
            logger.info(f"Deleted {deleted} videos published before {cutoff_ts}")
            return deleted
        except Error as e:
            logger.error(f"Error deleting videos before {cutoff_ts}: {e}")
            return 0

    # Distribution Operations
    def select_email_candidates(self) -> List[Dict[str, Any]]:
        """Unsent videos with a real (non-sentinel) summary, newest first."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                SELECT * FROM videos
                WHERE email_sent = 0
                AND summary IS NOT NULL
                AND summary != ''
                AND summary NOT IN ({_SENTINEL_PLACEHOLDERS})
                ORDER BY pub_date DESC
            """, SENTINEL_SUMMARIES)
            return [_video_row(row) for row in cursor.fetchall()]
        except Error as e:
            logger.error(f"Error selecting email candidates: {e}")
            return []

    def mark_videos_emailed(self, ids: List[int]) -> int:
        if not ids:
            return 0
        try:
            cursor = self.conn.cursor()
            placeholders = ','.join('?' for _ in ids)
            cursor.execute(f"UPDATE videos SET email_sent = 1 WHERE id IN ({placeholders})", list(ids))
            count = cursor.rowcount
            self.conn.commit()
            logger.debug(f"Database: marked {count} videos as emailed")
            return count
        except Error as e:
            logger.error(f"Error marking videos as emailed {ids}: {e}")
            return 0

    def select_notion_candidates(self, limit: int, since_ts: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recently published summarized videos, optionally only rows created since ``since_ts``."""
        params: List[Any] = list(SENTINEL_SUMMARIES)
        since_clause = ""
        if since_ts is not None:
            since_clause = " AND created_at >= ?"
            params.append(since_ts)
        params.append(limit)
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                SELECT * FROM videos
                WHERE summary IS NOT NULL
                AND summary != ''
                AND summary NOT IN ({_SENTINEL_PLACEHOLDERS}){since_clause}
                ORDER BY pub_date DESC
                LIMIT ?
            """, params)
            return [_video_row(row) for row in cursor.fetchall()]
        except Error as e:
            logger.error(f"Error selecting notes candidates: {e}")
            return []

    # Maintenance Operations
    def find_video_duplicates(self) -> List[Dict[str, Any]]:
        """All video rows (id, link, pub_date), newest first, for duplicate grouping."""
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT id, link, pub_date FROM videos ORDER BY pub_date DESC")
            return [{'id': row['id'], 'link': row['link'], 'pub_date': row['pub_date']}
                    for row in cursor.fetchall()]
        except Error as e:
            logger.error(f"Error reading videos for duplicate check: {e}")
            return []

    def delete_videos(self, ids: Iterable[int]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        try:
            cursor = self.conn.cursor()
            placeholders = ','.join('?' for _ in ids)
            cursor.execute(f"DELETE FROM videos WHERE id IN ({placeholders})", ids)
            deleted = cursor.rowcount
            self.conn.commit()
            return deleted
        except Error as e:
            logger.error(f"Error deleting videos {ids}: {e}")
            self.conn.rollback()
            return 0

    # Statistics Operations
    def count_summaries(self, table: str = 'videos') -> Dict[str, int]:
        """Pending (NULL), summarized (real text) and failed (sentinel) counts."""
        if table not in PRUNABLE_TABLES:
            raise ValueError(f"Unknown table {table}")
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                SELECT
                    SUM(CASE WHEN summary IS NULL THEN 1 ELSE 0 END) AS pending,
                    SUM(CASE WHEN summary IN ({_SENTINEL_PLACEHOLDERS}) THEN 1 ELSE 0 END) AS failed,
                    COUNT(*) AS total
                FROM {table}
            """, SENTINEL_SUMMARIES)
            row = cursor.fetchone()
            pending = row['pending'] or 0
            failed = row['failed'] or 0
            total = row['total'] or 0
            return {
                'pending': pending,
                'summarized': total - pending - failed,
                'failed': failed,
                'total': total,
            }
        except Error as e:
            logger.error(f"Error counting summaries in {table}: {e}")
            return {'pending': 0, 'summarized': 0, 'failed': 0, 'total': 0}

    def get_stats(self) -> Dict[str, Any]:
        """Active channel count plus row counts and publish-date range per table."""
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM channels WHERE active = 1")
            channels = cursor.fetchone()[0]
            stats: Dict[str, Any] = {'channels': channels}
            for table in PRUNABLE_TABLES:
                cursor.execute(f"SELECT COUNT(*), MIN(pub_date), MAX(pub_date) FROM {table}")
                count, oldest, latest = cursor.fetchone()
                stats[table] = {'count': count, 'oldest': oldest, 'latest': latest}
            return stats
        except Error as e:
            logger.error(f"Error reading stats: {e}")
            return {'channels': 0,
                    'videos': {'count': 0, 'oldest': None, 'latest': None},
                    'news': {'count': 0, 'oldest': None, 'latest': None}}

    def count_videos_by_source(self) -> Dict[str, int]:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT source, COUNT(*) AS n FROM videos GROUP BY source")
            return {row['source']: row['n'] for row in cursor.fetchall()}
        except Error as e:
            logger.error(f"Error counting videos by source: {e}")
            return {}

    def get_channel_stats(self) -> Dict[str, Any]:
        """Per active channel video counts, busiest first."""
        by_source = self.count_videos_by_source()
        channels = [
            {'name': channel['name'], 'count': by_source.get(channel['name'], 0)}
            for channel in self.list_active_channels()
        ]
        channels.sort(key=lambda c: c['count'], reverse=True)
        return {
            'channels': channels,
            'totalVideos': sum(by_source.values()),
            'channelsWithData': sum(1 for c in channels if c['count'] > 0),
            'channelsWithoutData': sum(1 for c in channels if c['count'] == 0),
        }

    def _page(self, table: str, row_mapper, page: int, page_size: int,
              where: str = "", params: Optional[List[Any]] = None) -> Dict[str, Any]:
        params = params or []
        cursor = self.conn.cursor()
        cursor.execute(f"SELECT COUNT(*) FROM {table}{where}", params)
        total = cursor.fetchone()[0]
        cursor.execute(
            f"SELECT * FROM {table}{where} ORDER BY pub_date DESC LIMIT ? OFFSET ?",
            params + [page_size, (page - 1) * page_size],
        )
        return {
            'items': [row_mapper(row) for row in cursor.fetchall()],
            'total': total,
            'page': page,
            'pageSize': page_size,
            'totalPages': math.ceil(total / page_size) if page_size else 0,
        }

    def get_news_page(self, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        try:
            return self._page('news', _news_row, page, page_size)
        except Error as e:
            logger.error(f"Error reading news page {page}: {e}")
            return {'items': [], 'total': 0, 'page': page, 'pageSize': page_size, 'totalPages': 0}

    def get_videos_page(self, page: int = 1, page_size: int = 20, source: Optional[str] = None) -> Dict[str, Any]:
        try:
            if source:
                return self._page('videos', _video_row, page, page_size, " WHERE source = ?", [source])
            return self._page('videos', _video_row, page, page_size)
        except Error as e:
            logger.error(f"Error reading videos page {page}: {e}")
            return {'items': [], 'total': 0, 'page': page, 'pageSize': page_size, 'totalPages': 0}

    # Channel Registry Operations
    def list_channels(self) -> List[Dict[str, Any]]:
        """All registered channels, active or not, by category then name."""
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM channels ORDER BY category ASC, name ASC")
            return [_channel_row(row) for row in cursor.fetchall()]
        except Error as e:
            logger.error(f"Error listing channels: {e}")
            return []

    def list_active_channels(self) -> List[Dict[str, Any]]:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM channels WHERE active = 1 ORDER BY category ASC, name ASC")
            return [_channel_row(row) for row in cursor.fetchall()]
        except Error as e:
            logger.error(f"Error listing active channels: {e}")
            return []

    def add_channel(self, channel_id: str, name: str, category: str) -> bool:
        """Register a channel, or update and reactivate an existing registration."""
        try:
            cursor = self.conn.cursor()
            cursor.execute("""
                INSERT INTO channels (channel_id, name, category, active, created_at)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(channel_id) DO UPDATE SET
                    name = excluded.name,
                    category = excluded.category,
                    active = 1
            """, (channel_id, name, category, int(time())))
            self.conn.commit()
            return True
        except Error as e:
            logger.error(f"Error adding channel {channel_id}: {e}")
            return False

    def seed_channels(self, channels: List[Dict[str, str]]) -> int:
        """Insert seed channels that are not registered yet.

        Existing registrations, including soft-removed ones, are left as they are.

        Returns:
            Number of channels inserted.
        """
        inserted = 0
        try:
            cursor = self.conn.cursor()
            now = int(time())
            for channel in channels:
                cursor.execute(
                    "INSERT OR IGNORE INTO channels (channel_id, name, category, active, created_at) "
                    "VALUES (?, ?, ?, 1, ?)",
                    (channel['channel_id'], channel['name'], channel['category'], now),
                )
                inserted += cursor.rowcount
            self.conn.commit()
            if inserted:
                logger.info(f"Seeded {inserted} channels")
            return inserted
        except Error as e:
            logger.error(f"Error seeding channels: {e}")
            return 0

    def remove_channel(self, channel_id: str) -> bool:
        """Soft-remove a channel; returns False when it is not registered."""
        try:
            cursor = self.conn.cursor()
            cursor.execute("UPDATE channels SET active = 0 WHERE channel_id = ?", (channel_id,))
            self.conn.commit()
            return cursor.rowcount > 0
        except Error as e:
            logger.error(f"Error removing channel {channel_id}: {e}")
            return False
