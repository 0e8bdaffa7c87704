import aiosqlite

from errors import CacheWriteError
from models import CachedMessage, SyncCursor
from utils import debug_print

MESSAGE_COLUMNS = (
    'user_email', 'folder', 'uid', 'flags', 'subject', 'from_address', 'to_address',
    'date', 'snippet', 'has_attachments', 'synced_at',
)

class MailCacheStore:
    """SQLite-backed cache of folder cursors and message headers."""

    def __init__(self, db_path):
        self.db_path = db_path
        self.db = None

    async def connect(self):
        """Connect to the database"""
        self.db = await aiosqlite.connect(self.db_path)
        self.db.row_factory = aiosqlite.Row
        await self.setup_schema()
        return self.db

    async def close(self):
        """Close the database connection"""
        if self.db:
            await self.db.commit()
            await self.db.close()
            self.db = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def setup_schema(self):
        """Set up the database schema"""
        await self.db.execute("PRAGMA journal_mode=WAL;")
        await self.db.execute("PRAGMA synchronous=NORMAL;")

        await self.db.execute('''
            CREATE TABLE IF NOT EXISTS mail_sync_state (
                user_email TEXT NOT NULL,
                folder TEXT NOT NULL,
                uidvalidity INTEGER NOT NULL,
                uidnext INTEGER NOT NULL,
                last_sync_at TEXT,
                PRIMARY KEY (user_email, folder)
            )
        ''')

        await self.db.execute('''
            CREATE TABLE IF NOT EXISTS mail_messages (
                user_email TEXT NOT NULL,
                folder TEXT NOT NULL,
                uid INTEGER NOT NULL,
                subject TEXT,
                from_address TEXT,
                to_address TEXT,
                date TEXT,
                flags TEXT DEFAULT '[]', -- JSON array of flag tokens
                snippet TEXT,
                has_attachments INTEGER DEFAULT 0,
                synced_at TEXT,
                PRIMARY KEY (user_email, folder, uid)
            )
        ''')
        await self.db.execute('CREATE INDEX IF NOT EXISTS idx_mail_messages_date ON mail_messages(date)')
        await self.db.execute('CREATE INDEX IF NOT EXISTS idx_mail_messages_from ON mail_messages(from_address)')

        # UIDs whose fetch or upsert failed, retried on later runs
        await self.db.execute('''
            CREATE TABLE IF NOT EXISTS mail_failed_uids (
                user_email TEXT NOT NULL,
                folder TEXT NOT NULL,
                uid INTEGER NOT NULL,
                retry_count INTEGER DEFAULT 1,
                PRIMARY KEY (user_email, folder, uid)
            )
        ''')
        await self.db.commit()

    async def _write(self, sql, params):
        try:
            await self.db.execute(sql, params)
            await self.db.commit()
        except aiosqlite.Error as e:
            raise CacheWriteError(f"Cache write failed: {e}") from e

    # --- Sync state ---

    async def load_sync_state(self, user_email, folder):
        """Return the stored SyncCursor for a folder, or None."""
        async with self.db.execute(
            "SELECT uidvalidity, uidnext, last_sync_at FROM mail_sync_state WHERE user_email = ? AND folder = ?",
            (user_email, folder)
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return SyncCursor(
            user_email=user_email,
            folder=folder,
            uid_validity=row['uidvalidity'],
            uid_next=row['uidnext'],
            last_synced_at=row['last_sync_at'],
        )

    async def save_sync_state(self, sync_cursor: SyncCursor):
        await self._write('''
            INSERT INTO mail_sync_state (user_email, folder, uidvalidity, uidnext, last_sync_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_email, folder) DO UPDATE SET
                uidvalidity = excluded.uidvalidity,
                uidnext = excluded.uidnext,
                last_sync_at = excluded.last_sync_at
        ''', (sync_cursor.user_email, sync_cursor.folder, sync_cursor.uid_validity,
              sync_cursor.uid_next, sync_cursor.last_synced_at))

    async def get_sync_states(self, user_email):
        async with self.db.execute(
            "SELECT folder, uidvalidity, uidnext, last_sync_at FROM mail_sync_state WHERE user_email = ? ORDER BY folder",
            (user_email,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            SyncCursor(user_email, row['folder'], row['uidvalidity'], row['uidnext'], row['last_sync_at'])
            for row in rows
        ]

    # --- Messages ---

    async def upsert_message(self, message: CachedMessage):
        """Insert or overwrite the row keyed by (user_email, folder, uid)."""
        row = message.to_row()
        placeholders = ', '.join('?' for _ in MESSAGE_COLUMNS)
        updates = ', '.join(f"{col} = excluded.{col}" for col in MESSAGE_COLUMNS[3:])
        await self._write(
            f"INSERT INTO mail_messages ({', '.join(MESSAGE_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(user_email, folder, uid) DO UPDATE SET {updates}",
            tuple(row[col] for col in MESSAGE_COLUMNS)
        )

    async def delete_folder_messages(self, user_email, folder):
        debug_print(f"Deleting cached messages for {user_email}/{folder}")
        await self._write(
            "DELETE FROM mail_messages WHERE user_email = ? AND folder = ?",
            (user_email, folder)
        )

    async def get_messages(self, user_email, folder=None, limit=None):
        """Cached messages, newest UID first."""
        sql = f"SELECT {', '.join(MESSAGE_COLUMNS)} FROM mail_messages WHERE user_email = ?"
        params = [user_email]
        if folder:
            sql += " AND folder = ?"
            params.append(folder)
        sql += " ORDER BY folder, uid DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))
        async with self.db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [CachedMessage.from_row(dict(row)) for row in rows]

    async def count_messages(self, user_email, folder=None):
        sql = "SELECT COUNT(*) FROM mail_messages WHERE user_email = ?"
        params = [user_email]
        if folder:
            sql += " AND folder = ?"
            params.append(folder)
        async with self.db.execute(sql, params) as cursor:
            row = await cursor.fetchone()
        return row[0]

    # --- Failed UIDs ---

    async def get_failed_uids(self, user_email, folder):
        """Return {uid: retry_count} for a folder."""
        async with self.db.execute(
            "SELECT uid, retry_count FROM mail_failed_uids WHERE user_email = ? AND folder = ?",
            (user_email, folder)
        ) as cursor:
            rows = await cursor.fetchall()
        return {row['uid']: row['retry_count'] for row in rows}

    async def add_or_update_failed_uid(self, user_email, folder, uid, retry_count):
        await self._write('''
            INSERT INTO mail_failed_uids (user_email, folder, uid, retry_count)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_email, folder, uid) DO UPDATE SET retry_count = excluded.retry_count
        ''', (user_email, folder, int(uid), retry_count))

    async def remove_failed_uid(self, user_email, folder, uid):
        await self._write(
            "DELETE FROM mail_failed_uids WHERE user_email = ? AND folder = ? AND uid = ?",
            (user_email, folder, int(uid))
        )

    async def clear_failed_uids(self, user_email, folder):
        await self._write(
            "DELETE FROM mail_failed_uids WHERE user_email = ? AND folder = ?",
            (user_email, folder)
        )
