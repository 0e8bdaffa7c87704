import asyncio
import contextlib

import config
from models import FolderState, SyncCursor
from utils import utc_now_iso

class FolderCheckpoint:
    def __init__(self, store, user_email: str, folder: str):
        """Sync progress for one (user_email, folder) pair. Relies on MailCacheStore for persistence.

        Args:
            store: An instance of MailCacheStore.
            user_email: Mailbox identity used as the cache partition key.
            folder: Folder name on the server.
        """
        self.store = store
        self.user_email = user_email
        self.folder = folder
        self._loaded = False

        # Internal state attributes, loaded from the store
        self.cursor: SyncCursor | None = None
        self.failed_uids: dict[int, int] = {}

    async def _ensure_state_loaded(self):
        if self._loaded:
            return
        self.cursor = await self.store.load_sync_state(self.user_email, self.folder)
        self.failed_uids = await self.store.get_failed_uids(self.user_email, self.folder)
        self._loaded = True

    async def get_cursor(self) -> SyncCursor | None:
        await self._ensure_state_loaded()
        return self.cursor

    async def invalidate(self):
        """Drop every cached message and failed-UID record of the folder (new UIDVALIDITY epoch)."""
        await self._ensure_state_loaded()
        await self.store.delete_folder_messages(self.user_email, self.folder)
        await self.store.clear_failed_uids(self.user_email, self.folder)
        self.cursor = None
        self.failed_uids = {}

    async def advance(self, state: FolderState):
        """Persist the folder state observed at SELECT time as the new cursor."""
        self.cursor = SyncCursor(
            user_email=self.user_email,
            folder=self.folder,
            uid_validity=state.uid_validity,
            uid_next=state.uid_next,
            last_synced_at=utc_now_iso(),
        )
        await self.store.save_sync_state(self.cursor)

    async def add_failed_uid(self, uid):
        """Record a failed UID or increment its retry count."""
        await self._ensure_state_loaded()
        uid = int(uid)
        retry_count = self.failed_uids.get(uid, 0) + 1
        self.failed_uids[uid] = retry_count
        await self.store.add_or_update_failed_uid(self.user_email, self.folder, uid, retry_count)

    async def clear_failed_uid(self, uid):
        await self._ensure_state_loaded()
        uid = int(uid)
        if uid in self.failed_uids:
            del self.failed_uids[uid]
            await self.store.remove_failed_uid(self.user_email, self.folder, uid)

    async def get_uids_to_retry(self, max_retries: int = config.MAX_UID_FETCH_RETRIES) -> list[int]:
        """UIDs that have failed less than max_retries times, ascending."""
        await self._ensure_state_loaded()
        return sorted(uid for uid, count in self.failed_uids.items() if count < max_retries)

    async def get_permanently_failed_uids(self, max_retries: int = config.MAX_UID_FETCH_RETRIES) -> list[int]:
        await self._ensure_state_loaded()
        return sorted(uid for uid, count in self.failed_uids.items() if count >= max_retries)


class FolderLockRegistry:
    """One asyncio.Lock per (user_email, folder) so two runs never interleave on a cursor.

    A lock only lives while some run holds or waits for it, so the registry
    stays as small as the number of folders being synced right now.
    """

    def __init__(self):
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._users: dict[tuple[str, str], int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, user_email, folder):
        key = (user_email, folder)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        lock = self._locks[key]
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield lock
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]
