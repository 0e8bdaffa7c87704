from tqdm import tqdm

import config
from checkpoint import FolderCheckpoint, FolderLockRegistry
from errors import AuthError, CacheWriteError, ConnectError, FetchParseError, FolderStateError, ImapReadError
from imap_client import ImapConnection
from imap_codec import (
    format_list, format_login, format_logout, format_select, format_uid_fetch, format_uid_search,
    parse_envelope, parse_folder_list, parse_folder_state, parse_login_result, parse_uid_list,
)
from models import FolderResult, ImapConfig, SyncReport
from utils import debug_print

class FolderSynchronizer:
    """Brings one folder's cache in line with the server over an authenticated connection."""

    def __init__(self, connection: ImapConnection, store, user_email, show_progress=False):
        self.connection = connection
        self.store = store
        self.user_email = user_email
        self.show_progress = show_progress

    async def select(self, folder):
        _tag, response = await self.connection.command(format_select, folder)
        state = parse_folder_state(response)
        if state is None:
            raise FolderStateError(f"Could not read UIDVALIDITY/UIDNEXT for folder {folder}")
        debug_print(f"{folder}: UIDVALIDITY={state.uid_validity} UIDNEXT={state.uid_next}")
        return state

    async def search(self, criteria):
        _tag, response = await self.connection.command(format_uid_search, criteria)
        return parse_uid_list(response)

    async def fetch_message(self, folder, uid):
        _tag, response = await self.connection.command(format_uid_fetch, uid)
        return parse_envelope(response, uid, folder, self.user_email)

    async def process_message(self, checkpoint: FolderCheckpoint, folder, uid):
        """Fetch and cache a single message. Returns True when the row was written."""
        try:
            message = await self.fetch_message(folder, uid)
            await self.store.upsert_message(message)
        except (FetchParseError, CacheWriteError) as e:
            print(f"Failed to sync UID {uid} in {folder}: {e}")
            await checkpoint.add_failed_uid(uid)
            return False
        await checkpoint.clear_failed_uid(uid)
        return True

    async def sync_folder(self, folder):
        """Sync one folder and return the number of messages written to the cache."""
        print(f"Syncing folder: {folder}")
        checkpoint = FolderCheckpoint(self.store, self.user_email, folder)
        state = await self.select(folder)

        cursor = await checkpoint.get_cursor()
        if cursor and cursor.uid_validity != state.uid_validity:
            print(f"UIDVALIDITY of {folder} changed ({cursor.uid_validity} -> {state.uid_validity}), full resync required")
            await checkpoint.invalidate()
            cursor = None

        if cursor is None:
            uids = await self.search('ALL')
        else:
            # "N:*" always matches the highest UID, even when it is below N
            uids = [uid for uid in await self.search(f"UID {cursor.uid_next}:*") if uid >= cursor.uid_next]

        new_uids = set(uids)
        retry_uids = [uid for uid in await checkpoint.get_uids_to_retry() if uid not in new_uids]
        given_up = await checkpoint.get_permanently_failed_uids()
        if given_up:
            debug_print(f"{folder}: giving up on UIDs {given_up} after {config.MAX_UID_FETCH_RETRIES} attempts")

        to_fetch = retry_uids + uids
        if not to_fetch:
            print(f"No new messages to sync in {folder}")
            await checkpoint.advance(state)
            return 0

        print(f"Fetching {len(to_fetch)} messages from {folder}")
        synced = 0
        for uid in tqdm(to_fetch, desc=f'Syncing {folder}', disable=not self.show_progress):
            if await self.process_message(checkpoint, folder, uid):
                synced += 1

        await checkpoint.advance(state)
        print(f"Synced {synced} messages from {folder}")
        return synced


class MailboxSyncer:
    """Runs a complete sync session for one mailbox over a single connection."""

    def __init__(self, store, locks: FolderLockRegistry | None = None, show_progress=False,
                 connection_factory=ImapConnection.connect):
        self.store = store
        self.locks = locks or FolderLockRegistry()
        self.show_progress = show_progress
        self.connection_factory = connection_factory

    async def open_session(self, imap_config: ImapConfig):
        """Connect and consume the server greeting."""
        connection = await self.connection_factory(imap_config.host, imap_config.port)
        try:
            greeting = await connection.read_greeting()
        except ImapReadError as e:
            await connection.close()
            raise ConnectError(f"No greeting from IMAP server: {e}") from e
        if greeting.startswith('* BYE'):
            await connection.close()
            raise ConnectError(f"IMAP server refused the connection: {greeting.strip()}")
        return connection

    async def authenticate(self, connection, imap_config: ImapConfig):
        tag, response = await connection.command(format_login, imap_config.user, imap_config.password)
        if not parse_login_result(tag, response):
            raise AuthError("IMAP authentication failed")
        debug_print(f"Authenticated as {imap_config.user}")

    async def resolve_folders(self, connection, sync_folders):
        if sync_folders is None:
            return list(config.DEFAULT_FOLDERS)
        if sync_folders == config.ALL_FOLDERS:
            _tag, response = await connection.command(format_list)
            folders = parse_folder_list(response)
            debug_print(f"Server folders: {folders}")
            return folders
        if isinstance(sync_folders, str):
            return [sync_folders]
        return list(sync_folders)

    async def logout(self, connection):
        try:
            await connection.command(format_logout)
        except ImapReadError as e:
            debug_print(f"LOGOUT failed: {e}")

    async def run(self, imap_config, user_email, sync_folders=None) -> SyncReport:
        """Sync every requested folder; folder failures are recorded, not raised.

        ConnectError and AuthError abort the whole run. The connection is
        closed on every exit path.
        """
        if not isinstance(imap_config, ImapConfig):
            imap_config = ImapConfig.from_dict(imap_config)

        report = SyncReport()
        connection = await self.open_session(imap_config)
        async with connection:
            await self.authenticate(connection, imap_config)
            folders = await self.resolve_folders(connection, sync_folders)
            synchronizer = FolderSynchronizer(connection, self.store, user_email, show_progress=self.show_progress)
            for folder in folders:
                try:
                    async with self.locks.hold(user_email, folder):
                        synced = await synchronizer.sync_folder(folder)
                    report.folders.append(FolderResult(folder=folder, synced=synced))
                except Exception as e:
                    print(f"Failed to sync folder {folder}: {e}")
                    report.folders.append(FolderResult(folder=folder, synced=0, status='error', error=str(e)))
            await self.logout(connection)

        print(f"Mailbox sync for {user_email} completed: {report.total_synced} messages")
        return report


async def run_mailbox_sync(store, imap_config, user_email, sync_folders=None, locks=None, show_progress=False):
    """Run a sync session with a fresh MailboxSyncer."""
    syncer = MailboxSyncer(store, locks=locks, show_progress=show_progress)
    return await syncer.run(imap_config, user_email, sync_folders)
