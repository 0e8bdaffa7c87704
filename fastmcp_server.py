import datetime

from mcp.server.fastmcp import FastMCP

import config
from checkpoint import FolderLockRegistry
from db import MailCacheStore
from errors import MailSyncError
from models import ImapConfig
from sync import MailboxSyncer

async def sync_mailbox_report(store, locks, imap_config: ImapConfig, user_email, sync_folders=None) -> dict:
    """Run a sync and shape the outcome like the HTTP response body."""
    try:
        report = await MailboxSyncer(store, locks=locks).run(imap_config, user_email, sync_folders)
    except MailSyncError as e:
        print(f"Error in sync_mailbox: {e}")
        return {"error": str(e)}
    return report.to_dict()

async def cached_messages(store, user_email, folder=None, limit=50) -> list[dict]:
    messages = await store.get_messages(user_email, folder=folder, limit=limit)
    return [
        {
            "folder": m.folder,
            "uid": m.uid,
            "subject": m.subject,
            "from_address": m.from_address,
            "to_address": m.to_address,
            "date": m.date,
            "flags": m.flags,
            "has_attachments": m.has_attachments,
        }
        for m in messages
    ]

async def folder_states(store, user_email) -> list[dict]:
    return [
        {
            "folder": state.folder,
            "uidvalidity": state.uid_validity,
            "uidnext": state.uid_next,
            "last_sync_at": state.last_synced_at,
            "cached_messages": await store.count_messages(user_email, state.folder),
        }
        for state in await store.get_sync_states(user_email)
    ]

def create_mcp_server(store_factory=None, locks=None) -> FastMCP:
    """Build the MCP server exposing the sync engine and the message cache as tools."""
    if store_factory is None:
        store_factory = lambda: MailCacheStore(config.DEFAULT_DB_PATH)
    locks = locks or FolderLockRegistry()
    mcp = FastMCP("imap-cache-sync")

    @mcp.tool()
    async def health_check() -> dict:
        """Checks the health of the MCP server."""
        return {
            "status": "healthy",
            "message": "imap-cache-sync MCP server is running.",
            "timestamp": datetime.datetime.now().isoformat()
        }

    @mcp.tool()
    async def sync_mailbox(host: str, port: int, user: str, password: str, user_email: str,
                           folders: list[str] | None = None, all_folders: bool = False) -> dict:
        """
        Incrementally syncs message headers of an IMAP mailbox into the local cache.
        Syncs INBOX, Sent, Drafts and Trash unless folders or all_folders is given.
        """
        sync_folders = config.ALL_FOLDERS if all_folders else folders
        imap_config = ImapConfig(host=host, port=port, user=user, password=password)
        async with store_factory() as store:
            return await sync_mailbox_report(store, locks, imap_config, user_email, sync_folders)

    @mcp.tool()
    async def list_cached_messages(user_email: str, folder: str | None = None, limit: int = 50) -> list[dict]:
        """Lists cached message headers for a mailbox, newest UID first."""
        async with store_factory() as store:
            return await cached_messages(store, user_email, folder=folder, limit=limit)

    @mcp.tool()
    async def get_folder_states(user_email: str) -> list[dict]:
        """Returns the stored UIDVALIDITY/UIDNEXT cursor and cached message count per folder."""
        async with store_factory() as store:
            return await folder_states(store, user_email)

    return mcp
