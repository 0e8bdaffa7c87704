import argparse
import asyncio
import json
import sys

import tabulate

# Local imports
import config # Ensure config is imported to allow modification of DEBUG_MODE
from config import DEFAULT_DB_PATH, DEFAULT_IMAP_PORT
from db import MailCacheStore
from errors import MailSyncError
from models import ImapConfig
from sync import MailboxSyncer

def imap_config_from_args(args):
    return ImapConfig(host=args.host, port=args.port, user=args.user, password=args.password)

async def handle_sync_command(args):
    if args.all_folders:
        sync_folders = config.ALL_FOLDERS
    elif args.folder:
        sync_folders = args.folder
    else:
        sync_folders = None

    async with MailCacheStore(args.db) as store:
        syncer = MailboxSyncer(store, show_progress=True)
        report = await syncer.run(imap_config_from_args(args), args.email or args.user, sync_folders)

    rows = [[r.folder, r.synced, r.status, r.error or ''] for r in report.folders]
    print(tabulate.tabulate(rows, headers=['folder', 'synced', 'status', 'error'], tablefmt='psql'))
    print(f"Total synced: {report.total_synced}")
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    return report

async def handle_list_folders_command(args):
    imap_config = imap_config_from_args(args)
    syncer = MailboxSyncer(store=None)
    connection = await syncer.open_session(imap_config)
    async with connection:
        await syncer.authenticate(connection, imap_config)
        folders = await syncer.resolve_folders(connection, config.ALL_FOLDERS)
        await syncer.logout(connection)

    print("\nAvailable folders:")
    print("------------------")
    if folders:
        for i, folder in enumerate(folders, 1):
            print(f"{i}. {folder}")
    else:
        print("No folders found or error retrieving them.")
    print("\nUse any of these names with the --folder argument of the sync command")
    return folders

async def handle_messages_command(args):
    async with MailCacheStore(args.db) as store:
        messages = await store.get_messages(args.email, folder=args.folder, limit=args.limit)
    if not messages:
        print("\nNo cached messages found.")
        return
    rows = [
        [m.folder, m.uid, m.date, m.from_address, m.subject[:60], ' '.join(m.flags), 'yes' if m.has_attachments else '']
        for m in messages
    ]
    print(f"\nFound {len(rows)} cached messages:")
    print(tabulate.tabulate(rows, headers=['folder', 'uid', 'date', 'from', 'subject', 'flags', 'attachments'], tablefmt='psql'))

def build_parser():
    parser = argparse.ArgumentParser(description='Incremental IMAP header cache')
    parser.add_argument('--db', default=DEFAULT_DB_PATH, help='Path to SQLite cache database file.')
    parser.add_argument('--debug', action='store_true', help='Enable detailed debug output.')

    subparsers = parser.add_subparsers(title='commands', dest='command', required=True, help='Available commands')

    imap_args_parser = argparse.ArgumentParser(add_help=False) # Parent for IMAP connection args
    imap_args_parser.add_argument('--host', required=True, help='IMAP host address.')
    imap_args_parser.add_argument('--port', type=int, default=DEFAULT_IMAP_PORT, help=f'IMAP port (default: {DEFAULT_IMAP_PORT}; 993 and 465 use TLS).')
    imap_args_parser.add_argument('--user', required=True, help='IMAP login name.')
    imap_args_parser.add_argument('--password', required=True, help='IMAP password.')

    # --- Sync Command ---
    sync_parser = subparsers.add_parser('sync', help='Sync message headers into the cache.', parents=[imap_args_parser])
    sync_parser.add_argument('--email', help='Mailbox address used as cache key (default: --user).')
    folder_group = sync_parser.add_mutually_exclusive_group()
    folder_group.add_argument('--folder', action='append', help='Folder to sync; repeat for several (default: INBOX, Sent, Drafts, Trash).')
    folder_group.add_argument('--all-folders', action='store_true', help='Sync every folder the server lists.')
    sync_parser.add_argument('--json', action='store_true', help='Also print the report as JSON.')

    # --- List Folders Command ---
    subparsers.add_parser('list-folders', help='List all folders on the server.', parents=[imap_args_parser])

    # --- Messages Command ---
    messages_parser = subparsers.add_parser('messages', help='Show cached message headers.')
    messages_parser.add_argument('--email', required=True, help='Mailbox address used as cache key.')
    messages_parser.add_argument('--folder', help='Restrict to one folder.')
    messages_parser.add_argument('--limit', type=int, default=50, help='Maximum number of rows (default: 50).')

    # --- Serve Commands ---
    serve_parser = subparsers.add_parser('serve', help='Start the HTTP sync endpoint.')
    serve_parser.add_argument('--http-host', default=config.DEFAULT_HTTP_HOST, help=f'Host for the HTTP server (default: {config.DEFAULT_HTTP_HOST}).')
    serve_parser.add_argument('--http-port', type=int, default=config.DEFAULT_HTTP_PORT, help=f'Port for the HTTP server (default: {config.DEFAULT_HTTP_PORT}).')

    serve_mcp_parser = subparsers.add_parser('serve-mcp', help='Start the Model Context Protocol (MCP) server.')
    serve_mcp_parser.add_argument('--mcp-host', default=config.DEFAULT_MCP_HOST, help=f'Host for the MCP server (default: {config.DEFAULT_MCP_HOST}).')
    serve_mcp_parser.add_argument('--mcp-port', type=int, default=config.DEFAULT_MCP_PORT, help=f'Port for the MCP server (default: {config.DEFAULT_MCP_PORT}).')
    return parser

def serve(app, host, port):
    import uvicorn
    uvicorn.run(app, host=host, port=port, log_level="info")

async def main(args=None):
    parser = build_parser()
    if args is None:
        args = parser.parse_args()

    if args.debug:
        config.DEBUG_MODE = True # Set DEBUG_MODE in the config module
        print("Debug mode enabled (via config.DEBUG_MODE).")

    # Command dispatching
    if args.command == 'sync':
        await handle_sync_command(args)
    elif args.command == 'list-folders':
        await handle_list_folders_command(args)
    elif args.command == 'messages':
        await handle_messages_command(args)
    else:
        parser.print_help()

def run():
    args = build_parser().parse_args()
    if args.debug:
        config.DEBUG_MODE = True
    # Servers own their event loop, so they are started outside asyncio.run
    if args.command == 'serve':
        from server import create_app
        print(f"Starting HTTP server on {args.http_host}:{args.http_port}")
        serve(create_app(store_factory=lambda: MailCacheStore(args.db)), args.http_host, args.http_port)
        return
    if args.command == 'serve-mcp':
        from fastmcp_server import create_mcp_server
        print(f"Starting MCP Server on {args.mcp_host}:{args.mcp_port}")
        serve(create_mcp_server(store_factory=lambda: MailCacheStore(args.db)).sse_app(), args.mcp_host, args.mcp_port)
        return
    try:
        asyncio.run(main(args))
    except KeyboardInterrupt:
        print("\nProgram terminated by user.")
    except MailSyncError as e:
        print(f"\nSync failed: {e}")
        sys.exit(1)

if __name__ == '__main__':
    run()
