"""HTTP entry point: POST a mailbox config, get back the per-folder sync report."""
import json

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

import config
from checkpoint import FolderLockRegistry
from db import MailCacheStore
from sync import MailboxSyncer

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'authorization, x-client-info, apikey, content-type',
}

def _json(body, status_code=200):
    return JSONResponse(body, status_code=status_code, headers=CORS_HEADERS)

def _is_absent(value):
    """True for null, false, 0 and "". Objects and arrays count as present, even when empty."""
    return not isinstance(value, (dict, list)) and not value

def create_app(store_factory=None, locks=None):
    """Build the Starlette app.

    store_factory returns an unopened MailCacheStore for each request; the
    default opens config.DEFAULT_DB_PATH.
    """
    if store_factory is None:
        store_factory = lambda: MailCacheStore(config.DEFAULT_DB_PATH)
    locks = locks or FolderLockRegistry()

    async def imap_sync(request: Request):
        if request.method == 'OPTIONS':
            return Response(status_code=200, headers=CORS_HEADERS)

        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _json({'error': 'Invalid JSON body'}, status_code=400)
        if not isinstance(payload, dict):
            return _json({'error': 'Invalid JSON body'}, status_code=400)

        imap_config = payload.get('imap_config')
        user_email = payload.get('user_email')
        # An empty or malformed imap_config is not "missing"; it fails at connect time
        if _is_absent(imap_config) or _is_absent(user_email):
            return _json({'error': 'Missing configuration'}, status_code=400)

        try:
            async with store_factory() as store:
                syncer = MailboxSyncer(store, locks=locks)
                report = await syncer.run(imap_config, user_email, payload.get('sync_folders'))
        except Exception as e:
            print(f"Error in imap-sync: {e}")
            return _json({'error': str(e)}, status_code=500)

        return _json(report.to_dict())

    routes = [
        Route('/', imap_sync, methods=['POST', 'OPTIONS']),
        Route('/imap-sync', imap_sync, methods=['POST', 'OPTIONS']),
    ]
    return Starlette(routes=routes)
