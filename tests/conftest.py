# conftest.py - Configuration for pytest
# Shared fixtures: an in-memory cache store and a scripted IMAP server.

import asyncio
import re
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

import config
from db import MailCacheStore
from models import ImapConfig

USER = "user@example.com"
PASSWORD = "secret"

PLAIN_STRUCTURE = '"text" "plain" ("charset" "utf-8") NIL NIL "7bit" 12 1 NIL NIL NIL NIL'
ATTACHMENT_STRUCTURE = (
    '("text" "plain" ("charset" "utf-8") NIL NIL "7bit" 12 1 NIL NIL NIL NIL)'
    '("application" "pdf" ("name" "offer.pdf") NIL NIL "base64" 2048 NIL ("attachment" ("filename" "offer.pdf")) NIL NIL)'
    ' "mixed" ("boundary" "xyz") NIL NIL NIL'
)


def make_message(subject="Hello", sender="Alice <alice@example.com>", to=USER,
                 date="Mon, 2 Jan 2023 10:00:00 +0000", flags=("\\Seen",), attachment=False):
    return {
        "subject": subject,
        "from": sender,
        "to": to,
        "date": date,
        "flags": list(flags),
        "attachment": attachment,
    }


class FakeImapServer:
    """Just enough IMAP4rev1 to drive the sync engine: LOGIN, SELECT, UID SEARCH/FETCH, LIST, LOGOUT."""

    def __init__(self, user=USER, password=PASSWORD):
        self.user = user
        self.password = password
        self.folders = {}
        self.commands = []
        self.fail_select = set()
        self.fail_fetch = set()
        self.greeting = "* OK [CAPABILITY IMAP4rev1] Fake IMAP server ready\r\n"
        self.server = None
        self.port = None
        self._writers = []

    def add_folder(self, name, uid_validity, uid_next, messages=None):
        self.folders[name] = {
            "uidvalidity": uid_validity,
            "uidnext": uid_next,
            "messages": dict(messages or {}),
        }

    def imap_config(self):
        return ImapConfig(host="127.0.0.1", port=self.port, user=self.user, password=self.password)

    def commands_named(self, name):
        return [c for c in self.commands if c.split(" ", 1)[-1].upper().startswith(name)]

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]

    async def stop(self):
        for writer in self._writers:
            writer.close()
        self.server.close()
        await self.server.wait_closed()

    async def _handle(self, reader, writer):
        self._writers.append(writer)
        selected = None
        writer.write(self.greeting.encode())
        await writer.drain()
        while True:
            line = await reader.readline()
            if not line:
                break
            text = line.decode().rstrip("\r\n")
            if not text:
                continue
            self.commands.append(text)
            tag, _, rest = text.partition(" ")
            response, selected, done = self._respond(tag, rest, selected)
            writer.write(response.encode())
            await writer.drain()
            if done:
                break
        writer.close()

    def _respond(self, tag, rest, selected):
        verb = rest.split(" ", 1)[0].upper()
        if verb == "LOGIN":
            user, password = [re.sub(r'\\(.)', r'\1', v) for v in re.findall(r'"((?:[^"\\]|\\.)*)"', rest)]
            if (user, password) == (self.user, self.password):
                return f"{tag} OK LOGIN completed\r\n", selected, False
            return f"{tag} NO [AUTHENTICATIONFAILED] Invalid credentials\r\n", selected, False
        if verb == "SELECT":
            name = re.search(r'"(.*)"', rest).group(1)
            folder = self.folders.get(name)
            if folder is None or name in self.fail_select:
                return f"{tag} NO Mailbox does not exist\r\n", None, False
            return (
                f"* {len(folder['messages'])} EXISTS\r\n"
                "* 0 RECENT\r\n"
                f"* OK [UIDVALIDITY {folder['uidvalidity']}] UIDs valid\r\n"
                f"* OK [UIDNEXT {folder['uidnext']}] Predicted next UID\r\n"
                "* FLAGS (\\Answered \\Flagged \\Deleted \\Seen \\Draft)\r\n"
                f"{tag} OK [READ-WRITE] SELECT completed\r\n"
            ), name, False
        if verb == "UID":
            return self._uid_command(tag, rest, selected), selected, False
        if verb == "LIST":
            lines = "".join(f'* LIST (\\HasNoChildren) "/" "{name}"\r\n' for name in self.folders)
            return lines + f"{tag} OK LIST completed\r\n", selected, False
        if verb == "LOGOUT":
            return f"* BYE Logging out\r\n{tag} OK LOGOUT completed\r\n", selected, True
        return f"{tag} BAD Unknown command\r\n", selected, False

    def _uid_command(self, tag, rest, selected):
        messages = self.folders[selected]["messages"]
        uids = sorted(messages)
        parts = rest.split(" ")
        if parts[1].upper() == "SEARCH":
            criteria = " ".join(parts[2:])
            if criteria.upper() == "ALL":
                found = uids
            else:
                start = int(re.match(r"UID (\d+):\*", criteria).group(1))
                found = [uid for uid in uids if uid >= start]
                # RFC 3501: "n:*" always includes the highest UID
                if not found and uids:
                    found = [uids[-1]]
            return f"* SEARCH {' '.join(str(u) for u in found)}\r\n{tag} OK SEARCH completed\r\n"

        uid = int(parts[2])
        if uid in self.fail_fetch:
            return f"{tag} NO FETCH failed\r\n"
        if uid not in messages:
            return f"{tag} OK FETCH completed\r\n"
        msg = messages[uid]
        header = (
            f"Subject: {msg['subject']}\r\n"
            f"From: {msg['from']}\r\n"
            f"To: {msg['to']}\r\n"
            f"Date: {msg['date']}\r\n"
            "\r\n"
        )
        structure = ATTACHMENT_STRUCTURE if msg["attachment"] else PLAIN_STRUCTURE
        seq = uids.index(uid) + 1
        return (
            f"* {seq} FETCH (UID {uid} FLAGS ({' '.join(msg['flags'])}) BODYSTRUCTURE ({structure}) "
            f"BODY[HEADER.FIELDS (SUBJECT FROM TO DATE)] {{{len(header.encode())}}}\r\n"
            f"{header})\r\n"
            f"{tag} OK FETCH completed\r\n"
        )


@pytest_asyncio.fixture
async def imap_server():
    """A running FakeImapServer on a free localhost port."""
    server = FakeImapServer()
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def cache_store():
    """
    Provides a MailCacheStore connected to an in-memory SQLite database
    with schema initialized.
    """
    store = MailCacheStore(":memory:")
    await store.connect()  # connect also calls setup_schema
    yield store
    await store.close()


@pytest.fixture
def mocked_store_interface():
    """Provides a MagicMock for the MailCacheStore, mocking its interface."""
    mock = MagicMock(spec=MailCacheStore)
    mock.load_sync_state = AsyncMock(return_value=None)
    mock.save_sync_state = AsyncMock()
    mock.upsert_message = AsyncMock()
    mock.delete_folder_messages = AsyncMock()
    mock.get_failed_uids = AsyncMock(return_value={})
    mock.add_or_update_failed_uid = AsyncMock()
    mock.remove_failed_uid = AsyncMock()
    mock.clear_failed_uids = AsyncMock()
    return mock


@pytest.fixture(autouse=True)
def reset_debug_mode(monkeypatch):
    monkeypatch.setattr(config, "DEBUG_MODE", False)
