"""Formatting of IMAP command lines and parsing of the server's textual responses.

Nothing in here touches a socket: every function takes or returns plain text,
which keeps the protocol rules testable without a server.
"""
import re

import config
from errors import FetchParseError
from models import CachedMessage, FolderState
from utils import decode_field, parse_email_date, utc_now_iso


class TagGenerator:
    """Produces the command tags A001, A002, ... for one connection."""

    def __init__(self, prefix='A', start=1):
        self.prefix = prefix
        self._next = start
        self.last = None

    def __iter__(self):
        return self

    def __next__(self):
        tag = f"{self.prefix}{self._next:03d}"
        self._next += 1
        self.last = tag
        return tag


def quote_string(value):
    """Render a value as an IMAP quoted string."""
    text = '' if value is None else str(value)
    return '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'


def format_login(tag, user, password):
    return f"{tag} LOGIN {quote_string(user)} {quote_string(password)}"


def format_select(tag, folder):
    return f"{tag} SELECT {quote_string(folder)}"


def format_uid_search(tag, criteria):
    return f"{tag} UID SEARCH {criteria}"


def format_uid_fetch(tag, uid, data_items=config.ENVELOPE_FETCH_ITEMS):
    return f"{tag} UID FETCH {uid} {data_items}"


def format_list(tag):
    return f'{tag} LIST "" "*"'


def format_logout(tag):
    return f"{tag} LOGOUT"


# --- Response parsing ---

_TAGGED_STATUS_RE = re.compile(r'^([A-Za-z0-9]+) (OK|NO|BAD)\b', re.MULTILINE)
_UIDVALIDITY_RE = re.compile(r'UIDVALIDITY (\d+)')
_UIDNEXT_RE = re.compile(r'UIDNEXT (\d+)')
_SEARCH_RE = re.compile(r'^\* SEARCH\b([^\r\n]*)', re.MULTILINE)
_FETCH_RE = re.compile(r'^\* \d+ FETCH\b', re.MULTILINE)
_FLAGS_RE = re.compile(r'FLAGS \(([^)]*)\)')
_HEADER_RE = re.compile(r'^(Subject|From|To|Date):[ \t]*(.*)$', re.IGNORECASE)
_LIST_RE = re.compile(r'^\* LIST \(([^)]*)\) (?:"(?:[^"\\]|\\.)*"|NIL) (.+?)\s*$', re.MULTILINE)
_LITERAL_RE = re.compile(r'\{\d+\}')


def tagged_statuses(response_text):
    """All (tag, status) pairs of tagged status lines, in order."""
    return _TAGGED_STATUS_RE.findall(response_text)


def parse_tagged_status(response_text):
    """Return (tag, status) of the last tagged status line, or None."""
    matches = tagged_statuses(response_text)
    if not matches:
        return None
    return matches[-1]


def parse_login_result(tag, response_text):
    return f"{tag} OK" in response_text or 'LOGIN completed' in response_text


def parse_folder_state(response_text):
    """Extract UIDVALIDITY and UIDNEXT from a SELECT response; None if either is missing."""
    validity = _UIDVALIDITY_RE.search(response_text)
    uid_next = _UIDNEXT_RE.search(response_text)
    if not validity or not uid_next:
        return None
    return FolderState(uid_validity=int(validity.group(1)), uid_next=int(uid_next.group(1)))


def parse_uid_list(response_text):
    match = _SEARCH_RE.search(response_text)
    if not match:
        return []
    return [int(token) for token in match.group(1).split() if token.isdigit()]


def _structure_section(response_text):
    upper = response_text.upper()
    start = upper.find('BODYSTRUCTURE')
    if start == -1:
        return ''
    end = upper.find('BODY[', start)
    return response_text[start:end] if end != -1 else response_text[start:]


def _header_values(response_text):
    """First occurrence of Subject/From/To/Date, with folded lines joined."""
    values = {}
    current = None
    for line in response_text.splitlines():
        if current and line[:1] in (' ', '\t') and line.strip():
            values[current] += ' ' + line.strip()
            continue
        current = None
        match = _HEADER_RE.match(line)
        if match:
            name = match.group(1).lower()
            if name not in values:
                values[name] = match.group(2).strip()
                current = name
    return values


def parse_envelope(response_text, uid, folder, user_email):
    """Turn a UID FETCH response into a CachedMessage.

    Extraction is line based and best effort. Only a response with no FETCH
    data at all, or one rejected by the server, raises FetchParseError.
    """
    status = parse_tagged_status(response_text)
    if status and status[1] in ('NO', 'BAD'):
        raise FetchParseError(f"Server answered {status[1]} to FETCH of UID {uid} in {folder}")
    if not _FETCH_RE.search(response_text):
        raise FetchParseError(f"No FETCH data returned for UID {uid} in {folder}")

    flags_match = _FLAGS_RE.search(response_text)
    flags = flags_match.group(1).split() if flags_match else []
    has_attachments = 'attachment' in _structure_section(response_text).lower()

    headers = _header_values(response_text)
    subject = decode_field(headers.get('subject', ''))
    from_address = decode_field(headers.get('from', ''))
    to_address = decode_field(headers.get('to', ''))
    date = parse_email_date(headers.get('date'))

    return CachedMessage(
        user_email=user_email,
        folder=folder,
        uid=int(uid),
        flags=flags,
        subject=subject or config.NO_SUBJECT_PLACEHOLDER,
        from_address=from_address or config.UNKNOWN_SENDER,
        to_address=to_address or user_email,
        date=date,
        snippet=subject[:config.SNIPPET_LENGTH],
        has_attachments=has_attachments,
        synced_at=utc_now_iso(),
    )


def _unquote(name):
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return re.sub(r'\\(.)', r'\1', name[1:-1])
    return name


def parse_folder_list(response_text):
    """Folder names from untagged LIST lines, quoted or not."""
    folders = []
    for match in _LIST_RE.finditer(response_text):
        name = _unquote(match.group(2))
        # Literal-encoded names ({n}) are not supported
        if name and not _LITERAL_RE.fullmatch(name):
            folders.append(name)
    return folders
