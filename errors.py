class MailSyncError(Exception):
    """Base class for every error raised by the sync engine."""


class ConnectError(MailSyncError):
    """The socket or TLS handshake could not be established."""


class AuthError(MailSyncError):
    """The server rejected the LOGIN credentials."""


class ImapReadError(MailSyncError):
    """Writing a command or reading its response failed (including timeouts)."""


class ProtocolDesyncError(ImapReadError):
    """A tagged response arrived for a different tag than the one that was sent."""

    def __init__(self, expected_tag, received_tag):
        super().__init__(f"Expected response for tag {expected_tag}, got {received_tag}")
        self.expected_tag = expected_tag
        self.received_tag = received_tag


class FolderStateError(MailSyncError):
    """SELECT succeeded at the socket level but UIDVALIDITY/UIDNEXT were missing."""


class FetchParseError(MailSyncError):
    """A single message's FETCH response could not be turned into a cached message."""


class CacheWriteError(MailSyncError):
    """An upsert or delete against the cache store failed."""
