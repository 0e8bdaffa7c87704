import json
from dataclasses import asdict, dataclass, field
from typing import Optional


@dataclass
class ImapConfig:
    host: Optional[str]
    port: Optional[int]
    user: Optional[str]
    password: Optional[str]

    @classmethod
    def from_dict(cls, data: dict) -> "ImapConfig":
        """Build from the request-body shape {host, port, user, pass}.

        Missing keys stay None, and anything other than an object is read as an
        empty config. An incomplete config only fails once the transport tries
        to use it.
        """
        if not isinstance(data, dict):
            data = {}
        port = data.get('port')
        if isinstance(port, str) and port.strip().isdigit():
            port = int(port)
        return cls(
            host=data.get('host'),
            port=port,
            user=data.get('user'),
            password=data.get('pass', data.get('password')),
        )


@dataclass
class FolderState:
    uid_validity: int
    uid_next: int


@dataclass
class SyncCursor:
    user_email: str
    folder: str
    uid_validity: int
    uid_next: int
    last_synced_at: Optional[str] = None


@dataclass
class CachedMessage:
    user_email: str
    folder: str
    uid: int
    flags: list[str] = field(default_factory=list)
    subject: str = ''
    from_address: str = ''
    to_address: str = ''
    date: str = ''
    snippet: str = ''
    has_attachments: bool = False
    synced_at: str = ''

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.user_email, self.folder, self.uid)

    def to_row(self) -> dict:
        """Column values for the mail_messages table."""
        row = asdict(self)
        row['flags'] = json.dumps(self.flags)
        row['has_attachments'] = 1 if self.has_attachments else 0
        return row

    @classmethod
    def from_row(cls, row: dict) -> "CachedMessage":
        data = dict(row)
        data['flags'] = json.loads(data.get('flags') or '[]')
        data['has_attachments'] = bool(data.get('has_attachments'))
        return cls(**data)


@dataclass
class FolderResult:
    folder: str
    synced: int
    status: str = 'success'
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result = {'folder': self.folder, 'synced': self.synced, 'status': self.status}
        if self.error is not None:
            result['error'] = self.error
        return result


@dataclass
class SyncReport:
    folders: list[FolderResult] = field(default_factory=list)

    @property
    def total_synced(self) -> int:
        return sum(result.synced for result in self.folders)

    def to_dict(self) -> dict:
        return {
            'success': True,
            'total_synced': self.total_synced,
            'folders': [result.to_dict() for result in self.folders],
        }
