import asyncio
import ssl

import config
from errors import ConnectError, ImapReadError, ProtocolDesyncError
from imap_codec import TagGenerator, tagged_statuses
from utils import debug_print, mask_command

class ImapConnection:
    """A single IMAP session over an asyncio stream.

    Commands are strictly sequential: one command is written and its whole
    response read before the next one goes out.
    """

    def __init__(self, reader, writer, host=None, read_timeout=None, buffer_size=None):
        self.reader = reader
        self.writer = writer
        self.host = host
        self.read_timeout = read_timeout or config.READ_TIMEOUT_SECONDS
        self.buffer_size = buffer_size or config.READ_BUFFER_SIZE
        self.tags = TagGenerator()
        self.closed = False

    @classmethod
    async def connect(cls, host, port, use_tls=None, timeout=None, read_timeout=None):
        """Open a socket to the server, upgrading to TLS on the implicit-TLS ports."""
        if not host:
            raise ConnectError("IMAP host is missing")
        if not isinstance(host, str):
            raise ConnectError(f"Invalid IMAP host: {host!r}")
        try:
            port = int(port)
        except (TypeError, ValueError) as e:
            raise ConnectError(f"Invalid IMAP port: {port!r}") from e
        if not 0 < port <= 65535:
            raise ConnectError(f"Invalid IMAP port: {port}")
        if use_tls is None:
            use_tls = port in config.IMPLICIT_TLS_PORTS

        ssl_context = ssl.create_default_context() if use_tls else None
        print(f"Connecting to {host}:{port}{' over TLS' if use_tls else ''}...")
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    host, port,
                    ssl=ssl_context,
                    server_hostname=host if use_tls else None,
                ),
                timeout=timeout or config.CONNECT_TIMEOUT_SECONDS,
            )
        except (OSError, ValueError, asyncio.TimeoutError) as e:
            # ValueError covers hostnames the IDNA codec rejects
            raise ConnectError(f"Failed to connect to IMAP server {host}:{port}: {e}") from e
        debug_print(f"Connection to {host}:{port} established")
        return cls(reader, writer, host=host, read_timeout=read_timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def next_tag(self):
        return next(self.tags)

    async def _read_chunk(self):
        try:
            return await asyncio.wait_for(self.reader.read(self.buffer_size), timeout=self.read_timeout)
        except asyncio.TimeoutError as e:
            raise ImapReadError(f"No response from IMAP server within {self.read_timeout}s") from e
        except (OSError, ConnectionError) as e:
            raise ImapReadError(f"Read from IMAP server failed: {e}") from e

    async def read_response(self, tag=None):
        """Accumulate chunks until a tagged status line arrives or a read comes back short."""
        data = b''
        while True:
            chunk = await self._read_chunk()
            if not chunk:
                break
            data += chunk
            if len(chunk) < self.buffer_size:
                break
            # A tagged status line only counts once its CRLF has arrived
            if data.endswith(b'\n') and tagged_statuses(data.decode('utf-8', errors='replace')):
                break
        if not data:
            raise ImapReadError("Connection closed by the IMAP server")

        text = data.decode('utf-8', errors='replace')
        if tag:
            for received_tag, _status in tagged_statuses(text):
                if received_tag != tag:
                    raise ProtocolDesyncError(tag, received_tag)
        debug_print(f"IMAP << {len(data)} bytes")
        return text

    async def read_greeting(self):
        return await self.read_response()

    async def send_command(self, command_line):
        """Write one command line and return the server's full textual response."""
        if self.closed:
            raise ImapReadError("IMAP connection is already closed")
        tag = command_line.split(' ', 1)[0] if command_line else None
        debug_print(f"IMAP >> {mask_command(command_line)}")
        try:
            self.writer.write((command_line + '\r\n').encode('utf-8'))
            await self.writer.drain()
        except (OSError, ConnectionError) as e:
            raise ImapReadError(f"Write to IMAP server failed: {e}") from e
        return await self.read_response(tag)

    async def command(self, formatter, *args):
        """Tag, format and send a command. Returns (tag, response_text)."""
        tag = self.next_tag()
        response = await self.send_command(formatter(tag, *args))
        return tag, response

    async def close(self):
        """Close the stream. Safe to call more than once; only the first call acts."""
        if self.closed:
            return
        self.closed = True
        debug_print("Closing IMAP connection...")
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (OSError, ConnectionError) as e:
            debug_print(f"Error while closing IMAP connection: {e}")
