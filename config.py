# config.py - Centralized configuration for the application
import os

# --- Cache Store Configuration ---
# DEFAULT_DB_PATH: Default path for the SQLite file that holds the message cache.
# Can be overridden with the MAILCACHE_DB_PATH environment variable or the --db argument.
DEFAULT_DB_PATH = os.environ.get('MAILCACHE_DB_PATH', 'mailcache.sqlite3')

# --- IMAP Connection Configuration ---
# IMPLICIT_TLS_PORTS: Ports on which the socket is upgraded to TLS right after connecting.
IMPLICIT_TLS_PORTS = (993, 465)

# DEFAULT_IMAP_PORT: Port used by the CLI when --port is not given.
DEFAULT_IMAP_PORT = 993

# READ_BUFFER_SIZE: Maximum bytes requested per socket read.
# A read returning less than this is taken as the end of a response.
READ_BUFFER_SIZE = 16384

# READ_TIMEOUT_SECONDS: Upper bound for a single socket read before the command is abandoned.
READ_TIMEOUT_SECONDS = 30

# CONNECT_TIMEOUT_SECONDS: Upper bound for opening the socket (and TLS handshake).
CONNECT_TIMEOUT_SECONDS = 15

# --- Sync Behavior Configuration ---
# DEFAULT_FOLDERS: Folders synced when the caller does not name any.
DEFAULT_FOLDERS = ['INBOX', 'Sent', 'Drafts', 'Trash']

# ALL_FOLDERS: Sentinel value of sync_folders that asks the server for its folder list.
ALL_FOLDERS = 'all'

# ENVELOPE_FETCH_ITEMS: Data items requested for every message.
# PEEK keeps the \Seen flag untouched on the server.
ENVELOPE_FETCH_ITEMS = '(FLAGS BODYSTRUCTURE BODY.PEEK[HEADER.FIELDS (SUBJECT FROM TO DATE)])'

# SNIPPET_LENGTH: Number of subject characters kept as the message snippet.
SNIPPET_LENGTH = 150

# NO_SUBJECT_PLACEHOLDER / UNKNOWN_SENDER: Defaults for missing headers.
NO_SUBJECT_PLACEHOLDER = '(No Subject)'
UNKNOWN_SENDER = 'Unknown'

# MAX_UID_FETCH_RETRIES: Maximum number of runs in which a failed UID is fetched again
# before it is reported as permanently failed.
MAX_UID_FETCH_RETRIES = 3

# --- Servers ---
DEFAULT_HTTP_HOST = '0.0.0.0'
DEFAULT_HTTP_PORT = 8000
DEFAULT_MCP_HOST = '0.0.0.0'
DEFAULT_MCP_PORT = 8001

# --- Debugging ---
# DEBUG_MODE: Global flag to enable or disable debug print statements.
# Can be overridden by the --debug command-line argument.
DEBUG_MODE = False
