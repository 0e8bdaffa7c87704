import datetime
import re
from email.header import decode_header
from email.utils import parsedate_to_datetime

import config # Import the config module

def debug_print(*args, **kwargs):
    # Access DEBUG_MODE directly from the config module
    if config.DEBUG_MODE:
        print(*args, **kwargs)

def utc_now_iso():
    return datetime.datetime.now(datetime.timezone.utc).isoformat()

# Parse email date into ISO format for better querying
def parse_email_date(date_str):
    """Return the header date as ISO-8601, or the current UTC time if it cannot be parsed."""
    if not date_str:
        return utc_now_iso()
    try:
        parsed = parsedate_to_datetime(date_str)
    except (TypeError, ValueError, IndexError):
        return utc_now_iso()
    if parsed is None:
        return utc_now_iso()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed.isoformat()

# Decode MIME headers with better error handling
def decode_field(field):
    if not field:
        return ''
    try:
        parts = decode_header(field)
    except Exception:
        # Malformed encoded-words: keep the raw header text
        return field
    decoded = ''
    for part, encoding in parts:
        if isinstance(part, bytes):
            try:
                # Handle unknown encodings gracefully
                if encoding and encoding.lower() == 'unknown-8bit':
                    decoded += part.decode('utf-8', errors='replace')
                else:
                    decoded += part.decode(encoding or 'utf-8', errors='replace')
            except (LookupError, UnicodeDecodeError):
                # Fallback to utf-8 with error replacement
                decoded += part.decode('utf-8', errors='replace')
        else:
            decoded += part
    return decoded

_LOGIN_RE = re.compile(r'^(\S+ LOGIN )(.*)$', re.IGNORECASE)

def mask_command(command_line):
    """Hide LOGIN credentials before a command line is printed."""
    match = _LOGIN_RE.match(command_line)
    if match:
        return match.group(1) + '****'
    return command_line
