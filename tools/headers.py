import re
from typing import Any

NON_PRINTABLE = re.compile(r"[^\x20-\x7E]")


def sanitize_header(value: Any) -> str:
    """Restrict a header value to printable ASCII before echoing it outbound."""
    if not value:
        return ""
    return NON_PRINTABLE.sub("", str(value)).strip()
