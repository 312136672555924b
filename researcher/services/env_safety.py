from __future__ import annotations

import os
from pathlib import Path

KEYLOG_VAR = "SSLKEYLOGFILE"


def sanitize_ssl_keylogfile() -> bool:
    """Drop SSLKEYLOGFILE from the environment when its target is unusable.

    httpx and the openai SDK build an SSL context on first use and fail hard
    if the keylog path cannot be opened. Returns True when the variable was removed.
    """
    raw = os.getenv(KEYLOG_VAR, "").strip()
    if not raw:
        return False

    target = Path(raw)
    try:
        if not target.parent.exists():
            raise FileNotFoundError(target.parent)
        # append mode so an existing keylog is never truncated
        with open(target, "a", encoding="utf-8"):
            pass
    except OSError:
        os.environ.pop(KEYLOG_VAR, None)
        return True
    return False
