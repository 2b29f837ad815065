from __future__ import annotations

import sys
from urllib.parse import unquote

_DEBUG_LOG = False


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def _decode_url(value: str) -> str:
    try:
        return unquote(value, encoding="utf-8", errors="replace")
    except Exception:
        return value


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[chapbind debug] {_decode_url(message)}", file=sys.stderr)


__all__ = ["debug_log", "set_debug_logging"]
