"""
Wiretap: a structured record of every exchange through the relay.

WireLog appends one JSONL entry per user turn, assistant turn and
one-shot exchange. live_tap() renders that file for `scoutrelay tap`,
optionally filtered by role or endpoint.

The wire log is separate from the debug log. It records what went over
the line, to which endpoint, in which conversation.
"""

import json
import time
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
GRAY = "\033[90m"
CYAN = "\033[96m"
YELLOW = "\033[93m"
MAGENTA = "\033[95m"

STYLES = {
    # role: (colour, marker)
    "user": (CYAN, ">>"),
    "assistant": (YELLOW, "<<"),
}

CONTENT_LIMIT = 2000
KEEP_EDGE = 1000
PREVIEW_LIMIT = 400
PREVIEW_LINES = 12


def _clip(content: str) -> str:
    """Head and tail of oversized content with a marker in between."""
    if len(content) <= CONTENT_LIMIT:
        return content
    cut = len(content) - 2 * KEEP_EDGE
    return f"{content[:KEEP_EDGE]}\n\n[... {cut} chars truncated ...]\n\n{content[-KEEP_EDGE:]}"


class WireLog:
    """
    Append-only JSONL record of relay traffic.

    One entry:
        {"ts": "...", "dir": "inbound|outbound", "endpoint": "coach-chat",
         "role": "user|assistant", "conv": "<id prefix>", "len": 123,
         "tokens": 0, "latency_ms": 850, "content": "..."}
    """

    def __init__(self, log_path: str, enabled: bool = True):
        self.log_path = Path(log_path)
        self.enabled = enabled
        self._fh = None
        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(
        self,
        direction: str,
        endpoint: str,
        role: str,
        content: str,
        conversation_id: str = "",
        token_count: int | None = None,
        latency_ms: int | None = None,
    ):
        """Append one entry. Write errors are logged, never raised."""
        if not self.enabled:
            return

        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "dir": direction,
            "endpoint": endpoint,
            "role": role,
            "conv": (conversation_id or "")[:16],
            "len": len(content),
            "tokens": token_count or 0,
        }
        if latency_ms is not None:
            entry["latency_ms"] = latency_ms
        entry["content"] = _clip(content)

        try:
            if self._fh is None:
                self._fh = self.log_path.open("a", buffering=1)
            self._fh.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning("Wire log write failed (%s): %s", self.log_path, e)

    def close(self):
        if self._fh is not None:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _clock(ts: str) -> str:
    try:
        return datetime.fromisoformat(ts).strftime("%H:%M:%S")
    except (ValueError, TypeError):
        return "--:--:--"


def _format_entry(entry: dict, raw: bool = False) -> str:
    """One wire entry as a coloured block, or the JSON line itself when raw."""
    if raw:
        return json.dumps(entry, ensure_ascii=False)

    role = entry.get("role", "?")
    colour, marker = STYLES.get(role, (RESET, "??"))

    meta = [f"{entry.get('len', 0)} chars"]
    if entry.get("tokens"):
        meta.append(f"{entry['tokens']} tok")
    if entry.get("latency_ms") is not None:
        meta.append(f"{entry['latency_ms']} ms")
    if entry.get("conv"):
        meta.append(f"conv {entry['conv']}")

    out = [
        f"{GRAY}{_clock(entry.get('ts', ''))}{RESET} "
        f"{colour}{BOLD}{marker} {role:<9}{RESET} "
        f"{MAGENTA}{entry.get('endpoint', ''):<16}{RESET} "
        f"{DIM}{' | '.join(meta)}{RESET}"
    ]

    content = entry.get("content", "")
    if len(content) > PREVIEW_LIMIT:
        content = content[:PREVIEW_LIMIT] + " ..."
    out.extend(f"    {line}" for line in content.splitlines()[:PREVIEW_LINES])
    return "\n".join(out)


def _matches(entry: dict, role: str | None, endpoint: str | None) -> bool:
    if role and entry.get("role") != role:
        return False
    if endpoint and entry.get("endpoint") != endpoint:
        return False
    return True


def _parse(line: str) -> dict | None:
    line = line.strip()
    if not line:
        return None
    try:
        return json.loads(line)
    except json.JSONDecodeError:
        return None


def _follow(path: Path, poll: float = 0.2) -> Iterator[str]:
    """Yield lines appended to path after the call, forever."""
    with path.open() as fh:
        fh.seek(0, 2)
        while True:
            line = fh.readline()
            if line:
                yield line
            else:
                time.sleep(poll)


def live_tap(
    log_path: str | None = None,
    follow: bool = True,
    last_n: int = 20,
    role_filter: str | None = None,
    endpoint_filter: str | None = None,
    raw: bool = False,
):
    """
    Print the last `last_n` matching entries, then keep printing new ones
    until interrupted (unless follow is False). The log path defaults to
    wiretap.path from config.
    """
    if log_path is None:
        from scoutrelay.config import get_config
        log_path = get_config()["wiretap"]["path"]

    path = Path(log_path)
    if not path.exists():
        print(f"  No wire log at {path}. Has the relay handled any traffic yet?")
        return

    backlog = [e for e in map(_parse, path.read_text().splitlines()) if e]
    backlog = [e for e in backlog if _matches(e, role_filter, endpoint_filter)]
    for entry in backlog[-last_n:] if last_n > 0 else []:
        print(_format_entry(entry, raw=raw))

    if not follow:
        return

    try:
        for line in _follow(path):
            entry = _parse(line)
            if entry and _matches(entry, role_filter, endpoint_filter):
                print(_format_entry(entry, raw=raw))
    except KeyboardInterrupt:
        print()
