#!/usr/bin/env python3
"""
scoutrelay CLI.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, up       Start the relay server
    tap             tail, log       Live view of the wire log
    ping            status, health  Ping a running instance
    stats           info            Show stored conversation and lead counts
"""

import argparse

from scoutrelay import __version__


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the relay server."""
    import uvicorn
    from scoutrelay.config import get_config

    cfg = get_config()
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(f"  scoutrelay {__version__} on {host}:{port}")
    print(f"  Upstream: {cfg['upstream']['base_url']} ({cfg['upstream']['chat_model']})")
    print()

    uvicorn.run(
        "scoutrelay.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_tap(args):
    """Live view of the wire log."""
    from scoutrelay.wiretap import live_tap
    live_tap(
        log_path=args.log,
        follow=not args.no_follow,
        last_n=args.last,
        role_filter=args.role,
        endpoint_filter=args.endpoint,
        raw=args.raw,
    )


def cmd_ping(args):
    """Ping a running instance."""
    import httpx

    url = (args.url or "http://localhost:8000").rstrip("/")
    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        if resp.status_code == 200:
            print(f"  ✓  {url} is up (version {resp.json().get('version', '?')})")
        else:
            print(f"  ✗  No answer, got HTTP {resp.status_code}")
    except httpx.ConnectError:
        print(f"  ✗  Nothing listening at {url}")
    except httpx.HTTPError as e:
        print(f"  ✗  Error: {e}")


def cmd_stats(args):
    """Show stored conversation and lead counts."""
    from scoutrelay.config import get_config
    from scoutrelay.storage.sqlite_store import SQLiteStore

    cfg = get_config()
    s = SQLiteStore(cfg["storage"]["sqlite_path"]).get_stats()

    print(f"  Conversations: {s['conversations']} ({s['active_conversations']} active)")
    print(f"  Messages:      {s['messages']} (user: {s['user_messages']}, assistant: {s['assistant_messages']})")
    print(f"  Tokens used:   {s['tokens_used']:,}")
    print(f"  Avg latency:   {s['avg_latency_ms']} ms")
    print(f"  Website leads: {s['website_leads']}")


def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name plus aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scoutrelay",
        description="scoutrelay: AI relay for the scout portal.",
        epilog="Run 'scoutrelay <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"scoutrelay {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "up"], "Start the relay server", cmd_serve, setup_serve)

    def setup_tap(p):
        p.add_argument("--log", default=None, help="Path to wire.jsonl (default: from config)")
        p.add_argument("--last", "-n", type=int, default=20, help="Show last N entries before following")
        p.add_argument("--role", "-r", choices=["user", "assistant"], default=None, help="Filter by role")
        p.add_argument(
            "--endpoint", "-e", default=None,
            choices=["coach-chat", "feedback-analyze", "extract-cv"],
            help="Filter by endpoint",
        )
        p.add_argument("--no-follow", action="store_true", help="Don't follow, just show last entries")
        p.add_argument("--raw", action="store_true", help="Raw JSONL output, no formatting")

    _add_command(sub, ["tap", "tail", "log"], "Live view of the wire log", cmd_tap, setup_tap)

    def setup_ping(p):
        p.add_argument("--url", "-u", default=None, help="Relay URL (default: http://localhost:8000)")

    _add_command(sub, ["ping", "status", "health"], "Ping a running instance", cmd_ping, setup_ping)

    _add_command(sub, ["stats", "info"], "Show stored conversation and lead counts", cmd_stats)

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
