"""CLI entrypoint: python -m starchat {serve|init-db|refresh-insights|analytics|stats|chat}."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import logging.handlers
import os
import sys
from pathlib import Path

from starchat.config import get_db_path, load_config
from starchat.db import (
    EVENT_BUCKETS,
    get_connection,
    init_db,
    list_personas,
    load_event_bucket,
    load_star_insights,
)


def setup_logging(config: dict) -> None:
    """Configure logging with console + rotating file output."""
    root = logging.getLogger()
    root.setLevel(logging.INFO)

    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    # File handler (rotate at 5MB, keep 3 backups)
    log_dir = Path(get_db_path(config)).parent
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        str(log_dir / "starchat.log"), maxBytes=5 * 1024 * 1024, backupCount=3,
    )
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger("starchat")


def cmd_init_db(config: dict, args: list[str]) -> None:
    """Initialize the SQLite database."""
    db_path = get_db_path(config)
    init_db(db_path)
    print(f"Database initialized at {db_path}")


def cmd_serve(config: dict, args: list[str]) -> None:
    """Run the HTTP API under uvicorn."""
    import uvicorn

    from starchat.api import create_app

    server = config.get("server", {})
    host = args[0] if args else server.get("host", "127.0.0.1")
    port = int(args[1]) if len(args) > 1 else int(server.get("port", 8000))
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


def _persona_ids(config: dict, args: list[str]) -> list[str]:
    if args and args[0] != "all":
        return [args[0]]
    conn = get_connection(get_db_path(config))
    try:
        return list_personas(conn, EVENT_BUCKETS)
    finally:
        conn.close()


async def cmd_refresh_insights(config: dict, args: list[str]) -> None:
    """Classify new fan messages: refresh-insights [persona|all] [range]."""
    from starchat.analytics.events import get_star_events
    from starchat.insights.engine import refresh_insights

    init_db(get_db_path(config))
    range_ = args[1] if len(args) > 1 else None
    failed = False
    for persona_id in _persona_ids(config, args):
        events = get_star_events(config, persona_id, range_)
        result = await refresh_insights(config, persona_id, events)
        if result.error:
            failed = True
            print(f"  {persona_id}: {result.error} (stage {result.stage.value})")
        elif result.updated:
            print(f"  {persona_id}: processed {result.processed}, {result.pending} still pending")
        else:
            print(f"  {persona_id}: nothing new")
    if failed:
        sys.exit(1)


def cmd_analytics(config: dict, args: list[str]) -> None:
    """Print dashboard analytics: analytics <persona> [1m|3m|1y|all]."""
    from starchat.analytics.aggregate import get_aggregated_analytics

    if not args:
        print("Usage: python -m starchat analytics <persona> [range]")
        sys.exit(1)
    data = get_aggregated_analytics(config, args[0], args[1] if len(args) > 1 else None)
    print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_stats(config: dict, args: list[str]) -> None:
    """Show per-persona event and insight totals."""
    conn = get_connection(get_db_path(config))
    try:
        personas = list_personas(conn, EVENT_BUCKETS)
        rows = []
        for persona_id in personas:
            bucket = load_event_bucket(conn, persona_id)
            star = load_star_insights(conn, persona_id)
            rows.append((persona_id, bucket, star))
    finally:
        conn.close()

    if not rows:
        print("No fan events recorded yet.")
        return

    header = f"{'Persona':<16} {'Events':>7} {'Tokens':>9} {'Cards':>6} {'Processed':>10} {'Last message'}"
    print(header)
    print("-" * 80)
    for persona_id, bucket, star in rows:
        last_ts = (bucket.last_message or {}).get("ts", "-")
        print(
            f"{persona_id:<16} {len(bucket.events):>7} {bucket.tokens_spent_total:>9} "
            f"{len(star.cards):>6} {len(star.processed_ids):>10} {last_ts}"
        )


async def cmd_chat(config: dict, args: list[str]) -> None:
    """Chat with a persona through a running server: chat <persona> [base_url]."""
    from starchat.chat.client import ChatClient
    from starchat.chat.console import run_console, terminal_printer
    from starchat.chat.pacing import RevealPacer
    from starchat.chat.session import ChatSession
    from starchat.config import get_chat_settings

    if not args:
        print("Usage: python -m starchat chat <persona> [base_url]")
        sys.exit(1)

    persona_id = args[0]
    server = config.get("server", {})
    base_url = args[1] if len(args) > 1 else (
        f"http://{server.get('host', '127.0.0.1')}:{server.get('port', 8000)}"
    )
    session_path = Path(get_db_path(config)).parent / "sessions" / f"{persona_id}.json"
    session = ChatSession.load(session_path, persona_id)
    client = ChatClient(base_url, stall_timeout=get_chat_settings(config)["stall_timeout"])
    pacer = RevealPacer(terminal_printer(persona_id))

    print(f"Chatting with {persona_id} at {base_url} (/quit to leave)")
    await run_console(client, session, pacer, session_path=session_path)


COMMANDS = {
    "serve": cmd_serve,
    "init-db": cmd_init_db,
    "refresh-insights": cmd_refresh_insights,
    "analytics": cmd_analytics,
    "stats": cmd_stats,
    "chat": cmd_chat,
}


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        available = ", ".join(COMMANDS)
        print(f"Usage: python -m starchat {{{available}}}")
        sys.exit(1)

    command = sys.argv[1]
    config = load_config(os.environ.get("CONFIG_PATH", "config.yaml"))
    setup_logging(config)
    handler = COMMANDS[command]

    if inspect.iscoroutinefunction(handler):
        try:
            asyncio.run(handler(config, sys.argv[2:]))
        except KeyboardInterrupt:
            print("\nInterrupted")
    else:
        handler(config, sys.argv[2:])


if __name__ == "__main__":
    main()
