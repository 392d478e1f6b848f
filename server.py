from __future__ import annotations

import asyncio
import atexit
import logging
import time
from typing import Any, Dict, Optional

from fastmcp import FastMCP

from novasearch import db as dbmod
from novasearch.config import load_config
from novasearch.errors import FatalOpenError, NovaSearchError, TransientUnavailable
from novasearch.search import search
from novasearch.shortcuts import read_max_results, resolve_keyboard_shortcut
from novasearch.usage import most_used_files, record_launch as record_launch_usage


cfg = load_config()

mcp = FastMCP(name="NovaSearch")

index = dbmod.create(
    cfg.db_path,
    retry_policy=cfg.retry_policy(),
    busy_timeout_s=cfg.busy_timeout_s,
)
default_max_results = read_max_results(cfg.ui_config_path)
keyboard_shortcut = resolve_keyboard_shortcut(cfg.ui_config_path)


def _log_startup_status() -> None:
    logging.info("Index database: %s", cfg.db_path)
    logging.info(
        "Open retry: %s attempts, %s-%s ms backoff.",
        cfg.retry_max_attempts,
        cfg.retry_initial_delay_ms,
        cfg.retry_max_delay_ms,
    )
    logging.info("Keyboard shortcut: %s", keyboard_shortcut)


_log_startup_status()


async def _ensure_open() -> Optional[str]:
    """Open the index if needed; returns an error message instead of raising."""
    if index.is_connected:
        return None
    try:
        await index.open()
    except TransientUnavailable as e:
        return f"❌ Search index is busy ({e.attempts} attempts). Is the indexer in the middle of a batch?"
    except FatalOpenError as e:
        return f"❌ Cannot connect to search index. Is the indexing daemon running? ({e})"
    return None


_shutdown_started = False


async def _shutdown(reason: str) -> None:
    global _shutdown_started
    if _shutdown_started:
        return
    _shutdown_started = True
    logging.info("Shutdown initiated (%s)", reason)
    try:
        await asyncio.wait_for(dbmod.destroy(index), timeout=5.0)
    except Exception:
        logging.warning("Shutdown cleanup failed", exc_info=True)


def _sync_cleanup() -> None:
    """Best-effort release of the index handle on exit."""
    try:
        asyncio.run(_shutdown("atexit"))
    except Exception:
        logging.warning("Shutdown cleanup failed", exc_info=True)


atexit.register(_sync_cleanup)


@mcp.tool
async def search_files(query: str, max_results: int = 0) -> Dict[str, Any]:
    """Search indexed filenames: exact, then prefix, then substring matches."""
    error = await _ensure_open()
    if error:
        return {"error": error, "results": [], "count": 0}
    start = time.time()
    try:
        results = await search(index, query, max_results if max_results > 0 else default_max_results)
    except NovaSearchError as e:
        return {"error": f"❌ {e}", "results": [], "count": 0}
    logging.info(
        "search_files",
        extra={
            "operation": "search",
            "result_count": len(results),
            "duration_ms": int((time.time() - start) * 1000),
        },
    )
    return {"results": [r.as_dict() for r in results], "count": len(results)}


@mcp.tool
async def record_launch(file_path: str) -> str:
    """Record that a file was launched so it ranks higher next time."""
    try:
        ok = await record_launch_usage(index, file_path)
    except NovaSearchError as e:
        return f"❌ {e}"
    return "✅ Launch recorded" if ok else "ℹ️ Launch not recorded (file not indexed yet or index busy)."


@mcp.tool
async def most_used(limit: int = 10) -> Dict[str, Any]:
    """List the most frequently launched files."""
    error = await _ensure_open()
    if error:
        return {"error": error, "results": []}
    try:
        results = await most_used_files(index, limit)
    except NovaSearchError as e:
        return {"error": f"❌ {e}", "results": []}
    return {"results": [r.as_dict() for r in results]}


@mcp.tool
async def index_status() -> Dict[str, Any]:
    """Report where the index lives and whether it is open."""
    return {
        "db_path": index.path,
        "connected": index.is_connected,
        "max_results": default_max_results,
        "keyboard_shortcut": keyboard_shortcut,
    }


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    # Stdio transport by default
    main()
