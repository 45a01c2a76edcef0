"""One-shot sweep of due reminders.

The web process runs its own sweep loop; this script covers deployments
that also want an external schedule (e.g. a Railway cron every minute):
    python -m app.scripts.scan_due_reminders
"""

from __future__ import annotations

import asyncio
import logging

import db
from app.context import build_context
from config import settings


async def main() -> int:
    ctx = build_context(settings)
    try:
        return await ctx.reminders.sweep()
    finally:
        await ctx.stop()
        await db.dispose_engine()


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=settings.LOG_LEVEL)
    print("[CRON] scan_due_reminders: job started")
    try:
        fired = asyncio.run(main())
        print(f"[CRON] scan_due_reminders: job completed successfully ({fired} sent)")
    except Exception as e:
        print(f"[CRON] scan_due_reminders: job failed: {e}")
