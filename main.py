"""Entry point for the live log feed client."""

import asyncio
import logging
import signal
import sys

from livefeed.config import load_config
from livefeed.feed import FeedView, LiveFeed
from livefeed.scheduler import PeriodicTask

logger = logging.getLogger(__name__)


def format_summary(view: FeedView) -> str:
    """One-line summary of the feed for the log."""
    parts = [f"state={view.state.value}"]
    if view.reason:
        parts.append(f"reason={view.reason!r}")
    errors = sum(1 for r in view.records if r.is_error)
    parts.append(f"feed={len(view.records)} ({errors} unparseable)")
    if view.statistics is not None:
        total = sum(view.statistics.log_type_counts.values())
        parts.append(
            f"stats: {total} logs, {len(view.statistics.error_sequences)} error runs, "
            f"{len(view.statistics.anomaly_detections)} anomalies"
        )
    else:
        parts.append(f"stats: unavailable ({view.statistics_error or 'not polled yet'})")
    parts.append(f"recent_logs={len(view.recent_logs)}")
    if view.records and not view.records[0].is_error:
        newest = view.records[0].payload
        parts.append(f"newest=[{newest.log_type}] {newest.service}: {newest.message}")
    return " | ".join(parts)


async def run(config) -> None:
    feed = LiveFeed(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    async def log_summary():
        logger.info("%s", format_summary(feed.view()))

    summary = None
    if config.summary_interval > 0:
        summary = PeriodicTask("summary", config.summary_interval, log_summary)

    await feed.start()
    if summary:
        summary.start()
    try:
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        if summary:
            await summary.stop()
        await feed.stop()


def main():
    try:
        config = load_config()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
