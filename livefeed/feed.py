"""LiveFeed: owns every component of the ingestion client and their lifecycles."""

import asyncio
import logging
from dataclasses import dataclass

from livefeed.api import ApiClient, fetch_generator_config
from livefeed.backoff import ReconnectPolicy
from livefeed.config import Config
from livefeed.connection import StreamConnectionManager
from livefeed.credentials import CredentialBroker
from livefeed.errors import ApiError, PollError
from livefeed.feed_buffer import FeedBuffer
from livefeed.log_list import LogListPoller
from livefeed.metrics import Metrics
from livefeed.models import ConnectivityState, FeedRecord, RawRecord, StatisticsSnapshot
from livefeed.normalizer import normalize
from livefeed.scheduler import PeriodicTask
from livefeed.statistics import StatisticsMonitor, StatisticsValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedView:
    """Read-only view handed to the presentation layer."""

    state: ConnectivityState
    reason: str | None
    records: tuple[FeedRecord, ...]
    statistics: StatisticsSnapshot | None
    statistics_error: PollError | None
    recent_logs: tuple[FeedRecord, ...]
    generator_config: dict | None
    counters: dict


class LiveFeed:
    """Push stream, statistics poll and log-list poll, started and stopped together."""

    def __init__(
        self,
        config: Config,
        api: ApiClient | None = None,
        session_factory=None,
        sleep=asyncio.sleep,
    ):
        self.config = config
        self._api = api or ApiClient(config.api_url, timeout=config.request_timeout)
        self._sleep = sleep
        self.metrics = Metrics()
        self.buffer = FeedBuffer(config.feed_capacity)
        self.connection = StreamConnectionManager(
            CredentialBroker(self._api),
            ws_url=config.ws_url,
            user_id=config.user_id,
            channel=config.channel,
            on_publication=self._on_publication,
            timeout=config.request_timeout,
            session_factory=session_factory,
        )
        self.statistics = StatisticsMonitor(
            StatisticsValidator(self._api), policy=config.stale_snapshot_policy,
        )
        self.log_list = LogListPoller(self._api)
        self._tasks = [
            PeriodicTask("log-list", config.logs_poll_interval, self.log_list.refresh, sleep=sleep),
            PeriodicTask("statistics", config.stats_poll_interval, self.statistics.refresh, sleep=sleep),
        ]
        self._policy = ReconnectPolicy(
            config.reconnect_min_delay,
            config.reconnect_max_delay,
            config.max_reconnect_attempts,
        )
        self._supervisor: asyncio.Task | None = None
        self.generator_config: dict | None = None

    def _on_publication(self, raw: RawRecord):
        record = normalize(raw, self.buffer.next_id())
        self.buffer.push(record)
        self.metrics.record_publication(record.is_error)

    async def start(self):
        """Fetch the generator config once, then start the timers and the stream."""
        try:
            self.generator_config = await fetch_generator_config(self._api)
        except ApiError as e:
            logger.warning("Generator config unavailable: %s", e)

        for task in self._tasks:
            task.start()
        self._supervisor = asyncio.create_task(self._supervise())
        logger.info(
            "Live feed started: api=%s, ws=%s, channel=%s",
            self.config.api_url, self.config.ws_url, self.config.channel,
        )

    async def stop(self):
        """Tear everything down. Every step is attempted even if an earlier one fails."""
        for task in self._tasks:
            try:
                await task.stop()
            except Exception as e:
                logger.warning("Stopping %s failed: %s", task.name, e)

        if self._supervisor is not None:
            self._supervisor.cancel()
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Connection supervisor ended with error: %s", e)
            self._supervisor = None

        try:
            await self.connection.stop()
        except Exception as e:
            logger.warning("Connection teardown failed: %s", e)

        self.buffer.clear()
        await self._api.close()
        logger.info("Live feed stopped")

    async def _supervise(self):
        """Restart the full connect sequence after each drop, with backoff."""
        while True:
            await self.connection.start()
            state = await self.connection.wait_for_state(
                ConnectivityState.CONNECTED,
                ConnectivityState.DISCONNECTED,
                ConnectivityState.FAILED,
            )
            if state == ConnectivityState.CONNECTED:
                self._policy.reset()
                await self.connection.wait_for_state(
                    ConnectivityState.DISCONNECTED, ConnectivityState.FAILED,
                )

            if not self.config.reconnect:
                logger.info("Reconnect disabled, stream stays %s", self.connection.state.value)
                return

            delay = self._policy.next_delay()
            if delay is None:
                logger.error(
                    "Giving up after %d reconnect attempts: %s",
                    self._policy.attempts, self.connection.reason,
                )
                return

            self.metrics.record_reconnect()
            logger.info("Reconnecting in %.1fs (attempt %d)...", delay, self._policy.attempts)
            await self._sleep(delay)

    def view(self) -> FeedView:
        counters = self.metrics.snapshot()
        counters.update(
            stats_polls_ok=self.statistics.polls_ok,
            stats_polls_failed=self.statistics.polls_failed,
            stats_polls_skipped=self.statistics.polls_skipped,
            dropped_publications=self.connection.dropped_publications,
            evicted=self.buffer.evicted,
        )
        return FeedView(
            state=self.connection.state,
            reason=self.connection.reason,
            records=self.buffer.snapshot(),
            statistics=self.statistics.snapshot,
            statistics_error=self.statistics.last_error,
            recent_logs=self.log_list.records,
            generator_config=dict(self.generator_config) if self.generator_config is not None else None,
            counters=counters,
        )
