"""
Reporting - AI Report Generator.

============================================================
RESPONSIBILITY
============================================================
Serves daily and per-commodity market reports.

- READY report within its validity window -> served as cached
- otherwise one generation per key: context -> model -> store
- concurrent callers for a key share the in-flight generation
  (single-flight future) and receive the same report
- failure reverts the key to its previous state and raises
  GenerationFailure to every caller waiting on it
- quota: check() for every user request; the caller that triggers
  a generation holds a quota slot until it settles and is charged
  only if it succeeds, even when that caller went away

============================================================
LIFECYCLE
============================================================
- first access of a key hydrates READY from the repository
- run_scheduled(): cron entry point, forces the daily report
  without quota
- run_scheduled_commodities(): cron batch over active commodities,
  one at a time, failures recorded per commodity
- aclose(): refuses new work, drains in-flight generations
============================================================
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from core.clock import ClockProtocol
from core.exceptions import GenerationFailure, MarketDataError, NotFound
from data_ingestion.catalog import COMMODITIES, get_commodity
from data_ingestion.types import Commodity
from reporting.context_builder import MarketContextBuilder
from reporting.llm_client import Completion, LanguageModelClient
from reporting.models import (
    AggregatedReport,
    BatchItem,
    BatchSummary,
    CommodityReportEntry,
    ReportKind,
    ReportSlot,
    ReportState,
    UserContext,
)
from reporting.prompts import (
    build_commodity_report_prompt,
    build_daily_report_prompt,
    commodity_title,
    daily_title,
    extract_summary,
    strip_internal_reasoning,
)
from reporting.quota import UsageQuota
from storage.cache_policy import CachePolicy, QueryType, make_cache_key, query_type_of
from storage.repositories.exceptions import RepositoryException
from storage.repositories.reports import ReportRepository


logger = logging.getLogger(__name__)

Producer = Callable[[str], Awaitable[AggregatedReport]]


@dataclass(frozen=True)
class GenerationSettings:
    max_tokens: int
    temperature: float


DAILY_SETTINGS = GenerationSettings(max_tokens=2500, temperature=0.3)
COMMODITY_SETTINGS = GenerationSettings(max_tokens=3000, temperature=0.3)


def daily_report_key() -> str:
    return make_cache_key(QueryType.DAILY_REPORT)


def commodity_report_key(slug: str) -> str:
    return make_cache_key(QueryType.COMMODITY_REPORT, slug=slug)


class ReportGenerator:
    """Quota-gated, single-flight report service."""

    def __init__(
        self,
        llm: LanguageModelClient,
        context_builder: MarketContextBuilder,
        reports: ReportRepository,
        quota: UsageQuota,
        cache: CachePolicy,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._llm = llm
        self._context = context_builder
        self._reports = reports
        self._quota = quota
        self._cache = cache
        self._clock = clock or cache.clock

        self._slots: Dict[str, ReportSlot] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False
        self._stats = {"served_cached": 0, "joined": 0, "generated": 0, "failed": 0}

    # =========================================================
    # PUBLIC API
    # =========================================================

    async def get_daily_report(
        self,
        user: Optional[UserContext] = None,
        force: bool = False,
    ) -> AggregatedReport:
        return await self._serve(daily_report_key(), ReportKind.DAILY, user, force, self._produce_daily)

    async def get_commodity_report(
        self,
        slug: str,
        user: Optional[UserContext] = None,
        force: bool = False,
    ) -> AggregatedReport:
        """
        Raises:
            NotFound: unknown commodity
            QuotaExceeded: user over the daily limit
            GenerationFailure: generation failed
        """
        commodity = get_commodity(slug)
        if commodity is None:
            raise NotFound(f"Commodity '{slug}' not found", context={"slug": slug})

        async def produce(key: str) -> AggregatedReport:
            return await self._produce_commodity(key, commodity)

        return await self._serve(commodity_report_key(commodity.slug), ReportKind.COMMODITY, user, force, produce)

    async def run_scheduled(self) -> AggregatedReport:
        """Regenerate the daily report (cron trigger, no quota)."""
        logger.info("Scheduled daily report generation started")
        report = await self.get_daily_report(user=None, force=True)
        logger.info(f"Scheduled daily report ready: {report.id} ({report.tokens_used} tokens)")
        return report

    async def run_scheduled_commodities(
        self,
        slugs: Optional[Iterable[str]] = None,
        pause_seconds: float = 1.0,
    ) -> BatchSummary:
        """
        Refresh commodity reports one at a time (cron trigger, no quota).

        Commodities that already have a valid report are served from
        cache and counted as such. A failing commodity is recorded and
        the batch moves on; ``pause_seconds`` spaces out model calls.
        """
        commodities = self._batch_commodities(slugs)
        started = self._clock.monotonic()
        logger.info(f"Scheduled commodity reports started for {len(commodities)} commodities")

        items: List[BatchItem] = []
        for index, commodity in enumerate(commodities):
            if index and pause_seconds > 0:
                await asyncio.sleep(pause_seconds)
            try:
                report = await self.get_commodity_report(commodity.slug)
            except (GenerationFailure, MarketDataError) as e:
                logger.error(f"Scheduled report for {commodity.slug} failed: {e.message}")
                items.append(BatchItem(commodity.slug, commodity.name, success=False, error=e.message))
            else:
                items.append(BatchItem(
                    commodity.slug, commodity.name, success=True, report_id=report.id, cached=report.cached,
                ))

        summary = BatchSummary(items, duration_seconds=self._clock.monotonic() - started)
        logger.info(
            f"Scheduled commodity reports done: {summary.generated} generated, "
            f"{summary.cached} cached, {summary.errors} errors"
        )
        return summary

    def list_commodity_reports(self) -> List[CommodityReportEntry]:
        """
        Active commodities, each with its current valid report if any.

        Reads the repository so reports stored by another process
        (e.g. the scheduled batch) are listed too.
        """
        now = self._clock.now()
        entries = []
        for commodity in self._batch_commodities(None):
            report = self._reports.latest_valid(commodity_report_key(commodity.slug), now)
            entries.append(CommodityReportEntry(
                slug=commodity.slug,
                name=commodity.name,
                report_id=report.id if report else None,
                generated_at=report.generated_at if report else None,
            ))
        return entries

    def state_of(self, key: str) -> ReportState:
        slot = self._slots.get(key)
        if slot is None:
            return ReportState.ABSENT
        self._refresh(slot)
        return slot.state

    def usage(self, user: UserContext) -> Dict[str, Any]:
        return self._quota.status(user.user_id, user.plan).to_dict()

    def cleanup_expired(self) -> int:
        return self._reports.delete_expired(self._clock.now())

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "in_flight": len(self._inflight),
            "keys": {key: self.state_of(key).value for key in self._slots},
        }

    async def aclose(self) -> None:
        """Stop accepting requests and wait for in-flight generations."""
        self._closed = True
        tasks = list(self._tasks)
        if tasks:
            logger.info(f"Draining {len(tasks)} in-flight report generations")
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._llm.aclose()

    @staticmethod
    def _batch_commodities(slugs: Optional[Iterable[str]]) -> List[Commodity]:
        if slugs is None:
            return sorted((c for c in COMMODITIES.values() if c.active), key=lambda c: c.name)
        commodities = []
        for slug in slugs:
            commodity = get_commodity(slug)
            if commodity is None:
                raise NotFound(f"Commodity '{slug}' not found", context={"slug": slug})
            commodities.append(commodity)
        return commodities

    # =========================================================
    # STATE MACHINE
    # =========================================================

    def _refresh(self, slot: ReportSlot) -> None:
        if slot.state == ReportState.READY and not slot.report.is_valid(self._clock.now()):
            slot.state = ReportState.STALE

    def _slot(self, key: str) -> ReportSlot:
        slot = self._slots.setdefault(key, ReportSlot(key=key))
        if not slot.hydrated and slot.state == ReportState.ABSENT:
            self._hydrate(slot)
        self._refresh(slot)
        return slot

    def _hydrate(self, slot: ReportSlot) -> None:
        try:
            report = self._reports.latest_valid(slot.key, self._clock.now())
        except RepositoryException as e:
            logger.warning(f"Could not load stored report for {slot.key}: {e.message}")
            return
        slot.hydrated = True
        if report is not None:
            slot.state = ReportState.READY
            slot.report = report
            logger.debug(f"Hydrated {slot.key} from storage ({report.id})")

    async def _serve(
        self,
        key: str,
        kind: ReportKind,
        user: Optional[UserContext],
        force: bool,
        produce: Producer,
    ) -> AggregatedReport:
        if self._closed:
            raise GenerationFailure("Report service is shutting down", retryable=True, report_key=key)
        if user is not None:
            self._quota.check(user.user_id, user.plan, kind)

        slot = self._slot(key)
        future = self._inflight.get(key)
        if future is None:
            if not force and slot.state == ReportState.READY:
                self._stats["served_cached"] += 1
                return slot.report.as_cached()
            future = self._start(slot, produce)
            if user is not None:
                self._charge_on_success(user, kind, future)
        else:
            self._stats["joined"] += 1

        return await asyncio.shield(future)

    def _charge_on_success(self, user: UserContext, kind: ReportKind, future: asyncio.Future) -> None:
        """Hold a quota slot for ``user`` until ``future`` settles; charge on success."""
        self._quota.reserve(user.user_id)

        def settle(done: asyncio.Future) -> None:
            try:
                if not done.cancelled() and done.exception() is None:
                    self._quota.commit(user.user_id, kind, done.result().tokens_used)
            except RepositoryException as e:
                logger.error(f"Could not record usage for {user.user_id}: {e.message}")
            finally:
                self._quota.release(user.user_id)

        future.add_done_callback(settle)

    def _start(self, slot: ReportSlot, produce: Producer) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        prior = slot.state
        slot.state = ReportState.GENERATING
        self._inflight[slot.key] = future

        task = loop.create_task(self._run(slot, prior, future, produce))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return future

    async def _run(
        self,
        slot: ReportSlot,
        prior: ReportState,
        future: asyncio.Future,
        produce: Producer,
    ) -> None:
        started = self._clock.monotonic()
        try:
            report = await produce(slot.key)
            self._reports.save(report)
        except asyncio.CancelledError:
            self._fail(slot, prior, future, GenerationFailure(
                "Report generation cancelled", retryable=True, report_key=slot.key,
            ))
            raise
        except GenerationFailure as e:
            self._fail(slot, prior, future, e)
        except MarketDataError as e:
            self._fail(slot, prior, future, GenerationFailure(
                f"Report context unavailable: {e.message}", retryable=e.retryable, report_key=slot.key, cause=e,
            ))
        except RepositoryException as e:
            self._fail(slot, prior, future, GenerationFailure(
                "Report could not be stored", retryable=True, report_key=slot.key, cause=e,
            ))
        except Exception as e:
            logger.exception(f"Unexpected error generating {slot.key}")
            self._fail(slot, prior, future, GenerationFailure(
                "Unexpected report generation error", retryable=False, report_key=slot.key, cause=e,
            ))
        else:
            slot.state = ReportState.READY
            slot.report = report
            slot.generations += 1
            slot.last_error = None
            self._inflight.pop(slot.key, None)
            self._stats["generated"] += 1
            future.set_result(report)
            logger.info(
                f"Generated {slot.key}: {report.tokens_used} tokens, "
                f"~${report.estimated_cost:.4f}, {self._clock.monotonic() - started:.1f}s"
            )

    def _fail(self, slot: ReportSlot, prior: ReportState, future: asyncio.Future, error: GenerationFailure) -> None:
        slot.state = prior
        slot.failures += 1
        slot.last_error = error.message
        self._inflight.pop(slot.key, None)
        self._stats["failed"] += 1
        self._refresh(slot)
        logger.error(f"Generation of {slot.key} failed (retryable={error.retryable}): {error.message}")
        if not future.done():
            future.set_exception(error)
            # mark retrieved; waiters (if any) still receive it
            future.exception()

    # =========================================================
    # PRODUCERS
    # =========================================================

    async def _produce_daily(self, key: str) -> AggregatedReport:
        context = await self._context.build_market_context()
        prompt = build_daily_report_prompt(self._context.format_market_context(context))
        completion = await self._llm.complete(prompt, DAILY_SETTINGS.max_tokens, DAILY_SETTINGS.temperature)
        title = daily_title(self._clock.local_now().date())
        return self._assemble(key, ReportKind.DAILY, title, completion)

    async def _produce_commodity(self, key: str, commodity: Commodity) -> AggregatedReport:
        context = await self._context.build_commodity_context(commodity.slug)
        prompt = build_commodity_report_prompt(
            commodity.name,
            self._context.format_commodity_context(context),
            self._context.format_news(context.news, context.generated_at),
        )
        completion = await self._llm.complete(
            prompt, COMMODITY_SETTINGS.max_tokens, COMMODITY_SETTINGS.temperature
        )
        title = commodity_title(commodity.name, self._clock.local_now().date())
        return self._assemble(key, ReportKind.COMMODITY, title, completion, commodity_slug=commodity.slug)

    def _assemble(
        self,
        key: str,
        kind: ReportKind,
        title: str,
        completion: Completion,
        commodity_slug: Optional[str] = None,
    ) -> AggregatedReport:
        content = strip_internal_reasoning(completion.text)
        if not content:
            raise GenerationFailure("Model output had no report body", retryable=True, report_key=key)
        now = self._clock.now()
        return AggregatedReport(
            id=str(uuid.uuid4()),
            kind=kind,
            key=key,
            title=title,
            content=content,
            summary=extract_summary(content),
            generated_at=now,
            valid_until=now + timedelta(seconds=self._cache.ttl_for(query_type_of(key))),
            tokens_used=completion.total_tokens,
            estimated_cost=completion.estimated_cost,
            model=completion.model,
            commodity_slug=commodity_slug,
        )
