"""
Service container for the market API.

Everything that lives for the whole process is built here once and
hung on ``app.state.services``: clock, cache policy, source registry,
aggregator, report generator and its repositories.
"""
import logging
from typing import Optional

from core.clock import ClockProtocol, SystemClock
from core.config import Settings
from data_ingestion.aggregator import AggregatorConfig, MarketAggregator
from data_sources.providers import build_default_registry
from data_sources.registry import SourceRegistry
from reporting.context_builder import MarketContextBuilder
from reporting.generator import ReportGenerator
from reporting.llm_client import AnthropicLanguageModel, DisabledLanguageModel, LanguageModelClient, tier_of
from reporting.quota import UsageQuota
from storage.cache_policy import CachePolicy
from storage.database import Database
from storage.repositories.reports import (
    ReportRepository,
    SQLReportRepository,
    SQLUsageRepository,
    UsageRepository,
)

logger = logging.getLogger(__name__)


class MarketServices:
    def __init__(
        self,
        settings: Settings,
        clock: ClockProtocol,
        cache: CachePolicy,
        aggregator: MarketAggregator,
        generator: ReportGenerator,
        database: Optional[Database] = None,
    ):
        self.settings = settings
        self.clock = clock
        self.cache = cache
        self.aggregator = aggregator
        self.generator = generator
        self.database = database

    @classmethod
    def build(
        cls,
        settings: Settings,
        clock: Optional[ClockProtocol] = None,
        registry: Optional[SourceRegistry] = None,
        llm: Optional[LanguageModelClient] = None,
        reports: Optional[ReportRepository] = None,
        usage: Optional[UsageRepository] = None,
    ) -> "MarketServices":
        clock = clock or SystemClock()
        cache = CachePolicy(clock)
        aggregator = MarketAggregator(
            registry or build_default_registry(settings),
            cache,
            AggregatorConfig(
                source_timeout_seconds=settings.http_timeout_seconds,
                overall_timeout_seconds=settings.aggregation_timeout_seconds,
            ),
        )

        database = None
        if reports is None or usage is None:
            database = Database(settings.database_url)
            reports = reports or SQLReportRepository(database)
            usage = usage or SQLUsageRepository(database)

        if llm is None:
            if settings.anthropic_api_key:
                llm = AnthropicLanguageModel(settings.anthropic_api_key, tier=tier_of(settings.report_model))
            else:
                logger.warning("ANTHROPIC_API_KEY not set, AI reports disabled")
                llm = DisabledLanguageModel()

        generator = ReportGenerator(
            llm=llm,
            context_builder=MarketContextBuilder(aggregator, clock),
            reports=reports,
            quota=UsageQuota(usage, clock),
            cache=cache,
            clock=clock,
        )
        return cls(settings, clock, cache, aggregator, generator, database)

    async def start(self) -> None:
        if self.database is not None:
            self.database.create_all()
        self.cache.start(self.settings.cache_sweep_interval_seconds)
        logger.info("Market services started")

    async def shutdown(self) -> None:
        await self.cache.stop()
        await self.generator.aclose()
        await self.aggregator.close()
        if self.database is not None:
            self.database.dispose()
        logger.info("Market services stopped")
