from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, TypeVar

from netstats.services import cost_capacity, distribution, histogram, miners
from netstats.services.blocks import BlockIndex
from netstats.services.duration_series import generate_duration_series, parse_duration
from netstats.services.ledger import LedgerQueries
from netstats.services.models import (
    AmountStats,
    CategoryDatapoint,
    ChartDuration,
    CollateralPerGBStats,
    CostCapacitySegment,
    CostStats,
    DurationSeriesSpec,
    FillPolicy,
    Granularity,
    HistogramBucket,
    MinerStat,
    StorageStats,
    TimeseriesPoint,
    UsageSnapshot,
    to_decimal,
)
from netstats.services.registry import RegistryClient
from netstats.services.shared.cache_store import QueryCache
from netstats.services.sql_adapter import SqlAdapter
from netstats.services.timeseries import aggregate, calculate_trend, rows_to_samples

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOKEN_BASE_UNITS = cost_capacity.TOKEN_BASE_UNITS
COST_AVERAGE_DAYS = 30


class StatsService:
    """Storage statistics over the ledger and the live registry.

    Every exposed metric is cached under its own key, so a dashboard can
    refresh one metric without recomputing the others. Each metric reads the
    ledger inside its own consistent snapshot.
    """

    def __init__(
        self,
        sql_adapter: SqlAdapter,
        registry: RegistryClient,
        cache: QueryCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.sql = sql_adapter
        self.registry = registry
        self.cache = cache or QueryCache(
            ttl_seconds=float(os.getenv("API_CACHE_TTL_SECONDS", "30")),
            max_entries=int(os.getenv("API_CACHE_MAX_ENTRIES", "256")),
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        self._ttl_seconds = float(os.getenv("STATS_CACHE_TTL_SECONDS", "60"))
        self.sector_size_gb = Decimal(os.getenv("SECTOR_SIZE_GB", "0.25"))
        self.cost_capacity_threshold_gb = Decimal(os.getenv("COST_CAPACITY_THRESHOLD_GB", "1000000"))
        self.histogram_width_gb = Decimal(os.getenv("CAPACITY_HISTOGRAM_WIDTH_GB", "10000"))
        self.histogram_buckets = int(os.getenv("CAPACITY_HISTOGRAM_BUCKETS", "10"))
        self._log_slow_metrics = os.getenv("API_LOG_SLOW_METRICS", "0") == "1"
        self._slow_metric_threshold_ms = float(os.getenv("API_SLOW_METRIC_THRESHOLD_MS", "150"))
        self._historical: dict[str, Callable[[LedgerQueries, DurationSeriesSpec], Awaitable[list[TimeseriesPoint]]]] = {
            "miner-counts": self._miner_counts_series,
            "storage-price": self._storage_price_series,
            "collateral": self._collateral_series,
            "collateral-per-gb": self._collateral_per_gb_series,
            "storage-amount": self._storage_amount_series,
            "utilization": self._utilization_series,
        }

    async def close(self) -> None:
        await self.registry.close()
        await self.sql.close()

    async def warmup(self) -> None:
        """Prime the aggregate so the first dashboard load is served from cache."""
        if os.getenv("API_PREWARM_ENABLED", "1") != "1":
            return
        started = time.perf_counter()
        await self.get_stats()
        logger.info("Warmup complete in %.2fs", time.perf_counter() - started)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _cached(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        started = time.perf_counter()
        value = await self.cache.cached(key, loader, ttl_seconds=self._ttl_seconds)
        if self._log_slow_metrics:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            if elapsed_ms >= self._slow_metric_threshold_ms:
                logger.warning("Slow metric %.2fms key=%s", elapsed_ms, key)
        return value

    async def _read(self, fn: Callable[[LedgerQueries], Awaitable[T]]) -> T:
        async with self.sql.snapshot() as session:
            return await fn(LedgerQueries(session, self.sector_size_gb))

    def _series_spec(self, duration: str | ChartDuration) -> DurationSeriesSpec:
        return generate_duration_series(duration, now=self._clock())

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    async def get_stats(self) -> StorageStats:
        (
            storage_amount,
            storage_cost,
            collateral,
            collateral_per_gb,
            miner_counts,
            capacity_histogram,
            miner_stats,
            utilization,
            distribution_over_time,
            evolution,
            cost_capacity_by_size,
        ) = await asyncio.gather(
            self._cached("storage-stats-storage-amount", self._amount_stats),
            self._cached("storage-stats-storage-cost", self._cost_stats),
            self.historical_collateral(ChartDuration.MONTH),
            self._cached("storage-stats-historical-collateral-per-gb", self._collateral_per_gb_stats),
            self.historical_miner_counts(ChartDuration.MONTH),
            self._cached("storage-stats-capacity-histogram", self._capacity_histogram),
            self.get_miner_stats(),
            self.historical_utilization(ChartDuration.MONTH),
            self._cached("storage-stats-distribution-over-time", self._distribution_over_time),
            self._cached("storage-stats-evolution", self._mining_evolution),
            self._cached("storage-stats-cost-capacity", self._cost_capacity_by_size),
        )
        return StorageStats(
            storage_amount=storage_amount,
            storage_cost=storage_cost,
            historical_collateral=collateral,
            historical_collateral_per_gb=collateral_per_gb,
            historical_miner_counts=miner_counts,
            capacity_histogram=capacity_histogram,
            miners=miner_stats,
            network_utilization=utilization,
            distribution_over_time=distribution_over_time,
            evolution=evolution,
            cost_capacity_by_size=cost_capacity_by_size,
        )

    async def get_miner_stats(self) -> list[MinerStat]:
        # Registry data is live, so miner stats bypass the cache.
        participants = await self.registry.list_participants()

        async def _load(ledger: LedgerQueries) -> list[MinerStat]:
            block_index = BlockIndex(ledger.sql)
            top_block = await block_index.top()
            if top_block is None:
                logger.warning("No blocks ingested yet; skipping %s miners", len(participants))
                return []
            top_height = top_block.height
            blocks = await block_index.by_heights(miners.heights_to_resolve(participants, top_height))
            chain_stats = await ledger.chain_stats([p.address for p in participants])
            return miners.reconcile(
                participants,
                top_height,
                miners.index_blocks(blocks),
                miners.index_chain_stats(chain_stats),
            )

        return await self._read(_load)

    def list_historical_metrics(self) -> list[str]:
        return list(self._historical.keys())

    async def get_historical(self, metric: str, duration: str | ChartDuration) -> list[TimeseriesPoint]:
        series = self._historical.get(metric)
        if series is None:
            raise KeyError(f"Unsupported historical metric '{metric}'")
        duration = parse_duration(duration)
        spec = self._series_spec(duration)
        return await self._cached(
            f"storage-stats-historical-{metric}-{duration.value}",
            lambda: self._read(lambda ledger: series(ledger, spec)),
        )

    async def historical_miner_counts(self, duration: str | ChartDuration) -> list[TimeseriesPoint]:
        return await self.get_historical("miner-counts", duration)

    async def historical_storage_price(self, duration: str | ChartDuration) -> list[TimeseriesPoint]:
        return await self.get_historical("storage-price", duration)

    async def historical_collateral(self, duration: str | ChartDuration) -> list[TimeseriesPoint]:
        return await self.get_historical("collateral", duration)

    async def historical_collateral_per_gb(self, duration: str | ChartDuration) -> list[TimeseriesPoint]:
        return await self.get_historical("collateral-per-gb", duration)

    async def historical_storage_amount(self, duration: str | ChartDuration) -> list[TimeseriesPoint]:
        return await self.get_historical("storage-amount", duration)

    async def historical_utilization(self, duration: str | ChartDuration) -> list[TimeseriesPoint]:
        return await self.get_historical("utilization", duration)

    async def materialize_utilization_stats(self) -> UsageSnapshot:
        """Append the current network-wide committed and pledged capacity to ``network_usage_stats``."""
        async with self.sql.transaction() as session:
            ledger = LedgerQueries(session, self.sector_size_gb)
            committed_gb, pledged_gb = await ledger.usage_totals()
            snapshot = UsageSnapshot(
                total_committed_gb=committed_gb,
                total_pledges_gb=pledged_gb,
                calculated_at=int(self._clock().timestamp()),
            )
            await ledger.insert_usage_snapshot(snapshot)
        logger.info(
            "Materialized network usage committed_gb=%s pledged_gb=%s",
            snapshot.total_committed_gb,
            snapshot.total_pledges_gb,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Time series
    # ------------------------------------------------------------------

    async def _storage_amount_series(self, ledger: LedgerQueries, spec: DurationSeriesSpec) -> list[TimeseriesPoint]:
        rows = await ledger.storage_amount_rows(spec.granularity)
        return aggregate(spec, rows_to_samples(rows), FillPolicy.FORWARD_FILL)

    async def _utilization_series(self, ledger: LedgerQueries, spec: DurationSeriesSpec) -> list[TimeseriesPoint]:
        rows = await ledger.utilization_rows(spec.granularity, spec.buckets[0])
        samples = []
        for row in rows:
            pledged = to_decimal(row.get("pledged_gb"))
            ratio = to_decimal(row.get("committed_gb")) / pledged if pledged > 0 else Decimal(0)
            samples.append((int(row["date"]), ratio))
        return aggregate(spec, samples, FillPolicy.ZERO_FILL)

    async def _miner_counts_series(self, ledger: LedgerQueries, spec: DurationSeriesSpec) -> list[TimeseriesPoint]:
        rows = await ledger.miner_count_rows(spec.granularity, spec.buckets[0])
        return aggregate(spec, rows_to_samples(rows), FillPolicy.ZERO_FILL)

    async def _storage_price_series(self, ledger: LedgerQueries, spec: DurationSeriesSpec) -> list[TimeseriesPoint]:
        rows = await ledger.storage_price_rows(spec.granularity, spec.buckets[0])
        samples = [(date, amount / TOKEN_BASE_UNITS) for date, amount in rows_to_samples(rows)]
        return aggregate(spec, samples, FillPolicy.ZERO_FILL)

    async def _collateral_series(self, ledger: LedgerQueries, spec: DurationSeriesSpec) -> list[TimeseriesPoint]:
        rows = await ledger.collateral_rows(spec.granularity)
        return aggregate(spec, rows_to_samples(rows), FillPolicy.CUMULATIVE_SUM)

    async def _collateral_per_gb_series(self, ledger: LedgerQueries, spec: DurationSeriesSpec) -> list[TimeseriesPoint]:
        rows = await ledger.collateral_per_gb_rows(spec.granularity, spec.buckets[0])
        return aggregate(spec, rows_to_samples(rows), FillPolicy.ZERO_FILL)

    # ------------------------------------------------------------------
    # Aggregate sub-metrics
    # ------------------------------------------------------------------

    async def _amount_stats(self) -> AmountStats:
        data = await self.historical_storage_amount(ChartDuration.MONTH)
        total = data[-1].amount if data else Decimal(0)
        return AmountStats(total=total, trend=calculate_trend(data), data=data)

    async def _cost_stats(self) -> CostStats:
        data = await self.historical_storage_price(ChartDuration.MONTH)
        average = await self._read(lambda ledger: ledger.average_ask_price(COST_AVERAGE_DAYS))
        return CostStats(average=average / TOKEN_BASE_UNITS, trend=calculate_trend(data), data=data)

    async def _collateral_per_gb_stats(self) -> CollateralPerGBStats:
        data = await self.historical_collateral_per_gb(ChartDuration.MONTH)
        daily = await self._read(lambda ledger: ledger.collateral_per_gb_rows(Granularity.DAY))
        average = sum((row["amount"] for row in daily), Decimal(0)) / len(daily) if daily else Decimal(0)
        return CollateralPerGBStats(average=average, data=data)

    async def _capacity_histogram(self) -> list[HistogramBucket]:
        samples = await self._read(lambda ledger: ledger.capacity_samples())
        return histogram.bucket(samples, self.histogram_width_gb, self.histogram_buckets)

    async def _distribution_over_time(self) -> list[CategoryDatapoint]:
        async def _load(ledger: LedgerQueries) -> list[tuple[int, list[dict[str, Any]], int]]:
            windows = []
            for days in distribution.SNAPSHOT_INTERVALS_DAYS:
                rows, total = await ledger.top_block_producers(days, distribution.SNAPSHOT_TOP_N)
                windows.append((days, rows, total))
            return windows

        windows = await self._read(_load)
        addresses = list(dict.fromkeys(row["address"] for _, rows, _ in windows for row in rows))
        nicknames = await distribution.resolve_nicknames(self.registry, addresses)

        points = []
        for days, rows, total in windows:
            labels = distribution.label_participants([row["address"] for row in rows], nicknames)
            points.append(distribution.distribution_snapshot(distribution.interval_category(days), rows, total, labels))
        return points

    async def _mining_evolution(self) -> list[CategoryDatapoint]:
        async def _load(ledger: LedgerQueries) -> tuple[list[str], list[dict[str, Any]]]:
            top, _ = await ledger.top_block_producers(distribution.EVOLUTION_WINDOW_DAYS, distribution.EVOLUTION_TOP_N)
            addresses = [row["address"] for row in top]
            daily = await ledger.daily_block_shares(addresses, distribution.EVOLUTION_WINDOW_DAYS)
            return addresses, daily

        addresses, daily = await self._read(_load)
        nicknames = await distribution.resolve_nicknames(self.registry, addresses)
        labels = distribution.label_participants(addresses, nicknames)
        return distribution.mining_evolution(addresses, labels, daily, now=self._clock())

    async def _cost_capacity_by_size(self) -> list[CostCapacitySegment]:
        # One read, so both cohorts partition the same participant set.
        capacities = await self._read(lambda ledger: ledger.participant_capacities())
        return cost_capacity.segment_by_size(capacities, self.cost_capacity_threshold_gb)
