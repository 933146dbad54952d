from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class ChartDuration(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class FillPolicy(str, Enum):
    FORWARD_FILL = "forward-fill"
    ZERO_FILL = "zero-fill"
    CUMULATIVE_SUM = "cumulative-sum"


@dataclass(frozen=True)
class TimeseriesPoint:
    date: int
    amount: Decimal


@dataclass(frozen=True)
class DurationSeriesSpec:
    buckets: tuple[int, ...]
    granularity: Granularity

    def __len__(self) -> int:
        return len(self.buckets)


@dataclass(frozen=True)
class HistogramBucket:
    index: int
    range_start: Decimal
    range_end: Decimal
    count: int


@dataclass(frozen=True)
class Participant:
    """Live registry record for a miner."""

    address: str
    nickname: str
    peer_id: str
    power: Decimal
    capacity: Decimal
    height: int
    last_seen: int


@dataclass(frozen=True)
class Block:
    height: int
    miner: str
    parent_hashes: tuple[str, ...]
    ingested_at: int


@dataclass(frozen=True)
class ChainStat:
    address: str
    last_block_mined: int
    block_percentage: Decimal


@dataclass(frozen=True)
class MinerStat:
    nickname: str
    address: str
    peer_id: str
    parent_hashes: tuple[str, ...]
    power: Decimal
    capacity: Decimal
    block_percentage: Decimal
    block_height: int
    block_time: int
    is_in_consensus: bool
    last_seen: int


@dataclass(frozen=True)
class CategoryDatapoint:
    category: str | int
    data: dict[str, Decimal]


@dataclass(frozen=True)
class ParticipantCapacity:
    address: str
    pledged_gb: Decimal
    committed_gb: Decimal = Decimal(0)
    commitments: int = 0
    ask_price_total: Decimal = Decimal(0)
    ask_count: int = 0


@dataclass(frozen=True)
class CostCapacitySegment:
    count: int
    average_storage_price: Decimal
    average_capacity_gb: Decimal
    utilization: Decimal


@dataclass(frozen=True)
class UsageSnapshot:
    total_committed_gb: Decimal
    total_pledges_gb: Decimal
    calculated_at: int


@dataclass(frozen=True)
class AmountStats:
    total: Decimal
    trend: Decimal
    data: list[TimeseriesPoint]


@dataclass(frozen=True)
class CostStats:
    average: Decimal
    trend: Decimal
    data: list[TimeseriesPoint]


@dataclass(frozen=True)
class CollateralPerGBStats:
    average: Decimal
    data: list[TimeseriesPoint]


@dataclass(frozen=True)
class StorageStats:
    storage_amount: AmountStats
    storage_cost: CostStats
    historical_collateral: list[TimeseriesPoint]
    historical_collateral_per_gb: CollateralPerGBStats
    historical_miner_counts: list[TimeseriesPoint]
    capacity_histogram: list[HistogramBucket]
    miners: list[MinerStat]
    network_utilization: list[TimeseriesPoint]
    distribution_over_time: list[CategoryDatapoint]
    evolution: list[CategoryDatapoint]
    cost_capacity_by_size: list[CostCapacitySegment] = field(default_factory=list)


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)
