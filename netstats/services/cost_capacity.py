from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Literal

from netstats.services.models import CostCapacitySegment, ParticipantCapacity

Comparison = Literal["lt", "gte"]

ONE_PB_GB = Decimal(1_000_000)
TOKEN_BASE_UNITS = Decimal(10) ** 18

_EMPTY = CostCapacitySegment(
    count=0,
    average_storage_price=Decimal(0),
    average_capacity_gb=Decimal(0),
    utilization=Decimal(0),
)


def in_cohort(capacity: ParticipantCapacity, threshold_gb: Decimal, comparison: Comparison) -> bool:
    if comparison == "lt":
        return capacity.pledged_gb < threshold_gb
    if comparison == "gte":
        return capacity.pledged_gb >= threshold_gb
    raise ValueError(f"Unsupported comparison: {comparison}")


def segment(
    capacities: Iterable[ParticipantCapacity],
    threshold_gb: Decimal = ONE_PB_GB,
    comparison: Comparison = "lt",
) -> CostCapacitySegment:
    members = [c for c in capacities if in_cohort(c, threshold_gb, comparison)]
    if not members:
        return _EMPTY

    count = len(members)
    average_capacity = sum((m.pledged_gb for m in members), Decimal(0)) / count

    ask_count = sum(m.ask_count for m in members)
    average_price = Decimal(0)
    if ask_count:
        average_price = sum((m.ask_price_total for m in members), Decimal(0)) / ask_count / TOKEN_BASE_UNITS

    ratios = [m.committed_gb / m.pledged_gb for m in members if m.commitments > 0 and m.pledged_gb > 0]
    utilization = sum(ratios, Decimal(0)) / len(ratios) if ratios else Decimal(0)

    return CostCapacitySegment(
        count=count,
        average_storage_price=average_price,
        average_capacity_gb=average_capacity,
        utilization=utilization,
    )


def segment_by_size(
    capacities: Iterable[ParticipantCapacity],
    threshold_gb: Decimal = ONE_PB_GB,
) -> list[CostCapacitySegment]:
    rows = list(capacities)
    return [segment(rows, threshold_gb, "lt"), segment(rows, threshold_gb, "gte")]
