from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Sequence

from netstats.services.duration_series import truncate_epoch
from netstats.services.models import DurationSeriesSpec, FillPolicy, TimeseriesPoint, to_decimal

ZERO = Decimal(0)
ONE = Decimal(1)


def rows_to_samples(rows: Iterable[dict[str, Any]], amount_key: str = "amount") -> list[tuple[int, Decimal]]:
    return [(int(row["date"]), to_decimal(row.get(amount_key))) for row in rows if row.get("date") is not None]


def _bucketed(
    spec: DurationSeriesSpec,
    samples: Iterable[tuple[int, Decimal]],
    policy: FillPolicy,
) -> tuple[dict[int, Decimal], list[Decimal]]:
    """Group samples by truncated bucket date; return in-range buckets and earlier amounts."""
    first = spec.buckets[0] if spec.buckets else 0
    by_bucket: dict[int, Decimal] = {}
    earlier: list[Decimal] = []
    for date, amount in samples:
        amount = to_decimal(amount)
        bucket = truncate_epoch(date, spec.granularity)
        if bucket < first:
            earlier.append(amount)
            continue
        previous = by_bucket.get(bucket)
        if previous is None:
            by_bucket[bucket] = amount
        elif policy is FillPolicy.FORWARD_FILL:
            by_bucket[bucket] = max(previous, amount)
        else:
            by_bucket[bucket] = previous + amount
    return by_bucket, earlier


def aggregate(
    spec: DurationSeriesSpec,
    samples: Iterable[tuple[int, Decimal]],
    policy: FillPolicy,
) -> list[TimeseriesPoint]:
    """Project sparse ``(date, amount)`` samples onto every bucket of ``spec``.

    Samples are matched after truncating their date to the spec granularity,
    so the store may return raw timestamps or pre-bucketed dates. Samples
    later than the last bucket are ignored.

    - forward-fill: an empty bucket takes the largest amount seen at or
      before it, including samples older than the first bucket. A zero
      sample is a real value and is kept.
    - zero-fill: an empty bucket is 0.
    - cumulative-sum: every bucket holds the running total; samples older
      than the first bucket make up the opening balance.
    """
    policy = FillPolicy(policy)
    by_bucket, earlier = _bucketed(spec, samples, policy)

    points: list[TimeseriesPoint] = []
    if policy is FillPolicy.FORWARD_FILL:
        running_max: Decimal | None = max(earlier) if earlier else None
        for date in spec.buckets:
            amount = by_bucket.get(date)
            if amount is None:
                amount = running_max if running_max is not None else ZERO
            else:
                running_max = amount if running_max is None else max(running_max, amount)
            points.append(TimeseriesPoint(date=date, amount=amount))
    elif policy is FillPolicy.CUMULATIVE_SUM:
        total = sum(earlier, ZERO)
        for date in spec.buckets:
            total += by_bucket.get(date, ZERO)
            points.append(TimeseriesPoint(date=date, amount=total))
    else:
        for date in spec.buckets:
            points.append(TimeseriesPoint(date=date, amount=by_bucket.get(date, ZERO)))
    return points


def calculate_trend(points: Sequence[TimeseriesPoint]) -> Decimal:
    if not points:
        return ZERO
    ultimate = points[-1].amount
    penultimate = points[-2].amount if len(points) > 1 else None
    if penultimate is not None and penultimate > 0:
        return (ultimate - penultimate) / penultimate
    return ONE if ultimate > 0 else ZERO
