from __future__ import annotations

from decimal import ROUND_CEILING, Decimal
from typing import Iterable

from netstats.services.models import HistogramBucket, to_decimal


def bucket_index(value: Decimal, width: Decimal, bucket_count: int) -> int:
    # Upper boundaries stay in the lower bucket: (w*(n-1), w*n] -> n.
    raw = (value / width).to_integral_value(rounding=ROUND_CEILING)
    return min(bucket_count, max(1, int(raw)))


def bucket(samples: Iterable[Decimal], width: Decimal | int = 10000, bucket_count: int = 10) -> list[HistogramBucket]:
    """Fixed-width capacity buckets plus a trailing open-ended bucket (range_end == 0)."""
    width = to_decimal(width)
    if width <= 0:
        raise ValueError("Histogram width must be positive")
    if bucket_count < 2:
        raise ValueError("Histogram needs at least one fixed bucket and the overflow bucket")

    counts = [0] * bucket_count
    for sample in samples:
        counts[bucket_index(to_decimal(sample), width, bucket_count) - 1] += 1

    buckets = [
        HistogramBucket(
            index=n,
            range_start=1 + width * (n - 1),
            range_end=width * n,
            count=counts[n - 1],
        )
        for n in range(1, bucket_count)
    ]
    buckets.append(
        HistogramBucket(
            index=bucket_count,
            range_start=width * (bucket_count - 1) + 1,
            range_end=Decimal(0),
            count=counts[-1],
        )
    )
    return buckets
