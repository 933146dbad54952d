from __future__ import annotations

from datetime import UTC, datetime, timedelta

from netstats.services.models import ChartDuration, DurationSeriesSpec, Granularity

# duration -> (span, bucket granularity)
_DURATIONS: dict[ChartDuration, tuple[timedelta, Granularity]] = {
    ChartDuration.DAY: (timedelta(days=1), Granularity.HOUR),
    ChartDuration.WEEK: (timedelta(days=7), Granularity.DAY),
    ChartDuration.MONTH: (timedelta(days=30), Granularity.DAY),
    ChartDuration.QUARTER: (timedelta(days=90), Granularity.WEEK),
    ChartDuration.YEAR: (timedelta(days=365), Granularity.MONTH),
}


def parse_duration(value: str | ChartDuration) -> ChartDuration:
    if isinstance(value, ChartDuration):
        return value
    try:
        return ChartDuration(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported duration: {value}") from exc


def truncate(moment: datetime, granularity: Granularity) -> datetime:
    """Floor a UTC datetime to the start of its bucket, like Postgres date_trunc."""
    moment = moment.astimezone(UTC)
    if granularity is Granularity.HOUR:
        return moment.replace(minute=0, second=0, microsecond=0)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity is Granularity.DAY:
        return day
    if granularity is Granularity.WEEK:
        return day - timedelta(days=day.weekday())
    return day.replace(day=1)


def truncate_epoch(epoch_seconds: int | float, granularity: Granularity) -> int:
    moment = datetime.fromtimestamp(int(epoch_seconds), tz=UTC)
    return int(truncate(moment, granularity).timestamp())


def _step(moment: datetime, granularity: Granularity) -> datetime:
    if granularity is Granularity.HOUR:
        return moment + timedelta(hours=1)
    if granularity is Granularity.DAY:
        return moment + timedelta(days=1)
    if granularity is Granularity.WEEK:
        return moment + timedelta(weeks=1)
    if moment.month == 12:
        return moment.replace(year=moment.year + 1, month=1)
    return moment.replace(month=moment.month + 1)


def generate_duration_series(
    duration: str | ChartDuration,
    now: datetime | None = None,
) -> DurationSeriesSpec:
    """Bucket boundaries from ``now - span`` to ``now``, both truncated, inclusive."""
    span, granularity = _DURATIONS[parse_duration(duration)]
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    current = truncate(now - span, granularity)
    end = truncate(now, granularity)
    buckets: list[int] = []
    while current <= end:
        buckets.append(int(current.timestamp()))
        current = _step(current, granularity)
    return DurationSeriesSpec(buckets=tuple(buckets), granularity=granularity)
