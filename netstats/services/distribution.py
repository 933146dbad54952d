from __future__ import annotations

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Protocol, Sequence

from netstats.services.duration_series import truncate_epoch
from netstats.services.models import CategoryDatapoint, Granularity, Participant, to_decimal

SNAPSHOT_INTERVALS_DAYS = (1, 7, 30)
SNAPSHOT_TOP_N = 4
EVOLUTION_TOP_N = 10
EVOLUTION_WINDOW_DAYS = 30
EVOLUTION_MIN_POINTS = 2
OTHER_LABEL = "Other"
SECONDS_PER_DAY = 86400


class ParticipantLookup(Protocol):
    async def get_participant_by_address(self, address: str) -> Participant | None: ...


def interval_category(days: int) -> str:
    return f"{days} day{'s' if days > 1 else ''}"


async def resolve_nicknames(registry: ParticipantLookup, addresses: Sequence[str]) -> dict[str, str | None]:
    """Look every address up concurrently; the result is keyed, so completion order is irrelevant."""
    participants = await asyncio.gather(*(registry.get_participant_by_address(a) for a in addresses))
    return {
        address: (participant.nickname or None) if participant is not None else None
        for address, participant in zip(addresses, participants)
    }


def label_participants(addresses: Sequence[str], nicknames: Mapping[str, str | None]) -> dict[str, str]:
    """Unique display labels in share order.

    A nickname that is already taken (or equals ``OTHER_LABEL``) gets the
    address suffix, then falls back to the address itself.
    """
    taken: set[str] = {OTHER_LABEL}
    labels: dict[str, str] = {}
    for address in addresses:
        nickname = nicknames.get(address)
        candidates = [nickname, f"{nickname} ({address[-4:]})"] if nickname else []
        label = next((c for c in candidates if c not in taken), address)
        base, ordinal = label, 2
        while label in taken:
            label = f"{base} #{ordinal}"
            ordinal += 1
        taken.add(label)
        labels[address] = label
    return labels


def distribution_snapshot(
    category: str,
    top_rows: Sequence[Mapping[str, Any]],
    window_total: int | Decimal,
    labels: Mapping[str, str],
) -> CategoryDatapoint:
    """Share of the top miners in one window plus the residual ``Other`` share.

    ``top_rows`` carry ``address`` and ``blocks`` (blocks mined in the window).
    """
    total = to_decimal(window_total)
    if not top_rows or total <= 0:
        return CategoryDatapoint(category=category, data={})

    data: dict[str, Decimal] = {}
    accumulated = Decimal(0)
    for row in top_rows:
        share = to_decimal(row["blocks"]) / total
        label = labels.get(row["address"], row["address"])
        if label in data or label == OTHER_LABEL:
            label = row["address"]
        data[label] = share
        accumulated += share
    data[OTHER_LABEL] = Decimal(1) - accumulated
    return CategoryDatapoint(category=category, data=data)


def _empty_data(keys: Sequence[str]) -> dict[str, Decimal]:
    return {key: Decimal(0) for key in keys}


def mining_evolution(
    addresses: Sequence[str],
    labels: Mapping[str, str],
    daily_rows: Iterable[Mapping[str, Any]],
    now: datetime,
    min_points: int = EVOLUTION_MIN_POINTS,
) -> list[CategoryDatapoint]:
    """One datapoint per day with share data, ascending, every datapoint keyed by all labels.

    ``daily_rows`` carry ``address``, ``date`` (epoch seconds) and
    ``percentage``. The series is left-padded with empty days so it holds at
    least ``min_points`` datapoints.
    """
    keys = [labels.get(address, address) for address in addresses]
    by_day: dict[int, dict[str, Decimal]] = {}
    for row in daily_rows:
        address = row["address"]
        if address not in labels:
            continue
        day = truncate_epoch(int(row["date"]), Granularity.DAY)
        data = by_day.get(day)
        if data is None:
            data = by_day[day] = _empty_data(keys)
        data[labels[address]] = to_decimal(row["percentage"])

    points = [CategoryDatapoint(category=day, data=by_day[day]) for day in sorted(by_day)]

    first_day = points[0].category if points else truncate_epoch(int(now.timestamp()), Granularity.DAY)
    if not points:
        points.append(CategoryDatapoint(category=first_day, data=_empty_data(keys)))
    day = int(first_day)
    padding: list[CategoryDatapoint] = []
    while len(points) + len(padding) < min_points:
        day -= SECONDS_PER_DAY
        padding.append(CategoryDatapoint(category=day, data=_empty_data(keys)))
    return list(reversed(padding)) + points
