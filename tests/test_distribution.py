from __future__ import annotations

import asyncio
import unittest
from datetime import UTC, datetime
from decimal import Decimal

from netstats.services.distribution import (
    OTHER_LABEL,
    distribution_snapshot,
    interval_category,
    label_participants,
    mining_evolution,
    resolve_nicknames,
)
from netstats.services.models import Participant

DAY = 86400
NOW = datetime(2024, 3, 15, 10, 30, tzinfo=UTC)
TODAY = int(datetime(2024, 3, 15, tzinfo=UTC).timestamp())


class _SlowRegistry:
    """Answers later for earlier addresses so completion order differs from request order."""

    def __init__(self, nicknames: dict[str, str]) -> None:
        self._nicknames = nicknames

    async def get_participant_by_address(self, address: str) -> Participant | None:
        position = list(self._nicknames).index(address) if address in self._nicknames else 0
        await asyncio.sleep(0.01 * (len(self._nicknames) - position))
        nickname = self._nicknames.get(address)
        if nickname is None:
            return None
        return Participant(
            address=address,
            nickname=nickname,
            peer_id="",
            power=Decimal(0),
            capacity=Decimal(0),
            height=0,
            last_seen=0,
        )


class LabelTests(unittest.IsolatedAsyncioTestCase):
    async def test_nicknames_resolve_concurrently_and_keep_addresses(self) -> None:
        registry = _SlowRegistry({"t0aaa1111": "alpha", "t0bbb2222": "bravo"})
        nicknames = await resolve_nicknames(registry, ["t0aaa1111", "t0bbb2222", "t0unknown"])
        self.assertEqual(nicknames, {"t0aaa1111": "alpha", "t0bbb2222": "bravo", "t0unknown": None})

    def test_duplicate_nicknames_get_address_suffix(self) -> None:
        labels = label_participants(
            ["t0abc1234", "t0xyz5678", "t0nonick"],
            {"t0abc1234": "alpha", "t0xyz5678": "alpha", "t0nonick": None},
        )
        self.assertEqual(labels, {"t0abc1234": "alpha", "t0xyz5678": "alpha (5678)", "t0nonick": "t0nonick"})

    def test_nickname_equal_to_residual_label_is_suffixed(self) -> None:
        labels = label_participants(["t0a1111", "t0b2222"], {"t0a1111": OTHER_LABEL, "t0b2222": "bravo"})
        self.assertEqual(labels, {"t0a1111": "Other (1111)", "t0b2222": "bravo"})

        point = distribution_snapshot("1 day", [{"address": "t0a1111", "blocks": 5}, {"address": "t0b2222", "blocks": 3}], 10, labels)
        self.assertEqual(point.data, {"Other (1111)": Decimal("0.5"), "bravo": Decimal("0.3"), OTHER_LABEL: Decimal("0.2")})
        self.assertEqual(sum(point.data.values()), Decimal(1))

    def test_nickname_equal_to_another_address_keeps_labels_unique(self) -> None:
        labels = label_participants(
            ["t0a1111", "t0b2222", "t0c3333"],
            {"t0a1111": "t0b2222", "t0b2222": None, "t0c3333": "t0b2222 (3333)"},
        )
        self.assertEqual(len(set(labels.values())), 3)
        self.assertEqual(labels["t0a1111"], "t0b2222")
        self.assertEqual(labels["t0b2222"], "t0b2222 #2")
        self.assertEqual(labels["t0c3333"], "t0b2222 (3333)")

    def test_snapshot_keeps_every_share_when_labels_collide(self) -> None:
        rows = [{"address": "t0a", "blocks": 5}, {"address": "t0b", "blocks": 3}]
        point = distribution_snapshot("7 days", rows, 10, {"t0a": "same", "t0b": "same"})
        self.assertEqual(point.data, {"same": Decimal("0.5"), "t0b": Decimal("0.3"), OTHER_LABEL: Decimal("0.2")})
        self.assertEqual(sum(point.data.values()), Decimal(1))

    def test_interval_category_names(self) -> None:
        self.assertEqual(interval_category(1), "1 day")
        self.assertEqual(interval_category(30), "30 days")


class DistributionSnapshotTests(unittest.TestCase):
    def test_shares_and_other_sum_to_one(self) -> None:
        rows = [{"address": "a", "blocks": 3}, {"address": "b", "blocks": 2}, {"address": "c", "blocks": 1}]
        point = distribution_snapshot("7 days", rows, 9, {"a": "alpha", "b": "b", "c": "c"})

        self.assertEqual(point.category, "7 days")
        self.assertEqual(set(point.data), {"alpha", "b", "c", OTHER_LABEL})
        self.assertLess(abs(sum(point.data.values()) - 1), Decimal("1e-20"))
        self.assertLess(abs(point.data[OTHER_LABEL] - Decimal(3) / 9), Decimal("1e-20"))

    def test_empty_window_yields_empty_category(self) -> None:
        point = distribution_snapshot("1 day", [], 0, {})
        self.assertEqual(point.category, "1 day")
        self.assertEqual(point.data, {})


class MiningEvolutionTests(unittest.TestCase):
    def test_every_day_carries_every_label(self) -> None:
        labels = {"a": "alpha", "b": "bravo"}
        rows = [
            {"address": "a", "date": TODAY, "percentage": Decimal("0.5")},
            {"address": "b", "date": TODAY - DAY, "percentage": Decimal("0.25")},
            {"address": "b", "date": TODAY, "percentage": Decimal("0.5")},
        ]
        points = mining_evolution(["a", "b"], labels, rows, now=NOW)

        self.assertEqual([p.category for p in points], [TODAY - DAY, TODAY])
        self.assertEqual(points[0].data, {"alpha": Decimal(0), "bravo": Decimal("0.25")})
        self.assertEqual(points[1].data, {"alpha": Decimal("0.5"), "bravo": Decimal("0.5")})
        self.assertTrue(all(set(p.data) == {"alpha", "bravo"} for p in points))

    def test_single_day_is_left_padded(self) -> None:
        rows = [{"address": "a", "date": TODAY, "percentage": Decimal(1)}]
        points = mining_evolution(["a"], {"a": "alpha"}, rows, now=NOW)

        self.assertEqual([p.category for p in points], [TODAY - DAY, TODAY])
        self.assertEqual(points[0].data, {"alpha": Decimal(0)})

    def test_no_blocks_still_yields_two_points(self) -> None:
        points = mining_evolution([], {}, [], now=NOW)
        self.assertEqual([p.category for p in points], [TODAY - DAY, TODAY])
        self.assertTrue(all(p.data == {} for p in points))


if __name__ == "__main__":
    unittest.main()
