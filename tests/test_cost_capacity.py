from __future__ import annotations

import unittest
from decimal import Decimal

from netstats.services.cost_capacity import segment, segment_by_size
from netstats.services.models import ParticipantCapacity

ATTO = Decimal(10) ** 18

CAPACITIES = [
    ParticipantCapacity(
        address="t0small",
        pledged_gb=Decimal(10),
        committed_gb=Decimal(5),
        commitments=20,
        ask_price_total=2 * ATTO,
        ask_count=2,
    ),
    ParticipantCapacity(
        address="t0large",
        pledged_gb=Decimal(2_000_000),
        committed_gb=Decimal(1_000_000),
        commitments=4_000_000,
    ),
    ParticipantCapacity(
        address="t0idle",
        pledged_gb=Decimal(20),
        ask_price_total=4 * ATTO,
        ask_count=1,
    ),
]


class CostCapacitySegmenterTests(unittest.TestCase):
    def test_below_threshold_cohort(self) -> None:
        below = segment(CAPACITIES, Decimal(1_000_000), "lt")
        self.assertEqual(below.count, 2)
        self.assertEqual(below.average_capacity_gb, 15)
        self.assertEqual(below.average_storage_price, 2)
        # Only members with commitments count towards utilization.
        self.assertEqual(below.utilization, Decimal("0.5"))

    def test_at_or_above_threshold_cohort(self) -> None:
        above = segment(CAPACITIES, Decimal(2_000_000), "gte")
        self.assertEqual(above.count, 1)
        self.assertEqual(above.average_storage_price, 0)
        self.assertEqual(above.utilization, Decimal("0.5"))

    def test_cohorts_partition_participants(self) -> None:
        below, above = segment_by_size(CAPACITIES, Decimal(1_000_000))
        self.assertEqual(below.count + above.count, len(CAPACITIES))

    def test_empty_cohort_is_all_zero(self) -> None:
        empty = segment(CAPACITIES, Decimal(1), "lt")
        self.assertEqual(
            (empty.count, empty.average_storage_price, empty.average_capacity_gb, empty.utilization),
            (0, 0, 0, 0),
        )
        self.assertEqual(segment([], Decimal(1), "gte").count, 0)

    def test_unknown_comparison_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            segment(CAPACITIES, Decimal(1), "gt")  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
