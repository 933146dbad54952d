from __future__ import annotations

import unittest
from decimal import Decimal

from netstats.services.histogram import bucket


class HistogramBucketerTests(unittest.TestCase):
    def test_counts_cover_every_sample(self) -> None:
        samples = [Decimal(v) for v in ("0", "1", "10000", "10001", "90000", "90000.5", "1000000")]
        buckets = bucket(samples, width=10000, bucket_count=10)

        self.assertEqual([b.index for b in buckets], list(range(1, 11)))
        self.assertEqual(sum(b.count for b in buckets), len(samples))
        self.assertEqual(buckets[0].count, 3)
        self.assertEqual(buckets[1].count, 1)
        self.assertEqual(buckets[8].count, 1)
        self.assertEqual(buckets[9].count, 2)

    def test_fixed_buckets_are_contiguous(self) -> None:
        buckets = bucket([], width=10000, bucket_count=10)
        self.assertEqual(buckets[0].range_start, 1)
        self.assertEqual(buckets[0].range_end, 10000)
        for current, following in zip(buckets, buckets[1:]):
            self.assertEqual(current.range_end + 1, following.range_start)
        self.assertTrue(all(b.count == 0 for b in buckets))

    def test_last_bucket_is_unbounded(self) -> None:
        buckets = bucket([Decimal("5e12")], width=100, bucket_count=4)
        overflow = buckets[-1]
        self.assertEqual(overflow.range_start, 301)
        self.assertEqual(overflow.range_end, 0)
        self.assertEqual(overflow.count, 1)

    def test_upper_boundary_falls_in_lower_bucket(self) -> None:
        buckets = bucket([Decimal(200)], width=100, bucket_count=4)
        self.assertEqual([b.count for b in buckets], [0, 1, 0, 0])

    def test_rejects_invalid_layout(self) -> None:
        with self.assertRaises(ValueError):
            bucket([], width=0, bucket_count=10)
        with self.assertRaises(ValueError):
            bucket([], width=10, bucket_count=1)


if __name__ == "__main__":
    unittest.main()
