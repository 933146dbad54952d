from __future__ import annotations

from decimal import Decimal
from typing import Any, Sequence

from netstats.services.models import ChainStat, Granularity, ParticipantCapacity, UsageSnapshot, to_decimal
from netstats.services.sql_adapter import SqlSession

# Bucket date of a ledger epoch column, in UTC.
_BUCKET_SQL = "extract(epoch from date_trunc(%s, to_timestamp({column}) at time zone 'UTC'))::bigint"


def _bucket(column: str) -> str:
    return _BUCKET_SQL.format(column=column)


class LedgerQueries:
    """Read-only aggregate queries over the chain ledger plus the usage snapshot append.

    All methods run on the session they are given, so a caller that groups
    them under one snapshot sees a consistent ledger.
    """

    _TIMESERIES_TIMEOUT_MS = 30_000

    def __init__(self, session: SqlSession, sector_size_gb: Decimal) -> None:
        self.sql = session
        self.sector_size_gb = sector_size_gb

    # --- time series sources -------------------------------------------------

    async def storage_amount_rows(self, granularity: Granularity) -> list[dict[str, Any]]:
        query = f"""
            SELECT max(coalesce(n.total_pledges_gb, 0)) AS amount, {_bucket('n.calculated_at')} AS date
            FROM network_usage_stats n
            GROUP BY date
            ORDER BY date ASC
        """
        return await self.sql.fetch_rows(
            query, (granularity.value,), statement_timeout_ms=self._TIMESERIES_TIMEOUT_MS
        )

    async def utilization_rows(self, granularity: Granularity, since: int) -> list[dict[str, Any]]:
        query = f"""
            SELECT max(n.total_committed_gb) AS committed_gb,
                   max(n.total_pledges_gb) AS pledged_gb,
                   {_bucket('n.calculated_at')} AS date
            FROM network_usage_stats n
            WHERE n.calculated_at >= %s
            GROUP BY date
            ORDER BY date ASC
        """
        return await self.sql.fetch_rows(
            query, (granularity.value, since), statement_timeout_ms=self._TIMESERIES_TIMEOUT_MS
        )

    async def miner_count_rows(self, granularity: Granularity, since: int) -> list[dict[str, Any]]:
        query = f"""
            SELECT max(coalesce(m.count, 0)) AS amount, {_bucket('m.calculated_at')} AS date
            FROM miner_counts m
            WHERE m.calculated_at >= %s
            GROUP BY date
            ORDER BY date ASC
        """
        return await self.sql.fetch_rows(query, (granularity.value, since))

    async def storage_price_rows(self, granularity: Granularity, since: int) -> list[dict[str, Any]]:
        query = f"""
            SELECT avg(a.price) AS amount, {_bucket('b.ingested_at')} AS date
            FROM asks a
                   JOIN messages m ON a.message_id = m.id
                   JOIN blocks b ON b.height = m.height
            WHERE b.ingested_at >= %s
            GROUP BY date
            ORDER BY date ASC
        """
        return await self.sql.fetch_rows(
            query, (granularity.value, since), statement_timeout_ms=self._TIMESERIES_TIMEOUT_MS
        )

    async def average_ask_price(self, days: int) -> Decimal:
        query = """
            SELECT coalesce(avg(a.price), 0) AS avg
            FROM asks a
                   JOIN messages m ON a.message_id = m.id
                   JOIN blocks b ON b.height = m.height
            WHERE b.ingested_at > extract(epoch from (date_trunc('day', current_timestamp) - make_interval(days => %s::int)))
        """
        row = await self.sql.fetch_one(query, (days,))
        return to_decimal(row.get("avg"))

    async def collateral_rows(self, granularity: Granularity) -> list[dict[str, Any]]:
        query = f"""
            SELECT sum(m.value) AS amount, {_bucket('b.ingested_at')} AS date
            FROM messages m
                   JOIN blocks b ON m.height = b.height
            WHERE m.method = 'createMiner'
            GROUP BY date
            ORDER BY date ASC
        """
        return await self.sql.fetch_rows(
            query, (granularity.value,), statement_timeout_ms=self._TIMESERIES_TIMEOUT_MS
        )

    async def collateral_per_gb_rows(self, granularity: Granularity, since: int | None = None) -> list[dict[str, Any]]:
        """Per bucket collateral, pledged GB and their ratio (0 where nothing was pledged)."""
        query = f"""
            SELECT sum(m.value) AS collateral,
                   sum(cast(m.params->>0 AS numeric)) AS sectors,
                   {_bucket('b.ingested_at')} AS date
            FROM messages m
                   JOIN blocks b ON m.height = b.height
            WHERE m.method = 'createMiner'
              AND b.ingested_at >= %s
            GROUP BY date
            ORDER BY date ASC
        """
        rows = await self.sql.fetch_rows(query, (granularity.value, since or 0))
        result: list[dict[str, Any]] = []
        for row in rows:
            collateral = to_decimal(row.get("collateral"))
            gb = to_decimal(row.get("sectors")) * self.sector_size_gb
            amount = collateral / gb if gb > 0 else Decimal(0)
            result.append({"date": int(row["date"]), "collateral": collateral, "gb": gb, "amount": amount})
        return result

    # --- participants --------------------------------------------------------

    async def capacity_samples(self) -> list[Decimal]:
        rows = await self.sql.fetch_rows("SELECT m.amount FROM miners m")
        return [to_decimal(row.get("amount")) for row in rows]

    async def chain_stats(self, addresses: Sequence[str]) -> list[ChainStat]:
        if not addresses:
            return []
        query = """
            SELECT b.miner AS address,
                   max(b.height) AS last_block_mined,
                   count(*)::numeric / (SELECT count(*) FROM blocks) AS block_percentage
            FROM blocks b
            WHERE b.miner = ANY(%s)
            GROUP BY b.miner
        """
        rows = await self.sql.fetch_rows(query, (list(addresses),))
        return [
            ChainStat(
                address=row["address"],
                last_block_mined=int(row["last_block_mined"]),
                block_percentage=to_decimal(row["block_percentage"]),
            )
            for row in rows
        ]

    async def top_block_producers(self, days: int, limit: int) -> tuple[list[dict[str, Any]], int]:
        """Miners with the most blocks in the trailing window, and the window's block count."""
        query = """
            WITH window_blocks AS (SELECT b.miner
                                   FROM blocks b
                                   WHERE b.miner != ''
                                     AND b.ingested_at > extract(epoch from current_timestamp - make_interval(days => %s::int)))
            SELECT w.miner AS address, count(*) AS blocks, (SELECT count(*) FROM window_blocks) AS total
            FROM window_blocks w
            GROUP BY w.miner
            ORDER BY blocks DESC, w.miner ASC
            LIMIT %s
        """
        rows = await self.sql.fetch_rows(query, (days, limit))
        total = int(rows[0]["total"]) if rows else 0
        return [{"address": row["address"], "blocks": int(row["blocks"])} for row in rows], total

    async def daily_block_shares(self, addresses: Sequence[str], days: int) -> list[dict[str, Any]]:
        if not addresses:
            return []
        query = """
            WITH recent AS (SELECT b.miner,
                                   extract(epoch from date_trunc('day', to_timestamp(b.ingested_at) at time zone 'UTC'))::bigint AS date
                            FROM blocks b
                            WHERE b.ingested_at > extract(epoch from current_timestamp - make_interval(days => %s::int))),
                 totals AS (SELECT r.date, count(*) AS count
                            FROM recent r
                            GROUP BY r.date),
                 counts AS (SELECT r.miner AS address, r.date, count(*) AS count
                            FROM recent r
                            WHERE r.miner = ANY(%s)
                            GROUP BY r.miner, r.date)
            SELECT c.address, c.count::numeric / t.count AS percentage, c.date
            FROM counts c
                   JOIN totals t ON c.date = t.date
            ORDER BY c.date ASC
        """
        return await self.sql.fetch_rows(query, (days, list(addresses)))

    async def participant_capacities(self) -> list[ParticipantCapacity]:
        """Pledged GB, committed sectors and ask totals for every miner that pledged capacity."""
        query = """
            WITH pledges AS (SELECT m.from_address AS address, sum(cast(m.params->>0 AS numeric)) AS sectors
                             FROM messages m
                             WHERE m.method = 'createMiner'
                             GROUP BY m.from_address),
                 commitments AS (SELECT m.from_address AS address, count(DISTINCT m.params->>0) AS sectors
                                 FROM messages m
                                 WHERE m.method = 'commitSector'
                                 GROUP BY m.from_address),
                 quotes AS (SELECT m.from_address AS address, sum(a.price) AS price_total, count(*) AS quotes
                            FROM asks a
                                   JOIN messages m ON m.id = a.message_id
                            GROUP BY m.from_address)
            SELECT p.address,
                   p.sectors AS pledged_sectors,
                   coalesce(c.sectors, 0) AS committed_sectors,
                   coalesce(q.price_total, 0) AS price_total,
                   coalesce(q.quotes, 0) AS quotes
            FROM pledges p
                   LEFT OUTER JOIN commitments c ON c.address = p.address
                   LEFT OUTER JOIN quotes q ON q.address = p.address
            ORDER BY p.address ASC
        """
        rows = await self.sql.fetch_rows(query)
        return [
            ParticipantCapacity(
                address=row["address"],
                pledged_gb=to_decimal(row["pledged_sectors"]) * self.sector_size_gb,
                committed_gb=to_decimal(row["committed_sectors"]) * self.sector_size_gb,
                commitments=int(row["committed_sectors"]),
                ask_price_total=to_decimal(row["price_total"]),
                ask_count=int(row["quotes"]),
            )
            for row in rows
        ]

    async def usage_totals(self) -> tuple[Decimal, Decimal]:
        """Network-wide committed and pledged GB.

        Each total is taken over every sender of its own message kind, so
        commitments from an address without a pledge still count.
        """
        query = """
            WITH commitments AS (SELECT DISTINCT m.from_address, m.params->>0 AS sector
                                 FROM messages m
                                 WHERE m.method = 'commitSector')
            SELECT (SELECT count(*) FROM commitments) AS committed_sectors,
                   (SELECT coalesce(sum(cast(m.params->>0 AS numeric)), 0)
                    FROM messages m
                    WHERE m.method = 'createMiner') AS pledged_sectors
        """
        row = await self.sql.fetch_one(query)
        committed_gb = to_decimal(row.get("committed_sectors")) * self.sector_size_gb
        pledged_gb = to_decimal(row.get("pledged_sectors")) * self.sector_size_gb
        return committed_gb, pledged_gb

    # --- writes --------------------------------------------------------------

    async def insert_usage_snapshot(self, snapshot: UsageSnapshot) -> None:
        await self.sql.execute(
            """
            INSERT INTO network_usage_stats (total_committed_gb, total_pledges_gb, calculated_at)
            VALUES (%s, %s, %s)
            """,
            (snapshot.total_committed_gb, snapshot.total_pledges_gb, snapshot.calculated_at),
        )
