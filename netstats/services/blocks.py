from __future__ import annotations

from typing import Any, Iterable

from netstats.services.models import Block
from netstats.services.sql_adapter import SqlSession


def _to_block(row: dict[str, Any]) -> Block:
    return Block(
        height=int(row["height"]),
        miner=row.get("miner") or "",
        parent_hashes=tuple(row.get("parent_hashes") or ()),
        ingested_at=int(row["ingested_at"]),
    )


class BlockIndex:
    """Block lookups against the ingested ``blocks`` table."""

    def __init__(self, session: SqlSession) -> None:
        self.sql = session

    async def top(self) -> Block | None:
        row = await self.sql.fetch_one(
            "SELECT height, miner, parent_hashes, ingested_at FROM blocks ORDER BY height DESC LIMIT 1"
        )
        return _to_block(row) if row else None

    async def by_heights(self, heights: Iterable[int]) -> list[Block]:
        wanted = sorted(set(heights))
        if not wanted:
            return []
        rows = await self.sql.fetch_rows(
            "SELECT DISTINCT ON (height) height, miner, parent_hashes, ingested_at "
            "FROM blocks WHERE height = ANY(%s) ORDER BY height ASC",
            (wanted,),
        )
        return [_to_block(row) for row in rows]
