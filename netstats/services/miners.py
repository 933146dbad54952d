from __future__ import annotations

import logging
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

from netstats.services.models import Block, ChainStat, MinerStat, Participant

logger = logging.getLogger(__name__)


def clamp_height(height: int, top_height: int) -> int:
    return top_height if height > top_height else height


def heights_to_resolve(participants: Iterable[Participant], top_height: int) -> set[int]:
    heights = {top_height}
    heights.update(clamp_height(p.height, top_height) for p in participants)
    return heights


def index_blocks(blocks: Iterable[Block]) -> Mapping[int, Block]:
    return MappingProxyType({block.height: block for block in blocks})


def index_chain_stats(stats: Iterable[ChainStat]) -> Mapping[str, ChainStat]:
    return MappingProxyType({stat.address: stat for stat in stats})


def reconcile(
    participants: Sequence[Participant],
    top_height: int,
    blocks_by_height: Mapping[int, Block],
    chain_stats: Mapping[str, ChainStat],
) -> list[MinerStat]:
    """Join registry entries with the block at their (clamped) height.

    Entries whose block cannot be found are left out and logged; they never
    appear with empty fields. Registry order is preserved.
    """
    stats: list[MinerStat] = []
    for participant in participants:
        height = clamp_height(participant.height, top_height)
        block = blocks_by_height.get(height)
        if block is None:
            logger.warning(
                "No block found for miner address=%s peer_id=%s nickname=%s height=%s top_height=%s",
                participant.address,
                participant.peer_id,
                participant.nickname,
                participant.height,
                top_height,
            )
            continue

        chain_stat = chain_stats.get(participant.address)
        stats.append(
            MinerStat(
                nickname=participant.nickname,
                address=participant.address,
                peer_id=participant.peer_id,
                parent_hashes=block.parent_hashes,
                power=participant.power,
                capacity=participant.capacity,
                block_percentage=chain_stat.block_percentage if chain_stat else Decimal(0),
                block_height=block.height,
                block_time=block.ingested_at,
                is_in_consensus=participant.height >= top_height,
                last_seen=participant.last_seen,
            )
        )
    return stats
