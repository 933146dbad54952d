from __future__ import annotations

import os
from typing import Any

import httpx

from netstats.services.models import Participant, to_decimal


def _to_participant(payload: dict[str, Any]) -> Participant:
    return Participant(
        address=str(payload.get("minerAddress") or payload.get("address") or ""),
        nickname=str(payload.get("nickname") or ""),
        peer_id=str(payload.get("peerId") or ""),
        power=to_decimal(payload.get("power")),
        capacity=to_decimal(payload.get("capacity")),
        height=int(payload.get("height") or 0),
        last_seen=int(payload.get("lastSeen") or 0),
    )


class RegistryClient:
    """HTTP client for the live node registry (currently known miners)."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("REGISTRY_URL", "http://localhost:8080")).rstrip("/")
        timeout = timeout_seconds if timeout_seconds is not None else float(os.getenv("REGISTRY_TIMEOUT_SECONDS", "10"))
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def list_participants(self) -> list[Participant]:
        response = await self._client.get("/miners")
        response.raise_for_status()
        return [_to_participant(item) for item in response.json()]

    async def get_participant_by_address(self, address: str) -> Participant | None:
        response = await self._client.get(f"/miners/{address}")
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        response.raise_for_status()
        payload = response.json()
        return _to_participant(payload) if payload else None

    async def close(self) -> None:
        await self._client.aclose()
