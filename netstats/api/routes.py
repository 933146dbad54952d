from __future__ import annotations

import dataclasses
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query

from netstats.api.schemas import ResponseMetadata, StatsResponse
from netstats.services.duration_series import parse_duration
from netstats.services.registry import RegistryClient
from netstats.services.sql_adapter import SqlAdapter
from netstats.services.stats_service import StatsService

router = APIRouter()
_service = StatsService(SqlAdapter(), RegistryClient())


def get_stats_service() -> StatsService:
    return _service


def _payload(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, list):
        return [_payload(item) for item in value]
    return value


def _response(data: Any, metric: str | None = None, duration: str | None = None) -> StatsResponse:
    return StatsResponse(
        metadata=ResponseMetadata(generated_at=datetime.now(UTC), metric=metric, duration=duration),
        data=_payload(data),
    )


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/api/v1/stats", response_model=StatsResponse)
async def get_stats(svc: StatsService = Depends(get_stats_service)) -> StatsResponse:
    try:
        return _response(await svc.get_stats(), metric="storage-stats")
    except Exception as exc:  # pragma: no cover - defensive path
        raise HTTPException(status_code=500, detail=f"Stats query failed: {exc}") from exc


@router.get("/api/v1/miners", response_model=StatsResponse)
async def get_miner_stats(svc: StatsService = Depends(get_stats_service)) -> StatsResponse:
    try:
        return _response(await svc.get_miner_stats(), metric="miners")
    except Exception as exc:  # pragma: no cover - defensive path
        raise HTTPException(status_code=500, detail=f"Miner stats query failed: {exc}") from exc


@router.get("/api/v1/historical")
def list_historical_metrics(svc: StatsService = Depends(get_stats_service)) -> dict[str, list[str]]:
    return {"metrics": svc.list_historical_metrics()}


@router.get("/api/v1/historical/{metric}", response_model=StatsResponse)
async def get_historical(
    metric: str,
    duration: Annotated[str, Query()] = "month",
    svc: StatsService = Depends(get_stats_service),
) -> StatsResponse:
    if metric not in svc.list_historical_metrics():
        raise HTTPException(status_code=404, detail=f"Unsupported historical metric '{metric}'")
    try:
        chart_duration = parse_duration(duration)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    try:
        points = await svc.get_historical(metric, chart_duration)
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Historical query failed: {exc}") from exc
    return _response(points, metric=metric, duration=chart_duration.value)


@router.post("/api/v1/materialize", response_model=StatsResponse)
async def materialize(svc: StatsService = Depends(get_stats_service)) -> StatsResponse:
    try:
        return _response(await svc.materialize_utilization_stats(), metric="network-usage")
    except Exception as exc:  # pragma: no cover - defensive path
        raise HTTPException(status_code=500, detail=f"Materialization failed: {exc}") from exc
