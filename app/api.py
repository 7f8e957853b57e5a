"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.schemas import (
    AddRainfallResponse,
    RainfallRecord,
    RainfallRecordUpdate,
    YearSummaryResponse,
)
from datastore.errors import VersionConflictError
from models.records import MeasurementRecord
from services.ingestion import RainfallService, build_default_service

router = APIRouter()


def get_service() -> RainfallService:
    return build_default_service()


def _to_response(record: MeasurementRecord) -> RainfallRecord:
    return RainfallRecord(
        id=record.record_id,
        amount=record.amount if record.has_amount else None,
        created_at=record.recorded_at,
        notes=record.notes,
    )


@router.api_route(
    "/addRainfall",
    methods=["GET", "POST"],
    response_model=AddRainfallResponse,
    summary="Store a new rainfall measurement stamped with the server time.",
)
async def add_rainfall(
    amount: Optional[str] = Query(None, description="Rainfall amount; parsed leniently."),
    notes: Optional[str] = Query(None, description="Free-form notes."),
    service: RainfallService = Depends(get_service),
) -> AddRainfallResponse:
    record_id = service.add_rainfall(amount, notes)
    return AddRainfallResponse(result=f"new document ID: {record_id} added.")


@router.get(
    "/records/{record_id}",
    response_model=RainfallRecord,
    summary="Fetch a single rainfall measurement.",
)
async def get_record(
    record_id: str,
    service: RainfallService = Depends(get_service),
) -> RainfallRecord:
    try:
        record = service.fetch_record(record_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.args[0],
        ) from exc
    return _to_response(record)


@router.patch(
    "/records/{record_id}",
    response_model=RainfallRecord,
    summary="Change the amount, timestamp or notes of a measurement.",
)
async def update_record(
    record_id: str,
    changes: RainfallRecordUpdate,
    service: RainfallService = Depends(get_service),
) -> RainfallRecord:
    try:
        record = service.update_record(record_id, changes.model_dump(exclude_unset=True))
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.args[0],
        ) from exc
    except VersionConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return _to_response(record)


@router.delete(
    "/records/{record_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a measurement and reverse its contribution.",
)
async def delete_record(
    record_id: str,
    service: RainfallService = Depends(get_service),
) -> Response:
    try:
        service.delete_record(record_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.args[0],
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/summaries/{year}",
    response_model=YearSummaryResponse,
    summary="Fetch the total and monthly rainfall for a year.",
)
async def get_summary(
    year: int,
    service: RainfallService = Depends(get_service),
) -> YearSummaryResponse:
    try:
        summary = service.fetch_summary(year)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.args[0],
        ) from exc
    return YearSummaryResponse(year=year, total=summary.total, monthly=summary.monthly)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
