from __future__ import annotations

import io
import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from PIL import Image, UnidentifiedImageError

from ..ai.mock import MockWasteClassifier
from ..ai.service import ClassificationService
from ..device.capture import FileImageSource
from ..device.workflow import (
    STATUS_RECORDED,
    STATUS_REJECTED,
    ScanOutcome,
    ScanWorkflow,
)
from ..errors import InvalidCategory, StorageError
from ..history.store import ResultStore, ScanRecord
from .schemas import (
    ClassificationModel,
    HistoryResponse,
    ManualRecordRequest,
    ScanRecordModel,
    ScanResponse,
    StatsResponse,
    WeatherResponse,
)
from .weather import DEFAULT_CITY, WeatherClient


logger = logging.getLogger(__name__)

_STEP_STATUS_CODES = {
    "acquisition": 400,
    "classification": 503,
    "recording": 500,
}


def _record_model(record: ScanRecord) -> ScanRecordModel:
    return ScanRecordModel(
        id=record.id,
        category=record.category,
        created_at=record.created_at,
        source=record.source,
    )


def _raise_for_outcome(outcome: ScanOutcome) -> None:
    if outcome.status == STATUS_RECORDED:
        return
    if outcome.status == STATUS_REJECTED:
        raise HTTPException(status_code=409, detail=str(outcome.error))
    step = outcome.step or "scan"
    if isinstance(outcome.error, InvalidCategory):
        status_code = 422
    else:
        status_code = _STEP_STATUS_CODES.get(step, 500)
    raise HTTPException(status_code=status_code, detail=f"{step} failed: {outcome.error}")


def create_app(
    store: ResultStore | None = None,
    classification_service: ClassificationService | None = None,
    weather_client: WeatherClient | None = None,
    upload_dir: Path | None = None,
    default_city: str = DEFAULT_CITY,
) -> FastAPI:
    result_store = store or ResultStore()
    result_store.initialize()
    service = classification_service or ClassificationService(
        fallback=MockWasteClassifier()
    )
    weather = weather_client or WeatherClient()
    uploads = upload_dir or Path("data/uploads")
    workflow = ScanWorkflow(classifier=service, store=result_store)

    app = FastAPI(title="Smart Bin API", version="0.1.0")
    app.state.store = result_store
    app.state.classification_service = service
    app.state.weather_client = weather
    app.state.workflow = workflow
    app.state.upload_dir = uploads

    logger.info(
        "API server initialised database=%s remote_classifier=%s upload_dir=%s",
        result_store.database_path,
        service.remote.__class__.__name__ if service.remote is not None else "none",
        uploads,
    )

    @app.get("/health", response_model=dict[str, str])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/v1/scans", response_model=ScanResponse)
    async def create_scan(image: UploadFile = File(...)) -> ScanResponse:
        if workflow.busy:
            raise HTTPException(status_code=409, detail="A scan is already in progress")
        payload = await image.read()
        try:
            with Image.open(io.BytesIO(payload)) as probe:
                image_format = probe.format
                probe.verify()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            logger.info("Rejecting upload filename=%s: %s", image.filename, exc)
            raise HTTPException(
                status_code=400, detail="acquisition failed: upload is not a readable image"
            ) from exc

        suffix = Path(image.filename or "").suffix or f".{(image_format or 'jpeg').lower()}"
        uploads.mkdir(parents=True, exist_ok=True)
        path = uploads / f"upload_{uuid.uuid4().hex[:12]}{suffix}"
        path.write_bytes(payload)
        mime_type = Image.MIME.get(image_format or "", image.content_type or "image/jpeg")
        logger.info(
            "Scan upload received filename=%s bytes=%d format=%s",
            image.filename,
            len(payload),
            image_format,
        )
        try:
            outcome = await workflow.start(FileImageSource(path, mime_type=mime_type))
        finally:
            path.unlink(missing_ok=True)

        workflow.acknowledge()
        _raise_for_outcome(outcome)
        result = outcome.result
        record = outcome.record
        return ScanResponse(
            status=outcome.status,
            classification=ClassificationModel(
                category=result.category,
                confidence=result.confidence,
                source=result.source,
                details=result.details,
            ),
            record=_record_model(record),
        )

    @app.post("/v1/scans/manual", response_model=ScanRecordModel)
    async def record_manual(request: ManualRecordRequest) -> ScanRecordModel:
        outcome = await workflow.record_manual(request.category)
        _raise_for_outcome(outcome)
        return _record_model(outcome.record)

    @app.get("/v1/history", response_model=HistoryResponse)
    def list_history(q: Optional[str] = None) -> HistoryResponse:
        try:
            records = result_store.list(q)
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=f"{exc.step} failed: {exc}") from exc
        return HistoryResponse(query=q, records=[_record_model(r) for r in records])

    @app.get("/v1/history/stats", response_model=StatsResponse)
    def history_stats() -> StatsResponse:
        try:
            counts = result_store.summarize()
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=f"{exc.step} failed: {exc}") from exc
        total = counts.pop("total", 0)
        return StatsResponse(counts=counts, total=total)

    @app.get("/v1/weather", response_model=WeatherResponse)
    def current_weather(city: Optional[str] = None) -> WeatherResponse:
        report = weather.get_forecast(city or default_city)
        return WeatherResponse(
            temperature=report.temperature,
            description=report.description,
            humidity=report.humidity,
            icon=report.icon,
            city=report.city,
            source=report.source,
        )

    return app


__all__ = ["create_app"]
