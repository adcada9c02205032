from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from coreason_variance.cache import AnalysisCache, InMemoryAnalysisCache, generate_cache_key
from coreason_variance.calculator import calculate_variance
from coreason_variance.classifier import SeverityClassifier
from coreason_variance.config import settings
from coreason_variance.database import get_db, get_previous_snapshot, get_snapshot, save_snapshot
from coreason_variance.exceptions import VarianceAnalysisError
from coreason_variance.insights import InsightGenerator
from coreason_variance.models import (
    AnalysisResult,
    AnalyzeRequest,
    CalculateRequest,
    CalculateResponse,
    ErrorResponse,
    ThresholdConfig,
)
from coreason_variance.reconciler import VarianceReconciler
from coreason_variance.utils.logger import logger

app = FastAPI(title="Variance Reconciliation Service")
app.state.cache = InMemoryAnalysisCache(ttl_seconds=settings.CACHE_TTL_SECONDS)
app.state.reconciler = VarianceReconciler(
    insight_generator=InsightGenerator(net_impact_threshold=settings.NET_IMPACT_THRESHOLD),
    include_zero_variances=settings.INCLUDE_ZERO_VARIANCES,
)

# Annotated dependency for Ruff B008
SessionDep = Annotated[AsyncSession, Depends(get_db)]


def get_cache(request: Request) -> AnalysisCache:
    cache: AnalysisCache = request.app.state.cache
    return cache


def get_reconciler(request: Request) -> VarianceReconciler:
    reconciler: VarianceReconciler = request.app.state.reconciler
    return reconciler


CacheDep = Annotated[AnalysisCache, Depends(get_cache)]
ReconcilerDep = Annotated[VarianceReconciler, Depends(get_reconciler)]


def default_thresholds() -> ThresholdConfig:
    return ThresholdConfig(
        warning_percent=settings.DEFAULT_WARNING_PERCENT,
        critical_percent=settings.DEFAULT_CRITICAL_PERCENT,
        favorable_percent=settings.DEFAULT_FAVORABLE_PERCENT,
    )


@app.exception_handler(VarianceAnalysisError)  # type: ignore[misc]
async def handle_analysis_error(request: Request, exc: VarianceAnalysisError) -> JSONResponse:
    logger.warning(f"Analysis rejected on {request.url.path}: [{exc.code}] {exc.message}")
    body = ErrorResponse(code=exc.code, message=exc.message, item_id=exc.item_id, field=exc.field)
    return JSONResponse(status_code=422, content=body.model_dump())


@app.post("/variance/analyze", response_model=AnalysisResult)  # type: ignore[misc]
async def analyze_variance(
    request: AnalyzeRequest, session: SessionDep, cache: CacheDep, reconciler: ReconcilerDep
) -> AnalysisResult:
    config = request.thresholds if request.thresholds is not None else default_thresholds()
    key = generate_cache_key(request.organization_id, request.board_id, request.period)

    if request.use_cache:
        cached = await cache.get(key)
        # A result computed under other thresholds is not reusable
        if cached is not None and cached.thresholds == config:
            return cached

    async with session.begin():
        previous_snapshot = await get_previous_snapshot(
            session, request.organization_id, request.board_id, request.period
        )
        previous = previous_snapshot.to_result() if previous_snapshot is not None else None

        result = reconciler.analyze(
            request.budget_items, request.actual_items, config=config, previous_result=previous
        )

        if request.persist:
            await save_snapshot(session, request.organization_id, request.board_id, request.period, result)

    await cache.set(key, result)
    return result


@app.get("/variance/{organization_id}/{board_id}/{period}", response_model=AnalysisResult)  # type: ignore[misc]
async def get_variance(organization_id: str, board_id: str, period: str, session: SessionDep) -> AnalysisResult:
    snapshot = await get_snapshot(session, organization_id, board_id, period)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Variance analysis not found")
    return snapshot.to_result()


@app.post("/variance/calculate", response_model=CalculateResponse)  # type: ignore[misc]
async def calculate(request: CalculateRequest) -> CalculateResponse:
    classifier = SeverityClassifier(request.thresholds if request.thresholds is not None else default_thresholds())
    figures = calculate_variance(request.budget, request.actual, request.account_type)
    return CalculateResponse(
        variance=figures.variance,
        variance_percent=figures.variance_percent,
        direction=figures.direction,
        severity=classifier.classify(figures.variance_percent),
    )
