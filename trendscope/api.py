"""FastAPI surface for the dashboard: collect, trending, and stored listings."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from . import __version__
from .auth import AuthenticatedUser, AuthenticationError, bearer_token, verify_supabase_token
from .collector.aggregator import TrendAggregator
from .collector.errors import CollectionValidationError
from .collector.formatter import error_envelope, format_result, success_envelope
from .collector.models import DeduplicationOptions, Platform
from .config import AppConfig
from .db import TrendListQuery, TrendStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trends", tags=["Trends"])


def get_aggregator(request: Request) -> TrendAggregator:
    return request.app.state.aggregator


def get_store(request: Request) -> Optional[TrendStore]:
    return request.app.state.store


async def current_user(request: Request) -> Optional[AuthenticatedUser]:
    """Resolve the Supabase user; ``None`` when auth is disabled for local use."""
    config: AppConfig = request.app.state.config
    if config.auth_disabled:
        return None
    token = bearer_token(request.headers.get("Authorization"))
    return verify_supabase_token(token, config.secret("supabase_jwt_secret"))


def _problems(exc: ValidationError | RequestValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]


@router.post("/collect", status_code=status.HTTP_200_OK, summary="Collect trending videos for a keyword")
async def collect_trends(
    payload: dict[str, Any] = Body(...),
    user: Optional[AuthenticatedUser] = Depends(current_user),
    aggregator: TrendAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    """Body is camelCase ``TrendCollectionOptions`` plus an optional ``deduplication`` block."""
    options = dict(payload)
    dedup_raw = options.pop("deduplication", None)
    dedup_options = None
    if dedup_raw is not None:
        try:
            dedup_options = DeduplicationOptions.model_validate(dedup_raw)
        except ValidationError as exc:
            raise CollectionValidationError("Invalid deduplication options", _problems(exc)) from exc

    logger.info("Collect request for %r from %s", options.get("keyword"), user.id if user else "anonymous")
    result = await aggregator.collect(options, dedup_options=dedup_options)
    return success_envelope(format_result(result))


@router.get("/trending", summary="Videos published in the last week")
async def trending(
    request: Request,
    keyword: str = Query(..., min_length=1),
    max_results: int = Query(10, ge=1, le=50, alias="maxResults"),
    country: Optional[Literal["KR", "US", "JP"]] = Query(None),
    user: Optional[AuthenticatedUser] = Depends(current_user),
    aggregator: TrendAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    extra = {"country": country} if country else {}
    lookback_days = request.app.state.config.trending_lookback_days
    result = await aggregator.collect_trending(keyword, max_results=max_results, lookback_days=lookback_days, **extra)
    return success_envelope(format_result(result))


@router.get("", summary="List stored trend videos")
async def list_trends(
    keyword: Optional[str] = Query(None),
    platform: Optional[Platform] = Query(None),
    country: Optional[Literal["KR", "US", "JP"]] = Query(None),
    sort_by: Literal["collected_at", "view_count", "like_count", "published_at"] = Query(
        "collected_at", alias="sortBy"
    ),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: Optional[AuthenticatedUser] = Depends(current_user),
    store: Optional[TrendStore] = Depends(get_store),
):
    if store is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error_envelope("store_unavailable", "Trend storage is not configured"),
        )
    query = TrendListQuery(
        keyword=keyword,
        platform=platform,
        country=country,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    rows, total = await asyncio.to_thread(store.list_trends, query)
    return success_envelope({"trends": rows, "total": total})


def create_app(
    config: AppConfig,
    aggregator: Optional[TrendAggregator] = None,
    store: Optional[TrendStore] = None,
) -> FastAPI:
    """Build the API; collection results are persisted when ``store`` is given.

    A caller-supplied aggregator is used as is; only one built here is wired
    to ``store``.
    """
    app = FastAPI(title="TrendScope API", version=__version__)
    app.state.config = config
    app.state.store = store
    app.state.aggregator = aggregator or TrendAggregator.from_config(config, store=store)

    @app.exception_handler(AuthenticationError)
    async def _unauthorized(request: Request, exc: AuthenticationError) -> JSONResponse:
        logger.warning("Authentication failed on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=error_envelope("unauthorized", str(exc)),
        )

    @app.exception_handler(CollectionValidationError)
    async def _invalid_options(request: Request, exc: CollectionValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_envelope("validation_error", str(exc), exc.problems),
        )

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_envelope("validation_error", "Invalid request parameters", _problems(exc)),
        )

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "environment": config.environment,
            "platforms": [p.value for p in app.state.aggregator.supported_platforms],
        }

    app.include_router(router)
    return app
