"""
HTTP surface for search, indexing, reviews and related-item discovery.
"""

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .schemas import (
    DeleteResponse,
    HealthResponse,
    IndexRequest,
    IndexResponse,
    RelatedItemModel,
    RelatedResponse,
    ReviewCardSummary,
    ReviewRequest,
    ScheduleEntryModel,
    ScheduleResponse,
    SearchRequest,
    SearchResponseModel,
    SearchResultModel,
)
from ..core.config import COLLECTIONS, VERSION
from ..core.container import ServiceContainer
from ..core.errors import (
    GraphIntegrityError,
    IndexInconsistency,
    InvalidQuery,
    ProviderUnavailable,
    TotalFailure,
)
from ..core.search_service import SearchOptions
from ..util.logging import logger
from ..vector.types import IndexDocument, SearchFilter


def _error(status_code: int, code: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": code, "detail": detail})


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown collection: {collection}")


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application around a service container.

    Without an explicit container one is built from the environment when the
    application starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "container", None) is None:
            app.state.container = ServiceContainer.build()
        await app.state.container.startup()
        try:
            yield
        finally:
            await app.state.container.shutdown()

    app = FastAPI(
        title="VocabMind API",
        version=VERSION,
        description="Hybrid vocabulary search and adaptive spaced repetition",
        lifespan=lifespan,
    )
    app.state.container = container

    @app.exception_handler(InvalidQuery)
    async def invalid_query_handler(request: Request, exc: InvalidQuery):
        return _error(400, "INVALID_QUERY", str(exc))

    @app.exception_handler(GraphIntegrityError)
    async def graph_integrity_handler(request: Request, exc: GraphIntegrityError):
        return _error(400, "GRAPH_INTEGRITY", str(exc))

    @app.exception_handler(IndexInconsistency)
    async def index_inconsistency_handler(request: Request, exc: IndexInconsistency):
        return _error(422, "INDEX_INCONSISTENCY", str(exc))

    @app.exception_handler(TotalFailure)
    async def total_failure_handler(request: Request, exc: TotalFailure):
        return _error(503, exc.code, "Search is temporarily unavailable")

    @app.exception_handler(ProviderUnavailable)
    async def provider_unavailable_handler(request: Request, exc: ProviderUnavailable):
        return _error(503, "PROVIDER_UNAVAILABLE", str(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.url.path}: {exc}")
        return _error(500, "INTERNAL_ERROR", "Internal server error")

    def services(request: Request) -> ServiceContainer:
        return request.app.state.container

    @app.get("/health", response_model=HealthResponse)
    def health_endpoint(request: Request):
        """Report breaker states, index sizes, cache stats and queue depth."""
        report = services(request).health()
        return HealthResponse(version=VERSION, **report)

    @app.post("/search", response_model=SearchResponseModel)
    async def search_endpoint(req: SearchRequest, request: Request):
        filters = [SearchFilter.build(f.field, f.operator, f.value) for f in req.filters]
        options = SearchOptions(
            limit=req.limit,
            threshold=req.threshold,
            filters=filters,
            enable_fusion=req.enable_fusion,
        )
        response = await services(request).engine.search(req.query, req.collection, options=options)
        return SearchResponseModel(
            results=[
                SearchResultModel(
                    id=r.id,
                    score=r.score,
                    source=r.source.value,
                    metadata=r.metadata,
                    vector_rank=r.vector_rank,
                    lexical_rank=r.lexical_rank,
                )
                for r in response.results
            ],
            source=response.source.value,
            strategy=response.strategy.value,
            total_results=response.total_results,
            processing_time_ms=response.processing_time_ms,
            degraded=response.degraded,
        )

    @app.post("/index/{collection}", response_model=IndexResponse)
    async def index_endpoint(collection: str, req: IndexRequest, request: Request):
        _check_collection(collection)
        documents = [IndexDocument(id=i.id, text=i.text, metadata=i.metadata) for i in req.items]
        indexed = await services(request).engine.index_items(collection, documents)
        return IndexResponse(collection=collection, indexed=indexed)

    @app.delete("/index/{collection}/{item_id}", response_model=DeleteResponse)
    async def delete_endpoint(collection: str, item_id: str, request: Request):
        _check_collection(collection)
        deleted = await services(request).engine.remove_item(collection, item_id)
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Item not found: {item_id}")
        return DeleteResponse(collection=collection, item_id=item_id, deleted=True)

    @app.post("/reviews", response_model=ReviewCardSummary)
    async def review_endpoint(req: ReviewRequest, request: Request):
        card = await services(request).scheduler.record_review(
            req.user_id, req.item_id, req.quality, req.response_time_ms
        )
        return ReviewCardSummary(**asdict(card))

    @app.delete("/reviews/{user_id}/{item_id}")
    def retire_endpoint(user_id: str, item_id: str, request: Request):
        if not services(request).scheduler.retire_card(user_id, item_id):
            raise HTTPException(status_code=404, detail="Review card not found")
        return {"user_id": user_id, "item_id": item_id, "retired": True}

    @app.get("/schedule/{user_id}", response_model=ScheduleResponse)
    def schedule_endpoint(user_id: str, request: Request, limit: Optional[int] = Query(default=None)):
        entries = services(request).scheduler.get_schedule(user_id, limit=limit)
        return ScheduleResponse(
            user_id=user_id,
            entries=[
                ScheduleEntryModel(
                    card=ReviewCardSummary(**asdict(e.card)),
                    scheduled_date=e.scheduled_date,
                    priority=e.priority,
                    confidence=e.confidence,
                    related_item_ids=e.related_item_ids,
                )
                for e in entries
            ],
            total=len(entries),
        )

    @app.get("/related/{item_id}", response_model=RelatedResponse)
    def related_endpoint(item_id: str, request: Request,
                         max_depth: Optional[int] = Query(default=None, ge=1, le=10),
                         limit: Optional[int] = Query(default=None, ge=1, le=100)):
        container = services(request)
        if not container.config.features.knowledge_graph:
            raise HTTPException(status_code=404, detail="Knowledge graph disabled")
        if not container.graph.has_node(item_id):
            raise HTTPException(status_code=404, detail=f"Item not found: {item_id}")

        related = container.graph.related_to(item_id, max_depth=max_depth, limit=limit)
        logger.log_operation("graph.related", "success", {"item_id": item_id, "count": len(related)})
        return RelatedResponse(
            item_id=item_id,
            related=[
                RelatedItemModel(
                    id=r.node.id,
                    kind=r.node.kind.value,
                    effective_weight=r.effective_weight,
                    depth=r.depth,
                )
                for r in related
            ],
        )

    return app


# Served with: uvicorn vocabmind.api.main:app
app = create_app()
