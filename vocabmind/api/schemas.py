"""
Request and response models for the HTTP surface.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.config import COLLECTIONS
from ..vector.types import FilterOperator

MAX_SEARCH_LIMIT = 100


class FilterModel(BaseModel):
    field: str
    operator: str
    value: Any

    @field_validator('field')
    @classmethod
    def field_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('field cannot be empty')
        return v

    @field_validator('operator')
    @classmethod
    def operator_must_be_valid(cls, v):
        valid_operators = [op.value for op in FilterOperator]
        if v not in valid_operators:
            raise ValueError(f'operator must be one of: {valid_operators}')
        return v


class SearchRequest(BaseModel):
    query: str
    collection: str = "vocabulary"
    limit: Optional[int] = None
    threshold: Optional[float] = None
    filters: List[FilterModel] = Field(default_factory=list)
    enable_fusion: bool = True

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v

    @field_validator('collection')
    @classmethod
    def collection_must_be_valid(cls, v):
        if v not in COLLECTIONS:
            raise ValueError(f'collection must be one of: {list(COLLECTIONS)}')
        return v

    @field_validator('limit')
    @classmethod
    def limit_must_be_in_range(cls, v):
        if v is not None and (v < 1 or v > MAX_SEARCH_LIMIT):
            raise ValueError(f'limit must be between 1 and {MAX_SEARCH_LIMIT}')
        return v

    @field_validator('threshold')
    @classmethod
    def threshold_must_be_in_range(cls, v):
        if v is not None and not 0.0 <= v <= 1.0:
            raise ValueError('threshold must be between 0 and 1')
        return v


class SearchResultModel(BaseModel):
    id: str
    score: float
    source: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    vector_rank: Optional[int] = None
    lexical_rank: Optional[int] = None


class SearchResponseModel(BaseModel):
    results: List[SearchResultModel]
    source: str
    strategy: str
    total_results: int
    processing_time_ms: float
    degraded: bool = False


class IndexItemModel(BaseModel):
    id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('id')
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('id cannot be empty')
        return v


class IndexRequest(BaseModel):
    items: List[IndexItemModel]

    @field_validator('items')
    @classmethod
    def items_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('items cannot be empty')
        return v


class IndexResponse(BaseModel):
    collection: str
    indexed: int


class DeleteResponse(BaseModel):
    collection: str
    item_id: str
    deleted: bool


class ReviewRequest(BaseModel):
    user_id: str
    item_id: str
    quality: int
    response_time_ms: Optional[float] = None

    @field_validator('user_id', 'item_id')
    @classmethod
    def ids_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('identifier cannot be empty')
        return v

    @field_validator('quality')
    @classmethod
    def quality_must_be_in_range(cls, v):
        if not 0 <= v <= 5:
            raise ValueError('quality must be between 0 and 5')
        return v


class ReviewCardSummary(BaseModel):
    id: str
    item_id: str
    user_id: str
    ease_factor: float
    interval_days: int
    repetition_count: int
    next_review_at: datetime
    last_review_at: Optional[datetime] = None
    confidence: float
    retired: bool = False


class ScheduleEntryModel(BaseModel):
    card: ReviewCardSummary
    scheduled_date: datetime
    priority: float
    confidence: float
    related_item_ids: List[str] = Field(default_factory=list)


class ScheduleResponse(BaseModel):
    user_id: str
    entries: List[ScheduleEntryModel]
    total: int


class RelatedItemModel(BaseModel):
    id: str
    kind: str
    effective_weight: float
    depth: int


class RelatedResponse(BaseModel):
    item_id: str
    related: List[RelatedItemModel]


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    circuits: Dict[str, str]
    index_sizes: Dict[str, int]
    cache: Dict[str, int]
    graph: Dict[str, int]
    sync_queue_depth: int
