from typing import List, Optional

from pydantic import BaseModel, Field

from .state import CLASSIFY_BATCH_LIMIT_MAX, CLASSIFY_CONCURRENCY_MAX, CLASSIFY_INTERVAL_MS_MAX


class RepoIn(BaseModel):
    id: str = Field(min_length=1)
    full_name: str = Field(min_length=3)
    name: str | None = None
    owner: str | None = None
    description: str | None = None
    language: str | None = None
    topics: List[str] = Field(default_factory=list)


class RepoImportRequest(BaseModel):
    repositories: List[RepoIn]


class RepoImportResponse(BaseModel):
    imported: int


class RepoOut(BaseModel):
    id: str
    full_name: str
    name: str
    owner: str
    description: str | None
    language: str | None
    topics: List[str]
    readme_summary: str | None = None


class UncategorizedResponse(BaseModel):
    total: int
    items: List[RepoOut]


class ListOut(BaseModel):
    id: int
    name: str
    color: str
    description: str | None
    sort_order: int
    count: int


class ListCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: str | None = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")
    description: str | None = None


class MembershipRequest(BaseModel):
    repository_id: str = Field(min_length=1)


class ClassifyRequest(BaseModel):
    repository_id: str = Field(min_length=1)
    locale: str | None = Field(default=None, pattern="^(zh|en)$")


class SuggestionOut(BaseModel):
    matched_list_id: int | None
    matched_list_name: str | None
    confidence: float
    propose_new_list: bool
    new_list_name: str | None
    reason: str


class ConnectionTestResponse(BaseModel):
    ok: bool
    provider: str
    model: str


class BatchStartRequest(BaseModel):
    concurrency: int | None = Field(default=None, ge=1, le=CLASSIFY_CONCURRENCY_MAX)
    request_interval_ms: int | None = Field(default=None, ge=0, le=CLASSIFY_INTERVAL_MS_MAX)
    include_readme: bool = False
    limit: int = Field(default=0, ge=0, le=CLASSIFY_BATCH_LIMIT_MAX)
    locale: str | None = Field(default=None, pattern="^(zh|en)$")


class ProgressOut(BaseModel):
    completed: int
    total: int
    active_description: str


class ProposalOut(BaseModel):
    index: int
    name: str
    member_count: int
    examples: List[str]
    selected: bool


class ProposalToggleRequest(BaseModel):
    selected: bool


class FailedOut(BaseModel):
    full_name: str
    kind: str
    message: str


class SummaryOut(BaseModel):
    total: int
    processed: int
    auto_applied: int
    failed: List[FailedOut]
    unclassifiable: List[str]
    created_lists: List[str]
    merged_lists: List[str]
    committed: int
    commit_errors: List[str]
    cancelled: bool
    error: str | None
    success: bool


class BatchStatusResponse(BaseModel):
    phase: str
    concurrency: int
    request_interval_ms: int
    started_at: str | None
    finished_at: str | None
    progress: ProgressOut
    proposals: List[ProposalOut]
    summary: SummaryOut


class BatchIdleResponse(BaseModel):
    phase: Optional[str] = None
    uncategorized: int
