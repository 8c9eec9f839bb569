from pydantic import BaseModel, Field


class RepoBase(BaseModel):
    id: str
    full_name: str
    name: str = ""
    owner: str = ""
    description: str | None = None
    language: str | None = None
    topics: list[str] = Field(default_factory=list)
    readme_summary: str | None = None
    readme_fetched_at: str | None = None


class ListInfo(BaseModel):
    id: int
    name: str
    color: str = "#3b82f6"
    description: str | None = None
    sort_order: int = 0
    count: int = 0
