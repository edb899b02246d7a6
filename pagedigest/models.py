from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, ValidationError, field_validator

_HTTP_URL = TypeAdapter(HttpUrl)


class PageRequest(BaseModel):
    # Kept exactly as given; HttpUrl only checks it
    url: str

    @field_validator("url")
    @classmethod
    def _check_http_url(cls, value: str) -> str:
        try:
            _HTTP_URL.validate_python(value)
        except ValidationError as exc:
            raise ValueError(f"not an http(s) URL: {value!r}") from exc
        return value


class FetchResult(BaseModel):
    content: str
    title: str
    word_count: int = Field(ge=0)
    url: str


class SummaryPrompt(BaseModel):
    prompt: str = Field(min_length=1)


class SummaryOutput(BaseModel):
    text: str


class CritiqueRequest(BaseModel):
    text: str
    title: str
    url: str


class CritiqueResult(BaseModel):
    score: float = Field(ge=0, le=10)
    issues: List[str] = Field(default_factory=list)
    suggestion: str = ""


class SaveRequest(BaseModel):
    score: float
    summary: str
    title: str
    url: str


class SaveDecision(BaseModel):
    saved: bool
    location: Optional[str] = None
