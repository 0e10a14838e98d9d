from __future__ import annotations

from pydantic import BaseModel, Field


class CardRow(BaseModel):
    term: str = ""
    definition: str = ""


class PracticeStartRequest(BaseModel):
    mode: str = Field(default="new")
    item_ids: list[str] = Field(default_factory=list)
    shuffle: bool = False


class CompleteRequest(BaseModel):
    item_id: str | None = None


class StudySetRequest(BaseModel):
    title: str
    description: str | None = None
    cards: list[CardRow] = Field(default_factory=list)


class ImportSetRequest(BaseModel):
    title: str
    text: str
    delimiter: str = Field(default="tab")


class ImportPreviewRequest(BaseModel):
    text: str
    delimiter: str = Field(default="tab")


class QuizStartRequest(BaseModel):
    mode: str = Field(default="study")
    shuffle: bool = False
    swap: bool = False
    starred_only: bool = False
    distractor_count: int = Field(default=3, ge=1, le=8)


class AnswerRequest(BaseModel):
    answer: str = ""


class SelectRequest(BaseModel):
    option: str
