"""Tracking pipeline stages and tracked-tender models."""

from datetime import datetime
from enum import Enum
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tenderdesk.exceptions import InvalidStageError
from tenderdesk.storage.base import coerce_amount, coerce_datetime, coerce_text


class Stage(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    REVIEW = "review"
    COMPLETED = "completed"


STAGES: tuple[Stage, ...] = (Stage.PENDING, Stage.IN_PROGRESS, Stage.REVIEW, Stage.COMPLETED)

STAGE_DISPLAY_NAMES: dict[Stage, str] = {
    Stage.PENDING: "قيد الدراسة",
    Stage.IN_PROGRESS: "تم التقديم",
    Stage.REVIEW: "تم فتح المظاريف",
    Stage.COMPLETED: "تم الترسية",
}

STAGE_PROGRESS: dict[Stage, int] = {
    Stage.PENDING: 25,
    Stage.IN_PROGRESS: 50,
    Stage.REVIEW: 75,
    Stage.COMPLETED: 100,
}


def parse_stage(value: "str | Stage") -> Stage:
    """Coerce a stage name, raising InvalidStageError for unknown values."""
    try:
        return Stage(value)
    except ValueError:
        raise InvalidStageError(str(value)) from None


class TrackedTender(BaseModel):
    """A tender as shown on the board: tender fields plus its tracking state."""

    model_config = ConfigDict(extra="allow")

    id: str
    tracking_id: str | None = None
    title: str = ""
    entity: str = ""
    description: str = ""
    reference_number: str = ""
    estimated_value: float = 0.0
    submission_deadline: datetime | None = None
    stage: Stage = Stage.PENDING
    progress: int = 25
    last_moved_note: str | None = None
    moved_at: datetime | None = None

    @field_validator("id", "title", "entity", "description", "reference_number", mode="before")
    @classmethod
    def parse_text(cls, v: Any) -> str:
        return coerce_text(v)

    @field_validator("estimated_value", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> float:
        return coerce_amount(v)

    @field_validator("submission_deadline", "moved_at", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> datetime | None:
        return coerce_datetime(v)

    def matches(self, term: str) -> bool:
        """Case-insensitive substring match over the searchable text fields."""
        needle = term.strip().lower()
        if not needle:
            return True
        return any(
            needle in (value or "").lower()
            for value in (self.title, self.entity, self.description, self.reference_number)
        )


class GroupedTenders(BaseModel):
    """Tracked tenders bucketed by stage, each bucket newest-first."""

    model_config = ConfigDict(populate_by_name=True)

    pending: list[TrackedTender] = Field(default_factory=list)
    in_progress: list[TrackedTender] = Field(default_factory=list, alias="inProgress")
    review: list[TrackedTender] = Field(default_factory=list)
    completed: list[TrackedTender] = Field(default_factory=list)

    def column(self, stage: Stage) -> list[TrackedTender]:
        return {
            Stage.PENDING: self.pending,
            Stage.IN_PROGRESS: self.in_progress,
            Stage.REVIEW: self.review,
            Stage.COMPLETED: self.completed,
        }[stage]

    def columns(self) -> Iterator[tuple[Stage, list[TrackedTender]]]:
        for stage in STAGES:
            yield stage, self.column(stage)

    def all(self) -> list[TrackedTender]:
        return [tender for _, column in self.columns() for tender in column]

    def find(self, tender_id: str) -> tuple[Stage, TrackedTender] | None:
        for stage, column in self.columns():
            for tender in column:
                if tender.id == tender_id:
                    return stage, tender
        return None

    def ids(self, stage: Stage) -> list[str]:
        return [tender.id for tender in self.column(stage)]

    def to_api(self) -> dict[str, list[dict[str, Any]]]:
        return {
            stage.value: [t.model_dump(mode="json") for t in column]
            for stage, column in self.columns()
        }

    @classmethod
    def from_columns(cls, columns: dict[Stage, list[TrackedTender]]) -> "GroupedTenders":
        return cls(
            pending=columns.get(Stage.PENDING, []),
            in_progress=columns.get(Stage.IN_PROGRESS, []),
            review=columns.get(Stage.REVIEW, []),
            completed=columns.get(Stage.COMPLETED, []),
        )
