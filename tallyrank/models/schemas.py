from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

AttributeValue = Union[bool, int, float, str]


class BaseSchema(BaseModel):
    """Base schema with attribute extraction enabled."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class SystemHealth(BaseSchema):
    status: str
    components: Dict[str, str] = Field(default_factory=dict)


class Outcome(str, Enum):
    ALLOWED = "allowed"
    RATELIMITED = "ratelimited"
    DENIED = "denied"


class RankEntry(BaseSchema):
    identifier: str
    count: int


class RankedOutcomes(BaseSchema):
    allowed: List[RankEntry] = Field(default_factory=list)
    ratelimited: List[RankEntry] = Field(default_factory=list)
    denied: List[RankEntry] = Field(default_factory=list)

    @property
    def blocked(self) -> List[RankEntry]:
        return self.ratelimited

    def entries_for(self, outcome: Outcome) -> List[RankEntry]:
        return getattr(self, outcome.value)


class IdentifierOutcome(BaseSchema):
    success: int = 0
    blocked: int = 0


class CountPoint(BaseSchema):
    time: int
    count: int


class QueryRequest(BaseSchema):
    start: int
    end: int
    where: Optional[Dict[str, AttributeValue]] = None
    fields: Optional[List[str]] = None
    scan: bool = False


class IngestResponse(BaseSchema):
    table: str
    ingested: int
