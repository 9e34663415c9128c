"""
casedesk Evaluation Model

Scoring vocabulary per (perspective x criterion).
"""

from datetime import datetime
from typing import List
from uuid import UUID, uuid4
from pydantic import BaseModel, Field

from .case import Perspective, Criterion, utcnow


class EvaluationOption(BaseModel):
    """One selectable answer and the points it scores."""
    id: UUID = Field(default_factory=uuid4)
    label: str
    points: int
    order: int = 0
    is_active: bool = True


class EvaluationConfig(BaseModel):
    """
    The option list for one (perspective, criterion) pair.

    At most one active config per pair. Options are replaced as a whole,
    never patched, so ordering and point scale stay consistent.
    """
    id: UUID = Field(default_factory=uuid4)
    perspective: Perspective
    criterion: Criterion

    is_active: bool = True
    options: List[EvaluationOption] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def active_options(self) -> List[EvaluationOption]:
        return sorted(
            (o for o in self.options if o.is_active),
            key=lambda o: o.order
        )


class OptionInput(BaseModel):
    """Option as submitted by an administrator; order comes from position."""
    label: str = Field(..., min_length=1)
    points: int
