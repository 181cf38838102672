"""
Shared domain models for learning paths.
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field


LEARNING_PATH_STEPS = 6


class LearningStep(BaseModel):
    """A single step in a generated learning path."""
    step_number: int = Field(..., ge=1, le=LEARNING_PATH_STEPS)
    title: str = Field(..., min_length=1)
    description: str = ""
    duration: str = ""
    resources: list[str] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)


class PathMetadata(BaseModel):
    notes: Optional[str] = None
    tags: Optional[list[str]] = None
    target_date: Optional[str] = None


class PathSummary(BaseModel):
    """A stored learning path with its progress figures."""
    id: str
    goal: str
    skills: list[str]
    path: list[LearningStep]
    completed_steps: list[int] = Field(default_factory=list)
    total_steps: int
    completed_count: int
    progress_percentage: int
    generated_by: Optional[str] = None
    metadata: PathMetadata = Field(default_factory=PathMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def clean_skills(value: Union[str, list, None]) -> list[str]:
    """Normalize a skill set given as a list or a comma-separated string.

    Blank entries are dropped and duplicates (case-insensitive) keep the
    first spelling seen.
    """
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else value

    skills = []
    seen = set()
    for item in items:
        skill = str(item).strip()
        if not skill or skill.lower() in seen:
            continue
        seen.add(skill.lower())
        skills.append(skill)
    return skills


def progress_summary(steps: list, completed_steps: list) -> dict:
    total = len(steps or [])
    completed = len(completed_steps or [])
    percentage = round(completed / total * 100) if total > 0 else 0
    return {
        "total_steps": total,
        "completed_count": completed,
        "progress_percentage": percentage,
    }


def to_path_summary(record: dict) -> PathSummary:
    """Build the API view of a stored learning path record."""
    completed = sorted(record.get("completed_steps") or [])
    return PathSummary(
        id=record["id"],
        goal=record["goal"],
        skills=record.get("skills") or [],
        path=record.get("steps") or [],
        completed_steps=completed,
        generated_by=record.get("generated_by"),
        metadata=record.get("metadata") or {},
        created_at=record.get("created_at"),
        updated_at=record.get("updated_at"),
        **progress_summary(record.get("steps"), completed),
    )
