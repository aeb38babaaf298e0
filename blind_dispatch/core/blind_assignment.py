"""Blind labels for models within an exercise.

Each exercise binds an ordered list of models to opaque labels drawn from
``BLIND_NAMES`` in list order. Saving a new list replaces the old bindings
wholesale, so labels from a previous list stop resolving immediately.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Mapping, Sequence, Union

from .errors import ValidationError
from .sqlite_store import (
    fetch_assignment,
    fetch_assignment_by_blind_name,
    fetch_exercise_assignments,
    fetch_model,
    replace_exercise_models,
)
from .types import ExerciseModelAssignment, ModelRecord

BLIND_NAMES = ("Alpha", "Beta", "Gamma", "Delta", "Epsilon", "Zeta", "Eta", "Theta")


@dataclass
class ExerciseModel:
    """An assignment joined with the live model record (``None`` once the model is deleted)."""

    assignment: ExerciseModelAssignment
    model: Union[ModelRecord, None]

    @property
    def blind_name(self) -> str:
        return self.assignment.blind_name

    @property
    def usable(self) -> bool:
        return self.model is not None and self.model.is_active

    def participant_view(self) -> dict:
        """Label and capabilities only; participants address the model by ``blindName``."""
        capabilities = sorted(self.model.capabilities) if self.model else []
        return {
            "blindName": self.assignment.blind_name,
            "capabilities": capabilities,
        }


def blind_name_for(index: int) -> str:
    if index < len(BLIND_NAMES):
        return BLIND_NAMES[index]
    return f"Model {index + 1}"


def _check_model_ids(model_ids: Sequence[str]) -> None:
    seen = set()
    for model_id in model_ids:
        if not model_id:
            raise ValidationError("Model ids must be non-empty")
        if model_id in seen:
            raise ValidationError(f"Model {model_id} listed more than once")
        seen.add(model_id)


def preview_assignments(model_ids: Sequence[str]) -> list[dict[str, str]]:
    """What ``assign_models`` would bind, without touching the store."""
    _check_model_ids(model_ids)
    return [
        {"modelId": model_id, "blindName": blind_name_for(index)}
        for index, model_id in enumerate(model_ids)
    ]


def assign_models(
    conn: sqlite3.Connection,
    exercise_id: str,
    model_ids: Sequence[str],
    temperature_overrides: Union[Mapping[str, float], None] = None,
) -> list[ExerciseModelAssignment]:
    if not exercise_id:
        raise ValidationError("exercise_id is required")
    _check_model_ids(model_ids)
    overrides = temperature_overrides or {}
    assignments = [
        ExerciseModelAssignment(
            exercise_id=exercise_id,
            model_id=model_id,
            blind_name=blind_name_for(index),
            temperature_override=overrides.get(model_id),
            position=index,
        )
        for index, model_id in enumerate(model_ids)
    ]
    replace_exercise_models(conn, exercise_id, assignments)
    return assignments


def get_assignment(
    conn: sqlite3.Connection, exercise_id: str, model_id: str
) -> Union[ExerciseModelAssignment, None]:
    return fetch_assignment(conn, exercise_id, model_id)


def get_blind_name(conn: sqlite3.Connection, exercise_id: str, model_id: str) -> Union[str, None]:
    assignment = fetch_assignment(conn, exercise_id, model_id)
    return assignment.blind_name if assignment else None


def resolve_blind_name(
    conn: sqlite3.Connection, exercise_id: str, blind_name: str
) -> Union[ModelRecord, None]:
    """Map a participant-facing label back to the model it stands for in this exercise."""
    assignment = fetch_assignment_by_blind_name(conn, exercise_id, blind_name)
    if assignment is None:
        return None
    return fetch_model(conn, assignment.model_id)


def list_exercise_models(
    conn: sqlite3.Connection, exercise_id: str, include_inactive: bool = False
) -> list[ExerciseModel]:
    items = [
        ExerciseModel(assignment=assignment, model=fetch_model(conn, assignment.model_id))
        for assignment in fetch_exercise_assignments(conn, exercise_id)
    ]
    if include_inactive:
        return items
    return [item for item in items if item.usable]
