"""Model catalog loader for Blind Dispatch."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .blind_assignment import assign_models
from .errors import ConfigurationError, ValidationError
from .sqlite_store import upsert_model
from .types import ModelRecord

logger = logging.getLogger(__name__)


def model_from_dict(config_dict: dict[str, Any]) -> ModelRecord:
    """Build a ModelRecord from a camelCase mapping (YAML entry or API body)."""
    try:
        model_id = config_dict["id"]
        provider = config_dict["provider"]
    except KeyError as exc:
        raise ValidationError(f"Model entry missing required field: {exc.args[0]}") from exc
    return ModelRecord(
        id=model_id,
        name=config_dict.get("name") or model_id,
        provider=provider,
        model_id=config_dict.get("modelId") or model_id,
        configuration=dict(config_dict.get("configuration") or {}),
        is_active=bool(config_dict.get("active", True)),
        capabilities=set(config_dict.get("capabilities") or ["text"]),
        display_name=config_dict.get("displayName"),
    )


class ModelConfigLoader:
    """Loads model records and exercise seeds from ``config/models.yaml``."""

    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            config_path = project_root / "config" / "models.yaml"

        self.config_path = config_path
        self._config = None
        self._models = None
        self._exercises = None

    def _load_config(self):
        if self._config is not None:
            return
        if not self.config_path.exists():
            raise ConfigurationError(f"Model config not found: {self.config_path}")
        with open(self.config_path, "r", encoding="utf-8") as f:
            self._config = yaml.safe_load(f) or {}

        self._models = {}
        for model_dict in self._config.get("models", []):
            model = model_from_dict(model_dict)
            self._models[model.id] = model

        self._exercises = {}
        for exercise_id, entry in (self._config.get("exercises") or {}).items():
            if isinstance(entry, list):
                entry = {"models": entry}
            self._exercises[str(exercise_id)] = entry

    @property
    def models(self) -> Dict[str, ModelRecord]:
        if self._models is None:
            self._load_config()
        return self._models

    @property
    def exercises(self) -> Dict[str, Dict[str, Any]]:
        if self._exercises is None:
            self._load_config()
        return self._exercises

    def get_model(self, model_id: str) -> Optional[ModelRecord]:
        return self.models.get(model_id)

    def sync(self, conn: sqlite3.Connection, include_exercises: bool = True) -> List[ModelRecord]:
        """Upsert every configured model, then seed exercise assignments."""
        synced = []
        for model in self.models.values():
            upsert_model(conn, model)
            synced.append(model)
        logger.info("Synced %d model(s) from %s", len(synced), self.config_path)

        if include_exercises:
            for exercise_id, entry in self.exercises.items():
                model_ids = list(entry.get("models") or [])
                unknown = [m for m in model_ids if m not in self.models]
                if unknown:
                    raise ConfigurationError(
                        f"Exercise {exercise_id} references unknown models: {', '.join(unknown)}",
                        code="model_not_found",
                    )
                assign_models(
                    conn,
                    exercise_id,
                    model_ids,
                    temperature_overrides=entry.get("temperatureOverrides") or None,
                )
                logger.info("Seeded exercise %s with %d model(s)", exercise_id, len(model_ids))
        return synced
