# src/orsynth/dataloader/reference_loader.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from orsynth.dataloader.config_loader import read_yaml_mapping
from orsynth.errors import ConfigError
from orsynth.schemas.models import FacilityReference

logger = logging.getLogger(__name__)


class ReferenceLoader:
    """
    @brief
    Loads facility reference data (rooms, catalogs, lookups, staff) from YAML.

    @details
    The YAML file mirrors `FacilityReference` field by field. The result is
    what a datastore-backed ReferenceReader would return for the facility,
    and is used to seed the in-memory store for CLI runs and tests.
    """

    def load(self, path: Path) -> FacilityReference:
        data = read_yaml_mapping(path, source="ReferenceLoader._read_yaml")
        ref = self._validate(data)
        logger.info(
            "Loaded reference for facility %s: %d rooms, %d procedures, %d milestones, %d staff",
            ref.facility.id if ref.facility else "<missing>",
            len(ref.rooms),
            len(ref.procedure_types),
            len(ref.milestone_types),
            len(ref.staff),
        )
        return ref

    def _validate(self, data: dict[str, Any]) -> FacilityReference:
        try:
            return FacilityReference(**data)
        except ValidationError as e:
            raise ConfigError(
                message=f"Invalid reference data structure: {e}",
                source="ReferenceLoader._validate",
                suggested_action=(
                    "Check section names (rooms, procedure_types, milestone_types, ...) "
                    "and required id/name fields in reference.yaml."
                ),
            ) from e


__all__ = ["ReferenceLoader"]
