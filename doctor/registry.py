"""
registry.py
===========
In-memory registry of diagnostic checks, indexed by id and by stage.

Registration order within a stage is the execution order for that stage, so
the stage index is append-only.
"""

import logging

from doctor.errors import CheckRegistryError
from doctor.models import STAGE_ORDER, Check, CheckStage

logger = logging.getLogger(__name__)


class CheckRegistry:
    def __init__(self) -> None:
        self._checks: dict[str, Check] = {}
        self._stage_checks: dict[CheckStage, list[Check]] = {stage: [] for stage in STAGE_ORDER}

    def register(self, check: Check) -> None:
        """Add a check to both indices.

        Raises CheckRegistryError for a missing/blank id, name or description,
        an unknown stage, or a duplicate id; TypeError when execute is not
        callable. Nothing is stored when validation fails.
        """
        check_id = getattr(check, "id", None)
        for attr in ("id", "name", "description"):
            value = getattr(check, attr, None)
            if not isinstance(value, str) or not value.strip():
                raise CheckRegistryError(
                    f"Check must have a valid string {attr}", operation="register", check_id=check_id
                )

        try:
            stage = CheckStage(getattr(check, "stage", None))
        except ValueError:
            raise CheckRegistryError(
                f"Invalid check stage: {getattr(check, 'stage', None)!r}",
                operation="register",
                check_id=check_id,
            ) from None

        if not callable(getattr(check, "execute", None)):
            raise TypeError(f"Check '{check_id}' must implement execute()")

        if check_id in self._checks:
            raise CheckRegistryError(
                f"Check with ID '{check_id}' is already registered",
                operation="register",
                check_id=check_id,
            )

        self._checks[check_id] = check
        self._stage_checks[stage].append(check)
        logger.debug("Registered check %s (%s)", check_id, stage.value)

    def get_checks_for_stage(self, stage: CheckStage) -> list[Check]:
        """Checks for a stage in registration order, as a copy."""
        try:
            return list(self._stage_checks[CheckStage(stage)])
        except ValueError:
            return []

    def get_check(self, check_id: str) -> Check | None:
        return self._checks.get(check_id)

    def get_all_check_ids(self) -> list[str]:
        return list(self._checks)

    def get_check_count(self) -> int:
        return len(self._checks)

    def get_stage_distribution(self) -> dict[CheckStage, int]:
        return {stage: len(checks) for stage, checks in self._stage_checks.items()}

    def clear(self) -> None:
        """Empty both indices. Test isolation only."""
        self._checks.clear()
        for checks in self._stage_checks.values():
            checks.clear()
