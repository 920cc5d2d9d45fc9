"""Plan repository - read-only access to the plan catalogue.

Plans come from the `plans` section of engine.yaml. Plan management lives
outside the engine, so this repository never writes.
"""

from typing import Dict, Iterable, List, Optional

from recharge_engine.config import Config, get_config
from recharge_engine.models import PlanCategory, PlanDefinition


class PlanNotFoundError(Exception):
    """Raised when a plan is not found in the catalogue."""

    pass


class PlanRepository:
    """Repository for plan definitions indexed by id."""

    def __init__(
        self,
        config: Optional[Config] = None,
        plans: Optional[Iterable[PlanDefinition]] = None,
    ):
        """Initialize plan repository.

        Args:
            config: Configuration instance. If not provided, uses global config.
            plans: Explicit plan list, bypassing configuration entirely.
        """
        self._config = config
        self._plans_by_id: Dict[str, PlanDefinition] = {}
        if plans is not None:
            self._index(plans)
        else:
            self._config = config or get_config()
            self._index(self._config.plans)

    def _index(self, plans: Iterable[PlanDefinition]) -> None:
        self._plans_by_id = {plan.id: plan for plan in plans}

    def get_by_id(self, plan_id: str) -> PlanDefinition:
        """Get plan definition by id.

        Raises:
            PlanNotFoundError: If plan id not found
        """
        plan = self._plans_by_id.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(
                f"Plan not found: {plan_id}. Available plans: {list(self._plans_by_id.keys())}"
            )
        return plan

    def find_by_id(self, plan_id: str) -> Optional[PlanDefinition]:
        """Find plan definition by id (returns None if not found)."""
        return self._plans_by_id.get(plan_id)

    def get_all(self) -> List[PlanDefinition]:
        return list(self._plans_by_id.values())

    def get_active(self) -> List[PlanDefinition]:
        """Plans currently on sale."""
        return [p for p in self._plans_by_id.values() if p.is_active]

    def get_by_category(self, category: PlanCategory) -> List[PlanDefinition]:
        return [p for p in self._plans_by_id.values() if p.category == category]

    def exists(self, plan_id: str) -> bool:
        return plan_id in self._plans_by_id

    def reload(self) -> None:
        """Reload plan definitions from configuration."""
        if self._config is None:
            return
        self._config.reload()
        self._index(self._config.plans)

    def __len__(self) -> int:
        return len(self._plans_by_id)

    def __contains__(self, plan_id: str) -> bool:
        return plan_id in self._plans_by_id

    def __repr__(self) -> str:
        return f"PlanRepository(plans={len(self._plans_by_id)})"


_repository_instance: Optional[PlanRepository] = None


def get_plan_repository(config: Optional[Config] = None) -> PlanRepository:
    """Get global plan repository instance (singleton).

    Args:
        config: Optional configuration instance (only used on first call)
    """
    global _repository_instance
    if _repository_instance is None:
        _repository_instance = PlanRepository(config)
    return _repository_instance


def reset_plan_repository() -> None:
    """Drop the global plan repository so the next call re-reads configuration."""
    global _repository_instance
    _repository_instance = None
