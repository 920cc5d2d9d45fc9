"""Code Pool - bulk import, availability queries and the code expiry pass.

Codes are created here at replenishment time and never deleted; the only
writes after import are status transitions.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from recharge_engine.config import get_config
from recharge_engine.logging_config import get_logger
from recharge_engine.models import (
    CodeStatus,
    EngineSettings,
    ImportResult,
    RechargeCode,
)
from recharge_engine.repositories.plan_repository import PlanRepository, get_plan_repository
from recharge_engine.repositories.storage import Store, get_store
from recharge_engine.services.time_controller import TimeController, get_time_controller
from recharge_engine.utils.identifiers import generate_code_id, normalize_code

logger = get_logger(__name__)


class CodePool:
    """Store and expose recharge codes per plan."""

    def __init__(
        self,
        store: Optional[Store] = None,
        plan_repository: Optional[PlanRepository] = None,
        time_controller: Optional[TimeController] = None,
        settings: Optional[EngineSettings] = None,
    ):
        """Initialize code pool.

        Args:
            store: Storage backend (uses global if not provided)
            plan_repository: Plan catalogue (uses global if not provided)
            time_controller: Clock (uses global if not provided)
            settings: Engine settings (uses global configuration if not provided)
        """
        self._store = store if store is not None else get_store()
        self._plans = plan_repository if plan_repository is not None else get_plan_repository()
        self._clock = time_controller if time_controller is not None else get_time_controller()
        self._settings = settings if settings is not None else get_config().engine_settings

    def import_codes(self, plan_id: str, code_strings: Iterable[str]) -> ImportResult:
        """Import a batch of code strings for a plan.

        Each string is trimmed and upper-cased; blanks are dropped. Strings
        already in the pool, or repeated in the batch, are skipped.

        Args:
            plan_id: Owning plan
            code_strings: Raw code strings from the operator

        Returns:
            ImportResult with the inserted codes and the number submitted

        Raises:
            PlanNotFoundError: If plan_id does not resolve
        """
        plan = self._plans.get_by_id(plan_id)

        now = self._clock.now()
        expires_at = now + timedelta(days=self._settings.code_validity_days)
        tokens = [normalize_code(raw) for raw in code_strings if raw and raw.strip()]

        codes = [
            RechargeCode(
                id=generate_code_id(),
                code=token,
                value=plan.value,
                status=CodeStatus.AVAILABLE,
                created_at=now,
                expires_at=expires_at,
                plan_id=plan.id,
                app_name=plan.app_name,
            )
            for token in tokens
        ]
        inserted = self._store.add_codes(codes)

        logger.info(
            "codes_imported",
            plan_id=plan_id,
            submitted=len(tokens),
            inserted=len(inserted),
            skipped=len(tokens) - len(inserted),
        )
        return ImportResult(codes=inserted, total_count=len(tokens))

    def find_available(self, plan_id: str, now: Optional[datetime] = None) -> Optional[RechargeCode]:
        """Oldest available code for the plan, or None when exhausted.

        Codes past their expiry date are never returned, even before the
        expiry pass has marked them expired.
        """
        return self._store.find_available_code(plan_id, now or self._clock.now())

    def find_code(self, code_id: str) -> Optional[RechargeCode]:
        return self._store.find_code(code_id)

    def count_by_status(self, plan_id: Optional[str], status: CodeStatus) -> int:
        """Number of codes of a plan in a status (all plans when plan_id is None)."""
        return self._store.count_codes(plan_id=plan_id, status=status)

    def status_counts(self, plan_id: Optional[str] = None) -> Dict[str, int]:
        """Counts for every status plus the total."""
        counts = {status.value: self.count_by_status(plan_id, status) for status in CodeStatus}
        counts["total"] = sum(counts.values())
        return counts

    def list_codes(
        self,
        plan_id: Optional[str] = None,
        status: Optional[CodeStatus] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[RechargeCode], int]:
        """Filtered page of codes, newest first, and the total matching count."""
        return self._store.list_codes(
            plan_id=plan_id, status=status, search=search, offset=offset, limit=limit
        )

    def expire_stale_codes(self) -> List[RechargeCode]:
        """Expire available codes whose horizon has passed. Sold codes are untouched."""
        expired = self._store.expire_codes(self._clock.now())
        if expired:
            logger.info("codes_expired", count=len(expired))
        return expired


_code_pool: Optional[CodePool] = None


def get_code_pool() -> CodePool:
    """Get global code pool instance."""
    global _code_pool
    if _code_pool is None:
        _code_pool = CodePool()
    return _code_pool


def reset_code_pool() -> None:
    """Reset global code pool instance (useful for testing)."""
    global _code_pool
    _code_pool = None
