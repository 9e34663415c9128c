"""
casedesk Evaluation Catalog

Scoring vocabularies for the two assessment perspectives.

Each (perspective, criterion) pair has at most one active config holding
an ordered option list. Updates replace the whole list: recorded case
scores are raw integer snapshots, so history is unaffected, but scores
are only comparable between cases assessed under the same vocabulary.
That limitation is accepted, not corrected.

Built-in scales (used by seed_defaults and as the fallback range):
- USER:  difficulty/time/impact/urgency 1-5, form 2-4
- ADMIN: difficulty/impact/urgency 1-6, time 1-7
The two perspectives are not comparable 1:1.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.case import Assessment, Perspective, Criterion
from ..models.evaluation import EvaluationConfig, EvaluationOption, OptionInput

logger = logging.getLogger(__name__)

CatalogKey = Tuple[Perspective, Criterion]


# =============================================================================
# DEFAULT VOCABULARIES
# =============================================================================

_DIFFICULTY = ["Rất dễ", "Dễ", "Trung bình", "Khó", "Rất khó"]
_LEVEL = ["Rất thấp", "Thấp", "Trung bình", "Cao", "Rất cao"]
_TIME = ["< 30 phút", "30-60 phút", "1-2 giờ", "2-4 giờ", "> 4 giờ"]


def _scale(labels: List[str], start: int = 1) -> List[OptionInput]:
    return [OptionInput(label=label, points=start + i) for i, label in enumerate(labels)]


DEFAULT_VOCABULARIES: Dict[CatalogKey, List[OptionInput]] = {
    (Perspective.USER, Criterion.DIFFICULTY): _scale(_DIFFICULTY),
    (Perspective.USER, Criterion.TIME): _scale(_TIME),
    (Perspective.USER, Criterion.IMPACT): _scale(_LEVEL),
    (Perspective.USER, Criterion.URGENCY): _scale(_LEVEL),
    (Perspective.USER, Criterion.FORM): _scale(["Remote", "Offsite", "Onsite"], start=2),

    (Perspective.ADMIN, Criterion.DIFFICULTY): _scale(_DIFFICULTY + ["Cực khó"]),
    (Perspective.ADMIN, Criterion.TIME): _scale(
        ["< 30 phút", "30-60 phút", "1-2 giờ", "2-4 giờ", "4-8 giờ", "1-2 ngày", "> 2 ngày"]
    ),
    (Perspective.ADMIN, Criterion.IMPACT): _scale(_LEVEL + ["Nghiêm trọng"]),
    (Perspective.ADMIN, Criterion.URGENCY): _scale(_LEVEL + ["Khẩn cấp"]),
}


def aggregate_score(assessment: Assessment) -> Optional[int]:
    """
    Sum of the scored criteria; None until anything was scored.

    Only meaningful within one perspective: a USER total and an ADMIN
    total are on different scales.
    """
    scored = [v for v in assessment.values().values() if v is not None]
    return sum(scored) if scored else None


# =============================================================================
# CACHE
# =============================================================================

class CatalogCache:
    """
    TTL cache of active option lists, keyed by (perspective, criterion).

    Owned by whoever constructs the catalog; the catalog invalidates it on
    every write.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CatalogKey, Tuple[float, List[EvaluationOption]]] = {}

    def get(self, key: CatalogKey) -> Optional[List[EvaluationOption]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, options = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return [o.model_copy() for o in options]

    def put(self, key: CatalogKey, options: List[EvaluationOption]) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = (self._clock(), [o.model_copy() for o in options])

    def invalidate(self, key: Optional[CatalogKey] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# SERVICE
# =============================================================================

class EvaluationCatalog:
    """
    Manages evaluation configs and answers vocabulary lookups.

    Writes for one (perspective, criterion) pair are serialized by a lock
    so option replacement is never observed half-done and two concurrent
    creators cannot both succeed.
    """

    def __init__(self, config_repo, cache: Optional[CatalogCache] = None):
        self.configs = config_repo
        self.cache = cache if cache is not None else CatalogCache()
        self._locks: Dict[CatalogKey, asyncio.Lock] = {}

    # =========================================================================
    # Vocabulary lookups
    # =========================================================================

    async def get_options(
        self,
        perspective: Perspective,
        criterion: Criterion
    ) -> List[EvaluationOption]:
        """
        Active options ordered by `order`.

        An empty list means no scoring is available for the pair; it is
        not an error.
        """
        key = (Perspective(perspective), Criterion(criterion))
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        config = await self.configs.find_active(*key)
        options = config.active_options() if config else []
        self.cache.put(key, options)
        return [o.model_copy() for o in options]

    async def score_range(
        self,
        perspective: Perspective,
        criterion: Criterion
    ) -> Optional[Tuple[int, int]]:
        """
        (min, max) points accepted for the pair.

        Falls back to the built-in scale when no config is active; None
        means the criterion does not exist for this perspective.
        """
        options = await self.get_options(perspective, criterion)
        if not options:
            options = DEFAULT_VOCABULARIES.get((perspective, criterion), [])
        if not options:
            return None
        points = [o.points for o in options]
        return min(points), max(points)

    # =========================================================================
    # Pair-addressed writes
    # =========================================================================

    async def upsert_options(
        self,
        perspective: Perspective,
        criterion: Criterion,
        options: List[OptionInput]
    ) -> EvaluationConfig:
        """Create the pair's config, or replace all of its options."""
        key = (Perspective(perspective), Criterion(criterion))
        new_options = self._build_options(options)

        async with self._lock_for(key):
            existing = await self.configs.find_active(*key)
            if existing is None:
                config = await self.configs.add(EvaluationConfig(
                    perspective=key[0],
                    criterion=key[1],
                    options=new_options
                ))
                logger.info(f"Created evaluation config {key[0].value}/{key[1].value}")
            else:
                config = await self.configs.replace_options(existing.id, new_options)
                logger.info(
                    f"Replaced options of {key[0].value}/{key[1].value} "
                    f"({len(new_options)} options)"
                )
            self.cache.invalidate(key)

        return config

    async def deactivate(
        self,
        perspective: Perspective,
        criterion: Criterion
    ) -> EvaluationConfig:
        """Soft-disable the pair's config and its options."""
        key = (Perspective(perspective), Criterion(criterion))
        async with self._lock_for(key):
            existing = await self.configs.find_active(*key)
            if existing is None:
                raise NotFoundError(
                    f"No active evaluation config for {key[0].value}/{key[1].value}"
                )
            config = await self.configs.set_active(existing.id, False)
            self.cache.invalidate(key)
        return config

    # =========================================================================
    # Id-addressed administration
    # =========================================================================

    async def list_configs(
        self,
        perspective: Optional[Perspective] = None,
        criterion: Optional[Criterion] = None
    ) -> List[EvaluationConfig]:
        configs = await self.configs.list(perspective, criterion, active_only=True)
        for config in configs:
            config.options = config.active_options()
        return configs

    async def get_config(self, config_id: UUID) -> EvaluationConfig:
        config = await self.configs.get(config_id)
        if config is None:
            raise NotFoundError("Configuration not found")
        config.options = config.active_options()
        return config

    async def create_config(
        self,
        perspective: Perspective,
        criterion: Criterion,
        options: List[OptionInput]
    ) -> EvaluationConfig:
        """Create a config; Conflict if the pair already has an active one."""
        key = (Perspective(perspective), Criterion(criterion))
        new_options = self._build_options(options)

        async with self._lock_for(key):
            if await self.configs.find_active(*key) is not None:
                raise ConflictError("Configuration already exists for this type and category")
            config = await self.configs.add(EvaluationConfig(
                perspective=key[0],
                criterion=key[1],
                options=new_options
            ))
            self.cache.invalidate(key)
        return config

    async def update_config(
        self,
        config_id: UUID,
        options: Optional[List[OptionInput]] = None,
        is_active: Optional[bool] = None
    ) -> EvaluationConfig:
        config = await self.configs.get(config_id)
        if config is None:
            raise NotFoundError("Configuration not found")
        key = (config.perspective, config.criterion)
        new_options = self._build_options(options) if options is not None else None

        async with self._lock_for(key):
            if is_active is not None and is_active != config.is_active:
                if is_active:
                    active = await self.configs.find_active(*key)
                    if active is not None and active.id != config_id:
                        raise ConflictError(
                            "Another configuration is already active for this type and category"
                        )
                config = await self.configs.set_active(config_id, is_active)
            if new_options is not None:
                config = await self.configs.replace_options(config_id, new_options)
            self.cache.invalidate(key)

        config.options = config.active_options()
        return config

    async def deactivate_config(self, config_id: UUID) -> EvaluationConfig:
        config = await self.configs.get(config_id)
        if config is None:
            raise NotFoundError("Configuration not found")
        key = (config.perspective, config.criterion)
        async with self._lock_for(key):
            config = await self.configs.set_active(config_id, False)
            self.cache.invalidate(key)
        return config

    async def seed_defaults(self) -> List[EvaluationConfig]:
        """Install the built-in vocabularies into an empty catalog."""
        if await self.configs.count() > 0:
            raise ConflictError("Evaluation configurations already exist")

        created = []
        for (perspective, criterion), options in DEFAULT_VOCABULARIES.items():
            created.append(await self.create_config(perspective, criterion, options))
        logger.info(f"Seeded {len(created)} default evaluation configs")
        return created

    # =========================================================================
    # Private methods
    # =========================================================================

    def _lock_for(self, key: CatalogKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @staticmethod
    def _build_options(options: List[OptionInput]) -> List[EvaluationOption]:
        if not options:
            raise ValidationError("At least one option is required")

        built = []
        for index, option in enumerate(options):
            if isinstance(option, dict):
                try:
                    option = OptionInput(**option)
                except PydanticValidationError as e:
                    raise ValidationError(f"Invalid option at position {index}: {e}") from e
            if option.points < 1:
                raise ValidationError(
                    f"Option '{option.label}' must score a positive number of points"
                )
            built.append(EvaluationOption(
                label=option.label,
                points=option.points,
                order=index
            ))
        return built
