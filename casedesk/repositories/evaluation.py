"""
casedesk Evaluation Config Repository

Evaluation configs and their options, stored in `evaluation_configs` and
`evaluation_options`.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..db import Database, EvaluationConfigRecord, EvaluationOptionRecord
from ..errors import ConflictError, NotFoundError
from ..models.case import Perspective, Criterion, utcnow
from ..models.evaluation import EvaluationConfig, EvaluationOption


def _to_config(record: EvaluationConfigRecord) -> EvaluationConfig:
    return EvaluationConfig(
        id=record.id,
        perspective=record.perspective,
        criterion=record.criterion,
        is_active=record.is_active,
        options=[EvaluationOption.model_validate(o, from_attributes=True) for o in record.options],
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _option_record(option: EvaluationOption) -> EvaluationOptionRecord:
    return EvaluationOptionRecord(**option.model_dump())


class EvaluationConfigRepository:

    def __init__(self, database: Database):
        self.database = database

    async def add(self, config: EvaluationConfig) -> EvaluationConfig:
        try:
            with self.database.session() as db:
                record = EvaluationConfigRecord(
                    **config.model_dump(exclude={"options"}),
                    options=[_option_record(o) for o in config.options],
                )
                db.add(record)
                db.flush()
                return _to_config(record)
        except IntegrityError as e:
            raise ConflictError(
                "Configuration already exists for this type and category"
            ) from e

    async def get(self, config_id: UUID) -> Optional[EvaluationConfig]:
        with self.database.session() as db:
            record = db.get(EvaluationConfigRecord, config_id)
            return _to_config(record) if record else None

    async def find_active(
        self,
        perspective: Perspective,
        criterion: Criterion
    ) -> Optional[EvaluationConfig]:
        with self.database.session() as db:
            record = db.scalars(
                select(EvaluationConfigRecord).where(
                    EvaluationConfigRecord.is_active.is_(True),
                    EvaluationConfigRecord.perspective == perspective,
                    EvaluationConfigRecord.criterion == criterion,
                )
            ).first()
            return _to_config(record) if record else None

    async def list(
        self,
        perspective: Optional[Perspective] = None,
        criterion: Optional[Criterion] = None,
        active_only: bool = True
    ) -> List[EvaluationConfig]:
        stmt = select(EvaluationConfigRecord)
        if active_only:
            stmt = stmt.where(EvaluationConfigRecord.is_active.is_(True))
        if perspective is not None:
            stmt = stmt.where(EvaluationConfigRecord.perspective == perspective)
        if criterion is not None:
            stmt = stmt.where(EvaluationConfigRecord.criterion == criterion)

        with self.database.session() as db:
            records = db.scalars(stmt).all()
            configs = [_to_config(r) for r in records]
        configs.sort(key=lambda c: (c.perspective.value, c.criterion.value))
        return configs

    async def count(self) -> int:
        with self.database.session() as db:
            return db.scalar(select(func.count()).select_from(EvaluationConfigRecord)) or 0

    async def replace_options(
        self,
        config_id: UUID,
        options: List[EvaluationOption]
    ) -> EvaluationConfig:
        """Delete every option of the config and store `options` in one transaction."""
        with self.database.session() as db:
            record = self._require(db, config_id)
            record.options = [_option_record(o) for o in options]
            record.updated_at = utcnow()
            db.flush()
            return _to_config(record)

    async def set_active(self, config_id: UUID, is_active: bool) -> EvaluationConfig:
        """Flip the config and every one of its options."""
        try:
            with self.database.session() as db:
                record = self._require(db, config_id)
                record.is_active = is_active
                for option in record.options:
                    option.is_active = is_active
                record.updated_at = utcnow()
                db.flush()
                return _to_config(record)
        except IntegrityError as e:
            raise ConflictError(
                "Another configuration is already active for this type and category"
            ) from e

    @staticmethod
    def _require(db, config_id: UUID) -> EvaluationConfigRecord:
        record = db.get(EvaluationConfigRecord, config_id)
        if record is None:
            raise NotFoundError("Configuration not found")
        return record
