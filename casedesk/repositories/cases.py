"""
casedesk Case Repositories

One typed repository per case kind, all backed by the `cases` table. The
set of repositories is built from the CaseKind enum itself, so adding a
kind without storage is impossible and the stale monitor cannot miss one.
"""

from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import func, select, update

from ..db import CaseRecord, Database
from ..errors import ConflictError, NotFoundError
from ..models.case import TERMINAL_STATUSES, Case, CaseKind, CaseStatus, utcnow

_ASSESSMENT_COLUMNS = ("user_assessment", "admin_assessment")


def _to_case(record: CaseRecord) -> Case:
    return Case.model_validate(record, from_attributes=True)


def _column_values(values: dict) -> dict:
    """Assessments go to JSON columns as plain snapshots."""
    converted = dict(values)
    for name in _ASSESSMENT_COLUMNS:
        value = converted.get(name)
        if isinstance(value, BaseModel):
            converted[name] = value.model_dump(mode="json")
    return converted


class CaseRepository:
    """
    Storage for one case kind.

    Callers always receive detached pydantic copies; the only way to
    change a stored case is `update`, which is a compare-and-set on
    `version` executed as a single UPDATE statement.
    """

    def __init__(self, kind: CaseKind, database: Database):
        self.kind = kind
        self.database = database

    async def add(self, case: Case) -> Case:
        if case.kind != self.kind:
            raise ValueError(f"{case.kind.value} case stored in {self.kind.value} repository")
        with self.database.session() as db:
            record = CaseRecord(**_column_values(dict(case)))
            db.add(record)
            db.flush()
            return _to_case(record)

    async def get(self, case_id: UUID) -> Optional[Case]:
        with self.database.session() as db:
            record = db.get(CaseRecord, case_id)
            if record is None or record.kind != self.kind:
                return None
            return _to_case(record)

    async def update(
        self,
        case_id: UUID,
        expected_version: int,
        changes: dict
    ) -> Case:
        """
        Apply `changes` in one write if the stored version still matches.

        Bumps `version` and `updated_at`. Raises ConflictError when another
        write got there first.
        """
        with self.database.session() as db:
            result = db.execute(
                update(CaseRecord)
                .where(
                    CaseRecord.id == case_id,
                    CaseRecord.kind == self.kind,
                    CaseRecord.version == expected_version,
                )
                .values(
                    **_column_values(changes),
                    version=CaseRecord.version + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            record = db.get(CaseRecord, case_id, populate_existing=True)
            if record is None or record.kind != self.kind:
                raise NotFoundError(f"{self.kind.label} {case_id} not found")
            if result.rowcount == 0:
                raise ConflictError(
                    f"Case {case_id} was modified concurrently "
                    f"(expected version {expected_version}, found {record.version})"
                )
            return _to_case(record)

    async def list(
        self,
        status: Optional[CaseStatus] = None,
        offset: int = 0,
        limit: int = 10
    ) -> Tuple[List[Case], int]:
        """Newest first."""
        conditions = [CaseRecord.kind == self.kind]
        if status is not None:
            conditions.append(CaseRecord.status == CaseStatus(status))

        with self.database.session() as db:
            total = db.scalar(select(func.count()).select_from(CaseRecord).where(*conditions))
            records = db.scalars(
                select(CaseRecord)
                .where(*conditions)
                .order_by(CaseRecord.created_at.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            return [_to_case(r) for r in records], total or 0

    async def find_stale(self, started_before: datetime) -> List[Case]:
        """Non-terminal cases with a handler that started before the cutoff."""
        with self.database.session() as db:
            records = db.scalars(
                select(CaseRecord).where(
                    CaseRecord.kind == self.kind,
                    CaseRecord.start_date < started_before,
                    CaseRecord.status.not_in(list(TERMINAL_STATUSES)),
                    CaseRecord.handler_id.is_not(None),
                )
            ).all()
            return [_to_case(r) for r in records]


class CaseRepositories:
    """Exhaustive kind -> repository mapping."""

    def __init__(
        self,
        database: Database,
        repositories: Optional[Dict[CaseKind, CaseRepository]] = None
    ):
        repositories = dict(repositories or {})
        for kind in CaseKind:
            repositories.setdefault(kind, CaseRepository(kind, database))

        missing = set(CaseKind) - set(repositories)
        if missing:
            raise ValueError(f"No repository for kinds: {sorted(k.value for k in missing)}")
        self._by_kind = repositories

    def for_kind(self, kind: CaseKind) -> CaseRepository:
        return self._by_kind[CaseKind(kind)]

    def __iter__(self) -> Iterator[Tuple[CaseKind, CaseRepository]]:
        # Enum declaration order, not insertion order
        for kind in CaseKind:
            yield kind, self._by_kind[kind]
