from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from casedesk.api import Container, create_app
from casedesk.config import Settings
from casedesk.db import Database
from casedesk.models import CaseInput, CaseKind, Person, Role, User, utcnow
from casedesk.repositories import PersonDirectory, UserDirectory


@dataclass
class Staff:
    admin: User
    lead: User
    tech: User
    requester_user: User
    handler: Person
    requester: Person
    unlinked: Person


@pytest.fixture()
def staff() -> Staff:
    admin = User(name="Admin", roles=[Role.ADMIN])
    lead = User(name="Lead", roles=[Role.IT_LEAD])
    tech = User(name="Tech", roles=[Role.IT_STAFF])
    requester_user = User(name="Requester", roles=[Role.USER])
    return Staff(
        admin=admin,
        lead=lead,
        tech=tech,
        requester_user=requester_user,
        handler=Person(full_name="Trần Kỹ Thuật", position="Technician", user_id=tech.id),
        requester=Person(full_name="Nguyễn Văn A", department="Sales", user_id=requester_user.id),
        unlinked=Person(full_name="Lê Không Tài Khoản"),
    )


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        telegram_bot_token=None,
        telegram_chat_id=None,
        stale_monitor_enabled=False,
        catalog_cache_ttl_seconds=300,
    )


@pytest.fixture()
def database() -> Database:
    database = Database("sqlite://")
    database.create_all()
    return database


@pytest.fixture()
def container(settings: Settings, staff: Staff) -> Container:
    people = PersonDirectory([staff.handler, staff.requester, staff.unlinked])
    users = UserDirectory([staff.admin, staff.lead, staff.tech, staff.requester_user])
    return Container.build(settings, people=people, users=users)


@pytest.fixture()
def client(container: Container):
    with TestClient(create_app(container)) as test_client:
        yield test_client


def case_input(staff: Staff, kind: CaseKind = CaseKind.INTERNAL, **overrides) -> CaseInput:
    """A valid creation payload for `kind`; overrides win."""
    fields = {
        "title": "Máy in tầng 3 không hoạt động",
        "description": "Kẹt giấy liên tục",
        "requester_id": staff.requester.id,
        "handler_id": staff.handler.id,
        "start_date": utcnow() - timedelta(hours=1),
    }
    if kind != CaseKind.INTERNAL:
        fields["counterparty_name"] = "Công ty ABC"
    if kind.type_field:
        fields[kind.type_field] = "type-1"
    fields.update(overrides)
    return CaseInput(**fields)


def headers_for(user: User) -> dict:
    roles = ",".join(f'"{role.value}"' for role in user.roles)
    return {"X-User-ID": str(user.id), "X-User-Roles": f"[{roles}]"}


def random_id() -> str:
    return str(uuid4())
