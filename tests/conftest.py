"""Shared test fixtures for Clinica-Gateway."""

import hashlib
import os

import bcrypt
import pytest
from httpx import ASGITransport, AsyncClient

from clinica_gateway.common.config import GatewaySettings
from clinica_gateway.common.database import DatabaseManager
from clinica_gateway.common.reference import Status, UserAccountModel, seed_reference_data
from clinica_gateway.forms.models import (
    CompletionStatus,
    EventCrfModel,
    ItemDataModel,
    ItemFormMetadataModel,
    ItemModel,
)
from clinica_gateway.studies.models import (
    CrfModel,
    CrfVersionModel,
    EventDefinitionCrfModel,
    StudyEventDefinitionModel,
    StudyModel,
    StudyUserRoleModel,
)
from clinica_gateway.subjects.models import (
    StudyEventModel,
    StudySubjectModel,
    SubjectEventStatus,
    SubjectModel,
)


HMAC_KEY = "test-hmac-key-for-unit-tests"
API_KEY = "test-gateway-api-key"
ROOT_PASSWORD = "root-password"
MONITOR_PASSWORD = "monitor-password"

ROOT_USER_ID = 1
MONITOR_USER_ID = 2


class Seeder:
    """Inserts LibreClinica rows directly, one short session per call."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def _add(self, obj):
        async with self.db.get_session() as session:
            session.add(obj)
            await session.flush()
            return obj

    async def reference(self) -> None:
        async with self.db.get_session() as session:
            await seed_reference_data(session)
        # root is an admin with a bcrypt hash, monitor a plain user with legacy MD5
        await self.user("root", 1, bcrypt.hashpw(ROOT_PASSWORD.encode(), bcrypt.gensalt(rounds=4)).decode())
        await self.user("monitor", 2, hashlib.md5(MONITOR_PASSWORD.encode()).hexdigest())

    async def user(self, name: str, type_id: int, passwd: str | None = None,
                   status_id: int = Status.AVAILABLE) -> int:
        user = await self._add(UserAccountModel(
            user_name=name, passwd=passwd, user_type_id=type_id, status_id=status_id,
        ))
        return user.user_id

    async def study(self, identifier: str = "S-001", name: str = "Study One", owner_id: int = 1,
                    parent_study_id: int | None = None, status_id: int = Status.AVAILABLE,
                    oc_oid: str | None = None) -> int:
        study = await self._add(StudyModel(
            unique_identifier=identifier, name=name, owner_id=owner_id,
            parent_study_id=parent_study_id, status_id=status_id,
            oc_oid=oc_oid if oc_oid is not None else f"S_{identifier.replace('-', '_')}",
        ))
        return study.study_id

    async def role(self, study_id: int, user_name: str, status_id: int = Status.AVAILABLE) -> None:
        await self._add(StudyUserRoleModel(
            study_id=study_id, user_name=user_name, role_name="monitor", status_id=status_id,
        ))

    async def subject(self, study_id: int, label: str, status_id: int = Status.AVAILABLE) -> int:
        async with self.db.get_session() as session:
            person = SubjectModel(unique_identifier=label, gender="f")
            session.add(person)
            await session.flush()
            ss = StudySubjectModel(
                label=label, subject_id=person.subject_id, study_id=study_id,
                status_id=status_id, oc_oid=f"SS_{label}",
            )
            session.add(ss)
            await session.flush()
            return ss.study_subject_id

    async def event_definition(self, study_id: int, name: str = "Baseline", ordinal: int = 1,
                               repeating: bool = False, status_id: int = Status.AVAILABLE) -> int:
        definition = await self._add(StudyEventDefinitionModel(
            study_id=study_id, name=name, ordinal=ordinal, oc_oid=f"SE_{name.upper()}",
            repeating=repeating, status_id=status_id,
        ))
        return definition.study_event_definition_id

    async def crf(self, name: str = "Vitals", study_id: int | None = None,
                  definition_id: int | None = None) -> tuple[int, int]:
        """Returns (crf_id, crf_version_id)."""
        async with self.db.get_session() as session:
            crf = CrfModel(name=name, source_study_id=study_id, oc_oid=f"F_{name.upper()}")
            session.add(crf)
            await session.flush()
            version = CrfVersionModel(crf_id=crf.crf_id, name="v1.0", oc_oid=f"F_{name.upper()}_V1")
            session.add(version)
            await session.flush()
            if definition_id is not None:
                session.add(EventDefinitionCrfModel(
                    study_event_definition_id=definition_id, study_id=study_id, crf_id=crf.crf_id,
                ))
            return crf.crf_id, version.crf_version_id

    async def item(self, name: str, oid: str, crf_version_id: int | None = None, ordinal: int = 1) -> int:
        async with self.db.get_session() as session:
            item = ItemModel(name=name, oc_oid=oid)
            session.add(item)
            await session.flush()
            if crf_version_id is not None:
                session.add(ItemFormMetadataModel(
                    item_id=item.item_id, crf_version_id=crf_version_id,
                    ordinal=ordinal, left_item_text=name.title(),
                ))
            return item.item_id

    async def study_event(self, study_subject_id: int, definition_id: int,
                          status: int = SubjectEventStatus.SCHEDULED) -> int:
        event = await self._add(StudyEventModel(
            study_subject_id=study_subject_id, study_event_definition_id=definition_id,
            subject_event_status_id=status,
        ))
        return event.study_event_id

    async def event_crf(self, study_event_id: int, study_subject_id: int, crf_version_id: int,
                        completion: int = CompletionStatus.INITIAL_DATA_ENTRY) -> int:
        event_crf = await self._add(EventCrfModel(
            study_event_id=study_event_id, study_subject_id=study_subject_id,
            crf_version_id=crf_version_id, completion_status_id=completion,
        ))
        return event_crf.event_crf_id

    async def item_data(self, item_id: int, event_crf_id: int, value: str) -> int:
        row = await self._add(ItemDataModel(item_id=item_id, event_crf_id=event_crf_id, value=value))
        return row.item_data_id


def make_settings(**overrides) -> GatewaySettings:
    defaults = {
        "hmac_key": HMAC_KEY,
        "api_key": API_KEY,
        "db_url": "sqlite+aiosqlite://",
        "soap_enabled": True,
    }
    defaults.update(overrides)
    return GatewaySettings(**defaults)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def db(settings):
    """In-memory LibreClinica schema with lookup rows and two accounts."""
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    await Seeder(manager).reference()
    yield manager
    await manager.close()


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
def app():
    """Create a test app with in-memory DB and the SOAP path disabled."""
    os.environ["CLINICA_DB_URL"] = "sqlite+aiosqlite://"
    os.environ["CLINICA_HMAC_KEY"] = HMAC_KEY
    os.environ["CLINICA_API_KEY"] = API_KEY
    os.environ["CLINICA_SOAP_ENABLED"] = "false"

    # Clear caches and singletons so new env vars take effect
    from clinica_gateway.common.config import get_settings
    get_settings.cache_clear()

    from clinica_gateway.deps import reset_singletons
    reset_singletons()

    from clinica_gateway.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from clinica_gateway.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()
    await Seeder(db).reference()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def api_seed(client):
    from clinica_gateway.deps import get_db
    return Seeder(get_db())


@pytest.fixture
def headers():
    return {
        "X-Clinica-Api-Key": API_KEY,
        "X-Clinica-User-Id": str(ROOT_USER_ID),
        "X-Clinica-Username": "root",
    }
