import os
from datetime import date
from typing import Any, AsyncGenerator, Dict, List, Optional
from uuid import UUID

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./registrar-test.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from registrar.api.v1.side_effects import (
    SideEffects,
    build_side_effects,
    get_notification_channel,
    get_side_effect_dispatcher,
)
from registrar.auth.models import User
from registrar.auth.security import create_access_token
from registrar.core.dispatch import SideEffectDispatcher
from registrar.core.models import (
    AcademicYear,
    AnnualEnrollment,
    AttendanceRecord,
    Evaluation,
    Grade,
    Lesson,
    SchoolClass,
    SubPeriod,
    TeachingPlan,
    Tenant,
)
from registrar.core.notifications import ChannelResult, DeliveryStatus, NotificationChannel, NotificationPayload
from registrar.db.session import Base, get_db, get_session_factory
from registrar.main import app

# SQLite has no schemas; map core/school/auth tables onto the default one
SCHEMA_MAP = {"core": None, "school": None, "auth": None}


class RecordingChannel(NotificationChannel):
    """Keeps every payload; raises for addresses listed in failing."""

    def __init__(self) -> None:
        self.sent: List[NotificationPayload] = []
        self.failing: set = set()

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        if payload.recipient_email in self.failing:
            raise ConnectionError(f"mailbox {payload.recipient_email} unreachable")
        self.sent.append(payload)
        return ChannelResult(DeliveryStatus.SENT, payload.recipient_id)


class SchoolBuilder:
    """Inserts fixture rows, one committed session per call."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory
        self._counter = 0

    async def add(self, *objs: Any) -> Any:
        async with self.session_factory() as session:
            session.add_all(objs)
            await session.commit()
        return objs[0] if len(objs) == 1 else objs

    async def tenant(self, academic_type: Optional[str] = None) -> Tenant:
        self._counter += 1
        return await self.add(
            Tenant(
                organization_code=f"ORG{self._counter:04d}",
                organization_name=f"School {self._counter}",
                academic_type=academic_type,
            )
        )

    async def user(
        self,
        tenant_id: UUID,
        role: str = "ADMIN",
        full_name: Optional[str] = None,
        email: Optional[str] = None,
        status: str = "ACTIVE",
    ) -> User:
        self._counter += 1
        return await self.add(
            User(
                tenant_id=tenant_id,
                full_name=full_name or f"User {self._counter}",
                email=email,
                role=role,
                status=status,
            )
        )

    async def student(self, tenant_id: UUID, full_name: Optional[str] = None) -> User:
        return await self.user(tenant_id, role="STUDENT", full_name=full_name)

    async def year(self, tenant_id: UUID, year_number: int = 2024, status: str = "PLANNED") -> AcademicYear:
        return await self.add(
            AcademicYear(
                tenant_id=tenant_id,
                year_number=year_number,
                start_date=date(year_number, 2, 1),
                end_date=date(year_number, 12, 15),
                status=status,
            )
        )

    async def sub_period(
        self, tenant_id: UUID, year: AcademicYear, kind: str, ordinal: int, status: str = "PLANNED"
    ) -> SubPeriod:
        return await self.add(
            SubPeriod(
                tenant_id=tenant_id,
                academic_year_id=year.id,
                kind=kind,
                ordinal=ordinal,
                start_date=date(year.year_number, 2 + (ordinal - 1) * 3, 1),
                end_date=date(year.year_number, 4 + (ordinal - 1) * 3, 28),
                status=status,
            )
        )

    async def school_class(self, tenant_id: UUID, name: str, display_order: Optional[int] = None) -> SchoolClass:
        return await self.add(SchoolClass(tenant_id=tenant_id, name=name, display_order=display_order))

    async def plan(
        self, tenant_id: UUID, year: AcademicYear, class_id: Optional[UUID], subject_name: str = "Mathematics"
    ) -> TeachingPlan:
        return await self.add(
            TeachingPlan(tenant_id=tenant_id, academic_year_id=year.id, class_id=class_id, subject_name=subject_name)
        )

    async def evaluation(
        self,
        tenant_id: UUID,
        plan: TeachingPlan,
        kind: str = "REGULAR",
        is_closed: bool = True,
        sub_period_ordinal: Optional[int] = None,
        weight: float = 1.0,
    ) -> Evaluation:
        self._counter += 1
        return await self.add(
            Evaluation(
                tenant_id=tenant_id,
                teaching_plan_id=plan.id,
                kind=kind,
                title=f"Evaluation {self._counter}",
                sub_period_ordinal=sub_period_ordinal,
                weight=weight,
                is_closed=is_closed,
            )
        )

    async def grade(self, tenant_id: UUID, evaluation: Evaluation, student_id: UUID, value: float) -> Grade:
        return await self.add(
            Grade(tenant_id=tenant_id, evaluation_id=evaluation.id, student_id=student_id, value=value)
        )

    async def lesson(self, tenant_id: UUID, plan: TeachingPlan, lesson_date: date) -> Lesson:
        return await self.add(Lesson(tenant_id=tenant_id, teaching_plan_id=plan.id, lesson_date=lesson_date))

    async def attendance(
        self, tenant_id: UUID, lesson: Lesson, student_id: UUID, present: bool = True, justified: bool = False
    ) -> AttendanceRecord:
        return await self.add(
            AttendanceRecord(
                tenant_id=tenant_id, lesson_id=lesson.id, student_id=student_id, present=present, justified=justified
            )
        )

    async def enrollment(
        self,
        tenant_id: UUID,
        student_id: UUID,
        year: AcademicYear,
        class_id: Optional[UUID] = None,
        level_label: Optional[str] = None,
        status: str = "ACTIVE",
        legacy: bool = False,
    ) -> AnnualEnrollment:
        """legacy=True links the row by year_number only, like rows created before academic_year_id existed."""
        return await self.add(
            AnnualEnrollment(
                tenant_id=tenant_id,
                student_id=student_id,
                academic_year_id=None if legacy else year.id,
                year_number=year.year_number,
                class_id=class_id,
                level_label=level_label,
                status=status,
            )
        )


@pytest.fixture()
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'registrar.db'}",
        echo=False,
        execution_options={"schema_translate_map": SCHEMA_MAP},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def dispatcher(engine) -> AsyncGenerator[SideEffectDispatcher, None]:
    dispatcher = SideEffectDispatcher(max_concurrency=4)
    yield dispatcher
    await dispatcher.drain()


@pytest.fixture()
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture()
def effects(session_factory, dispatcher, channel) -> SideEffects:
    return build_side_effects(session_factory, dispatcher, channel)


@pytest.fixture()
def builder(session_factory) -> SchoolBuilder:
    return SchoolBuilder(session_factory)


@pytest.fixture()
async def tenant(builder) -> Tenant:
    return await builder.tenant(academic_type="SECONDARY")


@pytest.fixture()
async def admin(builder, tenant) -> User:
    return await builder.user(tenant.id, role="ADMIN", full_name="Ana Admin", email="ana@example.com")


def auth_headers(user: User, permissions: Optional[Dict[str, Dict[str, bool]]] = None) -> Dict[str, str]:
    token = create_access_token(
        subject={
            "sub": str(user.id),
            "user_id": str(user.id),
            "tenant_id": str(user.tenant_id),
            "role": user.role,
            "permissions": permissions or {},
        }
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def make_headers():
    return auth_headers


@pytest.fixture()
def headers(admin) -> Dict[str, str]:
    return auth_headers(admin)


@pytest.fixture()
async def client(session_factory, dispatcher, channel) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, with every dependency pointed at the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_side_effect_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_notification_channel] = lambda: channel

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
