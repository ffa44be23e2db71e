import asyncio
from datetime import date

import pytest
from sqlalchemy import func, select

from registrar.api.v1.academic_years import service
from registrar.api.v1.academic_years.schemas import AcademicYearCreate, AcademicYearUpdate
from registrar.core.exceptions import ConflictError, NotFoundError, ValidationError
from registrar.core.models import AcademicYear, AuditLog


async def _audit_actions(session_factory, entity_id):
    async with session_factory() as session:
        result = await session.execute(
            select(AuditLog.action).where(AuditLog.entity_id == entity_id).order_by(AuditLog.timestamp)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_academic_year_is_planned(db_session, effects, dispatcher, session_factory, tenant, admin) -> None:
    payload = AcademicYearCreate(year_number=2025, start_date=date(2025, 2, 3), end_date=date(2025, 12, 12))
    created = await service.create_academic_year(db_session, tenant.id, payload, effects, admin.id)

    assert created.status == "PLANNED"
    assert created.year_number == 2025

    with pytest.raises(ConflictError):
        await service.create_academic_year(db_session, tenant.id, payload, effects, admin.id)

    await dispatcher.drain()
    assert await _audit_actions(session_factory, created.id) == ["CREATE"]


@pytest.mark.asyncio
async def test_create_rejects_inverted_dates(db_session, effects, tenant) -> None:
    payload = AcademicYearCreate(year_number=2025, start_date=date(2025, 12, 1), end_date=date(2025, 2, 1))
    with pytest.raises(ValidationError):
        await service.create_academic_year(db_session, tenant.id, payload, effects)


@pytest.mark.asyncio
async def test_create_rejects_overlapping_dates(db_session, effects, tenant) -> None:
    first = AcademicYearCreate(year_number=2025, start_date=date(2025, 2, 3), end_date=date(2025, 12, 12))
    await service.create_academic_year(db_session, tenant.id, first, effects)

    overlapping = AcademicYearCreate(year_number=2026, start_date=date(2025, 11, 1), end_date=date(2026, 10, 30))
    with pytest.raises(ConflictError, match="overlap"):
        await service.create_academic_year(db_session, tenant.id, overlapping, effects)

    following = AcademicYearCreate(year_number=2026, start_date=date(2026, 2, 2), end_date=date(2026, 12, 11))
    created = await service.create_academic_year(db_session, tenant.id, following, effects)
    assert created.year_number == 2026


@pytest.mark.asyncio
async def test_activate_then_repeat_is_idempotent(
    db_session, effects, dispatcher, session_factory, builder, tenant, admin
) -> None:
    year = await builder.year(tenant.id, 2024)

    first = await service.activate_year(db_session, tenant.id, year.id, effects, admin.id)
    assert first.changed is True
    assert first.academic_year.status == "ACTIVE"
    assert first.academic_year.activated_by == admin.id

    second = await service.activate_year(db_session, tenant.id, year.id, effects, admin.id)
    assert second.changed is False
    assert second.academic_year.status == "ACTIVE"

    await dispatcher.drain()
    assert await _audit_actions(session_factory, year.id) == ["ACTIVATE"]


@pytest.mark.asyncio
async def test_activate_refused_while_another_year_is_active(db_session, effects, builder, tenant) -> None:
    await builder.year(tenant.id, 2023, status="ACTIVE")
    planned = await builder.year(tenant.id, 2024)

    with pytest.raises(ConflictError) as exc:
        await service.activate_year(db_session, tenant.id, planned.id, effects)
    assert "2023" in exc.value.message


@pytest.mark.asyncio
async def test_active_year_of_another_tenant_does_not_block(db_session, effects, builder, tenant) -> None:
    other = await builder.tenant(academic_type="SECONDARY")
    await builder.year(other.id, 2024, status="ACTIVE")
    planned = await builder.year(tenant.id, 2024)

    result = await service.activate_year(db_session, tenant.id, planned.id, effects)
    assert result.changed is True


@pytest.mark.asyncio
async def test_closed_year_cannot_be_reactivated(db_session, effects, builder, tenant) -> None:
    closed = await builder.year(tenant.id, 2022, status="CLOSED")
    with pytest.raises(ConflictError):
        await service.activate_year(db_session, tenant.id, closed.id, effects)


@pytest.mark.asyncio
async def test_concurrent_activations_leave_one_active_year(session_factory, effects, builder, tenant) -> None:
    first = await builder.year(tenant.id, 2024)
    second = await builder.year(tenant.id, 2025)

    async def attempt(year_id):
        async with session_factory() as session:
            try:
                await service.activate_year(session, tenant.id, year_id, effects)
            except ConflictError:
                return "conflict"
            return "ok"

    outcomes = await asyncio.gather(attempt(first.id), attempt(second.id))
    assert sorted(outcomes) == ["conflict", "ok"]

    async with session_factory() as session:
        active = await session.execute(
            select(func.count(AcademicYear.id)).where(
                AcademicYear.tenant_id == tenant.id, AcademicYear.status == "ACTIVE"
            )
        )
        assert active.scalar_one() == 1


@pytest.mark.asyncio
async def test_other_tenant_year_is_not_found(db_session, effects, builder, tenant) -> None:
    other = await builder.tenant()
    foreign = await builder.year(other.id, 2024)
    with pytest.raises(NotFoundError):
        await service.activate_year(db_session, tenant.id, foreign.id, effects)


@pytest.mark.asyncio
async def test_closed_year_is_read_only(db_session, effects, builder, tenant) -> None:
    closed = await builder.year(tenant.id, 2022, status="CLOSED")
    with pytest.raises(ConflictError):
        await service.update_academic_year(
            db_session, tenant.id, closed.id, AcademicYearUpdate(notes="late correction"), effects
        )


@pytest.mark.asyncio
async def test_get_active_and_list(db_session, builder, tenant) -> None:
    assert await service.get_active_academic_year(db_session, tenant.id) is None
    await builder.year(tenant.id, 2023, status="CLOSED")
    active = await builder.year(tenant.id, 2024, status="ACTIVE")

    current = await service.get_active_academic_year(db_session, tenant.id)
    assert current.id == active.id

    years = await service.list_academic_years(db_session, tenant.id)
    assert [y.year_number for y in years] == [2024, 2023]
    closed_only = await service.list_academic_years(db_session, tenant.id, status_filter="closed")
    assert [y.year_number for y in closed_only] == [2023]
