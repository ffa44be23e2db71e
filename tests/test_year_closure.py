from datetime import date
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import select

from registrar.api.v1.academic_years import service
from registrar.api.v1.historical_records.service import SNAPSHOT_KEY, SnapshotError, SnapshotResult
from registrar.core.exceptions import ConflictError, ValidationError
from registrar.core.models import AcademicYear, AnnualEnrollment, AuditLog, HistoricalRecord


async def _secondary_school(builder, tenant, students=10, failing=2):
    """ACTIVE 2024 year with three closed trimesters and one 10th grade class, fully graded."""
    year = await builder.year(tenant.id, 2024, status="ACTIVE")
    for ordinal in (1, 2, 3):
        await builder.sub_period(tenant.id, year, "TRIMESTER", ordinal, status="CLOSED")
    tenth = await builder.school_class(tenant.id, "10th Grade", 10)
    eleventh = await builder.school_class(tenant.id, "11th Grade", 11)
    maths = await builder.plan(tenant.id, year, tenth.id, "Mathematics")
    language = await builder.plan(tenant.id, year, tenth.id, "Language")
    maths_test = await builder.evaluation(tenant.id, maths, sub_period_ordinal=3)
    language_test = await builder.evaluation(tenant.id, language, sub_period_ordinal=3)
    lessons = [
        await builder.lesson(tenant.id, maths, date(2024, 3, 4)),
        await builder.lesson(tenant.id, maths, date(2024, 3, 11)),
    ]

    enrolled = []
    for i in range(students):
        student = await builder.student(tenant.id, f"Student {i:02d}")
        enrollment = await builder.enrollment(tenant.id, student.id, year, class_id=tenth.id, level_label="10th Grade")
        score = 6.0 if i < failing else 14.0
        await builder.grade(tenant.id, maths_test, student.id, score)
        await builder.grade(tenant.id, language_test, student.id, 12.0)
        enrolled.append(SimpleNamespace(student=student, enrollment=enrollment, passing=i >= failing))

    await builder.attendance(tenant.id, lessons[0], enrolled[-1].student.id, present=True)
    await builder.attendance(tenant.id, lessons[1], enrolled[-1].student.id, present=False, justified=True)

    return SimpleNamespace(year=year, tenth=tenth, eleventh=eleventh, enrolled=enrolled)


@pytest.mark.asyncio
async def test_close_secondary_year_end_to_end(
    db_session, session_factory, effects, dispatcher, channel, builder, tenant, admin
) -> None:
    second_admin = await builder.user(tenant.id, role="SUPER_ADMIN", full_name="Bruno Boss", email="bruno@example.com")
    await builder.user(tenant.id, role="TEACHER", full_name="Tina Teacher", email="tina@example.com")
    school = await _secondary_school(builder, tenant)

    result = await service.close_year(db_session, tenant.id, school.year.id, effects, actor_id=admin.id)

    assert result.academic_year.status == "CLOSED"
    assert result.academic_year.closed_by == admin.id
    assert result.statistics.model_dump() == {
        "classes": 1,
        "active_students": 10,
        "evaluations": 2,
        "grades": 20,
        "lessons": 2,
        "attendance_records": 2,
    }
    assert result.historical_records_generated == 10
    assert result.historical_errors == []
    assert result.progression.updated == 10
    assert result.progression.failures == []
    assert result.warnings == []

    rows = (
        await db_session.execute(select(AnnualEnrollment).where(AnnualEnrollment.tenant_id == tenant.id))
    ).scalars().all()
    by_student = {row.student_id: row for row in rows}
    for item in school.enrolled:
        row = by_student[item.student.id]
        if item.passing:
            assert row.final_status == "PASSED"
            assert row.suggested_next_level == "11th Grade"
            assert row.suggested_next_class_id == school.eleventh.id
        else:
            assert row.final_status == "FAILED"
            assert row.suggested_next_level == "10th Grade"

    await dispatcher.drain()

    audit = (await db_session.execute(select(AuditLog).where(AuditLog.tenant_id == tenant.id))).scalars().all()
    close_entries = [a for a in audit if a.action == "CLOSE" and a.entity_type == "ACADEMIC_YEAR"]
    assert len(close_entries) == 1
    assert close_entries[0].from_status == "ACTIVE"
    assert close_entries[0].to_status == "CLOSED"
    assert close_entries[0].after_data["historical_records_generated"] == 10
    assert len([a for a in audit if a.action == "PROGRESSION"]) == 10

    recipients = sorted(p.recipient_email for p in channel.sent)
    assert recipients == sorted([admin.email, second_admin.email])
    assert "2024" in channel.sent[0].subject


@pytest.mark.asyncio
async def test_historical_record_contents(db_session, effects, builder, tenant) -> None:
    school = await _secondary_school(builder, tenant, students=3, failing=1)
    await service.close_year(db_session, tenant.id, school.year.id, effects)

    last = school.enrolled[-1]
    record = (
        await db_session.execute(select(HistoricalRecord).where(HistoricalRecord.student_id == last.student.id))
    ).scalar_one()
    assert record.snapshot_key == SNAPSHOT_KEY
    assert record.outcome == "PASSED"
    assert record.overall_average == 13.0
    subjects = {s["subject"]: s for s in record.subjects}
    assert subjects["Mathematics"]["average"] == 14.0
    assert subjects["Mathematics"]["lessons"] == 2
    assert subjects["Mathematics"]["presences"] == 1
    assert subjects["Mathematics"]["justified_absences"] == 1
    assert subjects["Mathematics"]["attendance_rate"] == 1.0
    assert subjects["Language"]["outcome"] == "PASSED"

    failed = (
        await db_session.execute(
            select(HistoricalRecord).where(HistoricalRecord.student_id == school.enrolled[0].student.id)
        )
    ).scalar_one()
    assert failed.outcome == "FAILED"


@pytest.mark.asyncio
async def test_closing_twice_is_a_conflict(db_session, effects, builder, tenant) -> None:
    school = await _secondary_school(builder, tenant, students=2, failing=0)
    await service.close_year(db_session, tenant.id, school.year.id, effects)

    with pytest.raises(ConflictError):
        await service.close_year(db_session, tenant.id, school.year.id, effects)
    with pytest.raises(ConflictError):
        await service.close_year(
            db_session, tenant.id, school.year.id, effects, justification="again", require_justification=True
        )


@pytest.mark.asyncio
async def test_planned_year_cannot_be_closed(db_session, effects, builder, tenant) -> None:
    year = await builder.year(tenant.id, 2025)
    with pytest.raises(ConflictError):
        await service.close_year(db_session, tenant.id, year.id, effects)


@pytest.mark.asyncio
async def test_justification_required_when_configured(db_session, effects, builder, tenant) -> None:
    school = await _secondary_school(builder, tenant, students=1, failing=0)

    with pytest.raises(ValidationError):
        await service.close_year(
            db_session, tenant.id, school.year.id, effects, justification="   ", require_justification=True
        )

    year = await db_session.get(AcademicYear, school.year.id)
    await db_session.refresh(year)
    assert year.status == "ACTIVE"

    result = await service.close_year(
        db_session,
        tenant.id,
        school.year.id,
        effects,
        justification="End of school calendar",
        require_justification=True,
    )
    assert result.academic_year.closure_justification == "End of school calendar"


@pytest.mark.asyncio
async def test_one_bad_enrollment_does_not_stop_progression(
    db_session, effects, dispatcher, builder, tenant
) -> None:
    school = await _secondary_school(builder, tenant, students=4, failing=0)
    orphan = await builder.student(tenant.id, "Orphan")
    await builder.enrollment(tenant.id, orphan.id, school.year, class_id=uuid4())

    result = await service.close_year(db_session, tenant.id, school.year.id, effects)

    assert result.academic_year.status == "CLOSED"
    assert result.progression.updated == 4
    assert len(result.progression.failures) == 1
    assert result.progression.failures[0].student_id == orphan.id
    assert "not found" in result.progression.failures[0].reason
    assert result.historical_errors == []

    assert [w.name for w in result.warnings] == ["progression"]
    warning = result.warnings[0]
    assert warning.reason == "1 students missing progression records"
    assert "not found" in warning.details[str(orphan.id)]

    await dispatcher.drain()
    close_entry = (
        await db_session.execute(
            select(AuditLog).where(AuditLog.entity_id == school.year.id, AuditLog.action == "CLOSE")
        )
    ).scalar_one()
    assert close_entry.after_data["historical_errors"] == []
    failures = close_entry.after_data["progression_failures"]
    assert [f["student_id"] for f in failures] == [str(orphan.id)]
    assert "not found" in failures[0]["reason"]


@pytest.mark.asyncio
async def test_snapshot_errors_are_reported_as_warning(db_session, effects, dispatcher, builder, tenant) -> None:
    school = await _secondary_school(builder, tenant, students=3, failing=0)
    broken = school.enrolled[0]

    async def generate(session, tenant_id, academic_year_id, generated_by=None):
        return SnapshotResult(
            generated=2,
            errors=[SnapshotError(broken.enrollment.id, broken.student.id, "division by zero")],
        )

    effects.snapshots = SimpleNamespace(generate=generate)

    result = await service.close_year(db_session, tenant.id, school.year.id, effects)

    assert result.academic_year.status == "CLOSED"
    assert result.historical_records_generated == 2
    assert [w.name for w in result.warnings] == ["historical_snapshot"]
    assert result.warnings[0].reason == "1 students missing historical records"
    assert result.warnings[0].details == {str(broken.student.id): "division by zero"}

    await dispatcher.drain()
    close_entry = (
        await db_session.execute(
            select(AuditLog).where(AuditLog.entity_id == school.year.id, AuditLog.action == "CLOSE")
        )
    ).scalar_one()
    assert close_entry.after_data["historical_errors"] == [
        {"enrollment_id": str(broken.enrollment.id), "student_id": str(broken.student.id), "reason": "division by zero"}
    ]


@pytest.mark.asyncio
async def test_snapshot_failure_is_reported_not_raised(db_session, effects, builder, tenant) -> None:
    school = await _secondary_school(builder, tenant, students=2, failing=0)
    for item in school.enrolled:
        await builder.add(
            HistoricalRecord(
                tenant_id=tenant.id,
                academic_year_id=school.year.id,
                enrollment_id=item.enrollment.id,
                student_id=item.student.id,
                snapshot_key=SNAPSHOT_KEY,
                subjects=[],
                outcome="PENDING",
            )
        )

    result = await service.close_year(db_session, tenant.id, school.year.id, effects)

    assert result.academic_year.status == "CLOSED"
    assert result.historical_records_generated == 0
    assert [w.name for w in result.warnings] == ["historical_snapshot"]
    assert result.progression.updated == 2


@pytest.mark.asyncio
async def test_legacy_enrollments_linked_by_year_number_are_included(db_session, effects, builder, tenant) -> None:
    school = await _secondary_school(builder, tenant, students=2, failing=0)
    legacy = await builder.student(tenant.id, "Legacy")
    await builder.enrollment(tenant.id, legacy.id, school.year, level_label="10th Grade", legacy=True)

    result = await service.close_year(db_session, tenant.id, school.year.id, effects)

    assert result.progression.updated == 3
    assert result.historical_records_generated == 3
    row = (
        await db_session.execute(select(AnnualEnrollment).where(AnnualEnrollment.student_id == legacy.id))
    ).scalar_one()
    assert row.final_status == "PENDING"
    assert row.suggested_next_level == "10th Grade"


@pytest.mark.asyncio
async def test_close_higher_education_year(db_session, effects, dispatcher, builder) -> None:
    university = await builder.tenant("HIGHER_EDUCATION")
    year = await builder.year(university.id, 2024, status="ACTIVE")
    for ordinal in (1, 2):
        await builder.sub_period(university.id, year, "SEMESTER", ordinal, status="CLOSED")
    first_year = await builder.school_class(university.id, "1st Year")
    plan = await builder.plan(university.id, year, first_year.id, "Calculus")
    coursework = await builder.evaluation(university.id, plan, sub_period_ordinal=2)
    final_exam = await builder.evaluation(university.id, plan, kind="FINAL_EXAM", sub_period_ordinal=2)

    enrollments = {}
    for i, score in enumerate((8.0, 13.0, 16.0)):
        student = await builder.student(university.id, f"Undergrad {i}")
        enrollments[student.id] = await builder.enrollment(
            university.id, student.id, year, class_id=first_year.id, level_label="1st Year"
        )
        await builder.grade(university.id, coursework, student.id, score)
        await builder.grade(university.id, final_exam, student.id, score)

    result = await service.close_year(db_session, university.id, year.id, effects)

    assert result.academic_year.status == "CLOSED"
    assert result.historical_records_generated == len(enrollments)
    assert result.historical_errors == []
    assert result.progression.updated == len(enrollments)
    assert result.warnings == []

    rows = (
        await db_session.execute(select(AnnualEnrollment).where(AnnualEnrollment.tenant_id == university.id))
    ).scalars().all()
    assert len(rows) == 3
    assert all(row.final_status is not None for row in rows)
    levels = sorted((row.final_status, row.suggested_next_level) for row in rows)
    assert levels == [("FAILED", "1st Year"), ("PASSED", "2nd Year"), ("PASSED", "2nd Year")]


@pytest.mark.asyncio
async def test_unreachable_mailboxes_do_not_undo_closure(
    db_session, effects, dispatcher, channel, builder, tenant, admin
) -> None:
    others = [
        await builder.user(tenant.id, role="ADMIN", email=f"admin{i}@example.com") for i in range(4)
    ]
    channel.failing = {others[0].email, others[1].email}
    school = await _secondary_school(builder, tenant, students=2, failing=0)

    result = await service.close_year(db_session, tenant.id, school.year.id, effects, actor_id=admin.id)
    await dispatcher.drain()

    assert result.academic_year.status == "CLOSED"
    year = await db_session.get(AcademicYear, school.year.id)
    await db_session.refresh(year)
    assert year.status == "CLOSED"
    assert sorted(p.recipient_email for p in channel.sent) == sorted(
        [admin.email, others[2].email, others[3].email]
    )
