import asyncio
from uuid import uuid4

import pytest

from registrar.core.config import Settings
from registrar.core.dispatch import SideEffectDispatcher
from registrar.core.notifications import DeliveryStatus, EmailChannel, NotificationDispatcher, NotificationPayload


@pytest.mark.asyncio
async def test_run_returns_failure_instead_of_raising() -> None:
    dispatcher = SideEffectDispatcher(max_concurrency=2)

    async def boom():
        raise RuntimeError("smtp down")

    async def ok():
        return 42

    result, failure = await dispatcher.run("notify", boom, academic_year_id=uuid4())
    assert result is None
    assert failure.name == "notify"
    assert failure.reason == "smtp down"
    assert "academic_year_id" in failure.details

    assert await dispatcher.run("count", ok) == (42, None)


@pytest.mark.asyncio
async def test_dispatch_is_fire_and_forget() -> None:
    dispatcher = SideEffectDispatcher(max_concurrency=1)
    done = []
    release = asyncio.Event()

    async def slow(name):
        await release.wait()
        done.append(name)

    dispatcher.dispatch("a", lambda: slow("a"))
    dispatcher.dispatch("b", lambda: slow("b"))
    assert dispatcher.pending == 2
    assert done == []

    release.set()
    await dispatcher.drain()
    assert sorted(done) == ["a", "b"]
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_each_administrator_notified_independently(session_factory, channel, builder, tenant) -> None:
    emails = [f"admin{i}@example.com" for i in range(5)]
    for i, email in enumerate(emails):
        await builder.user(tenant.id, role="ADMIN" if i % 2 else "SUPER_ADMIN", email=email)
    await builder.user(tenant.id, role="ADMIN", email="gone@example.com", status="INACTIVE")
    await builder.user(tenant.id, role="TEACHER", email="teacher@example.com")
    channel.failing = {emails[1], emails[3]}

    notifier = NotificationDispatcher(session_factory, channel)
    report = await notifier.notify_year_closed(tenant.id, uuid4(), 2024, {"classes": 3})

    assert len(report.sent) == 3
    assert len(report.failed) == 2
    assert all("unreachable" in reason for reason in report.failed.values())
    assert sorted(p.recipient_email for p in channel.sent) == [emails[0], emails[2], emails[4]]
    assert "Classes: 3" in channel.sent[0].message


@pytest.mark.asyncio
async def test_email_channel_skips_when_not_configured() -> None:
    config = Settings(DATABASE_URL="sqlite+aiosqlite://", JWT_SECRET_KEY="x", SMTP_HOST=None, SMTP_FROM_EMAIL=None)
    channel = EmailChannel(config)
    payload = NotificationPayload(
        notification_type="ACADEMIC_YEAR_CLOSED",
        subject="Academic year 2024 closed",
        message="",
        recipient_id=uuid4(),
        recipient_email="a@example.com",
    )
    result = await channel.send(payload)
    assert result.status == DeliveryStatus.SKIPPED
