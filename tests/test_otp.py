"""
Tests for OTP issuance, verification and lockout.
"""
import asyncio
import json

import httpx
import pytest

from phonegate.auth.errors import (
    AuthenticationError,
    CodeDeliveryError,
    LockedError,
    OTPExpiredError,
    OTPNotFoundError,
)
from phonegate.auth import build_delivery_gateway
from phonegate.auth.delivery import CodeDeliveryGateway, DeliveryResult, HttpSmsGateway
from phonegate.auth.otp import OTPService

from conftest import PHONE, wrong_code


@pytest.fixture
def otp(store, delivery, settings, clock):
    return OTPService(store, delivery, settings=settings, clock=clock)


@pytest.mark.asyncio
async def test_issue_delivers_and_stores_code(otp, delivery):
    record = await otp.issue(PHONE)

    assert delivery.last_code(PHONE) == record.code
    assert len(record.code) == 6 and record.code.isdigit()
    assert record.attempts == 0
    stored = await otp.peek(PHONE)
    assert stored.code == record.code


@pytest.mark.asyncio
async def test_verify_is_single_use(otp):
    record = await otp.issue(PHONE)

    await otp.verify(PHONE, record.code)

    with pytest.raises(OTPNotFoundError):
        await otp.verify(PHONE, record.code)


@pytest.mark.asyncio
async def test_wrong_code_reports_remaining_attempts(otp):
    record = await otp.issue(PHONE)

    with pytest.raises(AuthenticationError) as exc_info:
        await otp.verify(PHONE, wrong_code(record.code))

    assert exc_info.value.error_code == "INVALID_OTP"
    assert exc_info.value.details["remaining_attempts"] == 4
    assert "4 attempts remaining" in exc_info.value.message


@pytest.mark.asyncio
async def test_lockout_after_max_attempts_rejects_correct_code(otp):
    record = await otp.issue(PHONE)
    bad = wrong_code(record.code)

    for _ in range(4):
        with pytest.raises(AuthenticationError):
            await otp.verify(PHONE, bad)
    with pytest.raises(LockedError):
        await otp.verify(PHONE, bad)

    with pytest.raises(LockedError) as exc_info:
        await otp.verify(PHONE, record.code)
    assert exc_info.value.details["locked"] is True
    assert exc_info.value.lockout_time_remaining > 0
    assert exc_info.value.details["remaining_attempts"] == 0


@pytest.mark.asyncio
async def test_lockout_blocks_reissue_until_it_expires(otp, clock):
    record = await otp.issue(PHONE)
    for _ in range(5):
        with pytest.raises((AuthenticationError, LockedError)):
            await otp.verify(PHONE, wrong_code(record.code))

    with pytest.raises(LockedError) as exc_info:
        await otp.issue(PHONE)
    assert "minutes and" in exc_info.value.message

    clock.advance(seconds=901)
    fresh = await otp.issue(PHONE)
    await otp.verify(PHONE, fresh.code)


@pytest.mark.asyncio
async def test_lockout_outlives_code_expiry(otp, clock):
    record = await otp.issue(PHONE)
    for _ in range(5):
        with pytest.raises((AuthenticationError, LockedError)):
            await otp.verify(PHONE, wrong_code(record.code))

    # Code expired (300s) but the 900s lockout has not
    clock.advance(seconds=400)
    with pytest.raises(LockedError):
        await otp.verify(PHONE, record.code)


@pytest.mark.asyncio
async def test_expired_code_is_purged(otp, clock):
    record = await otp.issue(PHONE)
    clock.advance(seconds=301)

    with pytest.raises(OTPExpiredError):
        await otp.verify(PHONE, record.code)
    assert await otp.peek(PHONE) is None


@pytest.mark.asyncio
async def test_resend_replaces_previous_code(otp):
    first = await otp.issue(PHONE)
    second = await otp.resend(PHONE)

    stored = await otp.peek(PHONE)
    assert stored.code == second.code
    if first.code != second.code:
        with pytest.raises(AuthenticationError):
            await otp.verify(PHONE, first.code)


@pytest.mark.asyncio
async def test_failed_delivery_stores_nothing(otp, delivery):
    delivery.fail_with = "provider down"

    with pytest.raises(CodeDeliveryError) as exc_info:
        await otp.issue(PHONE)

    assert exc_info.value.status_code == 500
    assert await otp.peek(PHONE) is None


class HangingGateway(CodeDeliveryGateway):
    async def send(self, phone, code):
        await asyncio.sleep(5)
        return DeliveryResult(success=True)


@pytest.mark.asyncio
async def test_delivery_timeout_is_a_delivery_error(store, settings, clock):
    settings.OTP_DELIVERY_TIMEOUT = 0.05
    otp = OTPService(store, HangingGateway(), settings=settings, clock=clock)

    with pytest.raises(CodeDeliveryError) as exc_info:
        await otp.issue(PHONE)

    assert exc_info.value.details["reason"] == "timeout"
    assert await otp.peek(PHONE) is None


@pytest.mark.asyncio
async def test_concurrent_wrong_guesses_each_count(otp):
    record = await otp.issue(PHONE)
    bad = wrong_code(record.code)

    async def guess():
        try:
            await otp.verify(PHONE, bad)
        except (AuthenticationError, LockedError) as e:
            return e

    results = await asyncio.gather(*(guess() for _ in range(5)))

    assert sum(isinstance(r, LockedError) for r in results) == 1
    stored = await otp.peek(PHONE)
    assert stored.attempts == 5
    assert stored.locked_until is not None


def test_sms_text_follows_configured_expiry(settings):
    settings.SMS_GATEWAY_URL = "https://sms.example.com/send"
    settings.OTP_EXPIRE_SECONDS = 600

    sms = build_delivery_gateway(settings)

    assert isinstance(sms, HttpSmsGateway)
    assert sms.message("123456") == "Your verification code is 123456. It expires in 10 minutes."
    assert HttpSmsGateway("https://sms.example.com", expires_in_seconds=90).message("1").endswith("in 90 seconds.")


@pytest.mark.asyncio
async def test_sms_gateway_posts_message_and_reports_rejection():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200 if not requests[1:] else 503)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    sms = HttpSmsGateway("https://sms.example.com/send", expires_in_seconds=300, client=client)

    assert (await sms.send(PHONE, "654321")).success
    rejected = await sms.send(PHONE, "654321")
    await sms.close()

    assert requests[0] == {
        "to": PHONE,
        "sender": "PHNGTE",
        "message": "Your verification code is 654321. It expires in 5 minutes.",
    }
    assert not rejected.success
    assert rejected.error == "provider returned 503"
