"""
End-to-end tests for the phone OTP endpoints.
"""

from datetime import timedelta

import pytest

from phoneauth.core.config import settings
from phoneauth.core.dependencies import OtpThrottles, RequestThrottle
from phoneauth.core.security import create_jwt
from phoneauth.services.accounts import AccountProvisioner

BASE = "/api/v1/auth/otp"


def wrong(code: str) -> str:
    return str((int(code) + 1) % 10 ** len(code)).zfill(len(code))


class TestSendEndpoint:
    @pytest.mark.asyncio
    async def test_send_success(self, async_client, sms):
        """POST /send returns the canonical phone and delivery details"""
        response = await async_client.post(f"{BASE}/send", json={"phone": "(555) 123-4567"})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["phone"] == "+15551234567"
        assert data["expiresInSeconds"] == 600
        assert data["deliveryMethod"] == "sms"
        assert data["verificationId"]
        assert "devCode" not in data
        assert sms.sent[0][0] == "+15551234567"

    @pytest.mark.asyncio
    async def test_invalid_phone(self, async_client):
        response = await async_client.post(f"{BASE}/send", json={"phone": "12-34"})

        assert response.status_code == 400
        body = response.json()
        assert body == {"success": False, "message": "Invalid phone number format", "code": "INVALID_PHONE"}

    @pytest.mark.asyncio
    async def test_missing_phone_is_validation_error(self, async_client):
        response = await async_client.post(f"{BASE}/send", json={})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_purpose_is_validation_error(self, async_client):
        response = await async_client.post(f"{BASE}/send", json={"phone": "+15551234567", "purpose": "reset"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_resend_cooldown(self, async_client, clock):
        await async_client.post(f"{BASE}/send", json={"phone": "+15551234567"})
        clock.advance(seconds=20)

        response = await async_client.post(f"{BASE}/resend", json={"phone": "+15551234567"})

        assert response.status_code == 429
        body = response.json()
        assert body["code"] == "RATE_LIMIT"
        assert body["retryAfterSeconds"] == 40
        assert response.headers["retry-after"] == "40"

        clock.advance(seconds=40)
        response = await async_client.post(f"{BASE}/resend", json={"phone": "+15551234567"})
        assert response.status_code == 200, response.text

    @pytest.mark.asyncio
    async def test_dev_mode_returns_code(self, build_client, make_policy, sms):
        policy = make_policy(dev_mode=True, enforce_rate_limits=False)
        async with build_client(policy) as client:
            response = await client.post(f"{BASE}/send", json={"phone": "+15551234567"})
            verify = await client.post(f"{BASE}/verify", json={"phone": "+15551234567", "code": "123456"})

        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert data["devCode"] == "123456"
        assert data["deliveryMethod"] == "console"
        assert sms.sent == []
        assert verify.status_code == 200, verify.text

    @pytest.mark.asyncio
    async def test_long_formatted_phone_accepted(self, async_client):
        spaced = " - ".join("+15551234567")
        assert len(spaced) > 32

        response = await async_client.post(f"{BASE}/send", json={"phone": spaced})

        assert response.status_code == 200, response.text
        assert response.json()["data"]["phone"] == "+15551234567"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("phone", ["+1" + "2" * 40, "+1\uff15\uff15\uff15\uff11\uff12\uff13\uff14\uff15\uff16\uff17"])
    async def test_unusable_phone_is_invalid_phone(self, async_client, phone):
        response = await async_client.post(f"{BASE}/send", json={"phone": phone})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PHONE"

    @pytest.mark.asyncio
    async def test_send_requests_throttled_per_ip_and_phone(self, build_client, make_policy, clock):
        throttles = OtpThrottles(
            send=RequestThrottle(2, 300, timer=clock.timestamp),
            verify=RequestThrottle(10, 300, timer=clock.timestamp),
        )
        policy = make_policy(dev_mode=True, enforce_rate_limits=False)
        async with build_client(policy, throttles=throttles) as client:
            first = await client.post(f"{BASE}/send", json={"phone": "(555) 123-4567"})
            second = await client.post(f"{BASE}/resend", json={"phone": "+15551234567"})
            third = await client.post(f"{BASE}/send", json={"phone": "555.123.4567"})
            other_phone = await client.post(f"{BASE}/send", json={"phone": "+442071838750"})
            clock.advance(seconds=301)
            later = await client.post(f"{BASE}/resend", json={"phone": "+15551234567"})

        assert first.status_code == 200, first.text
        assert second.status_code == 200, second.text
        assert third.status_code == 429
        assert third.json() == {
            "success": False,
            "message": "Too many OTP requests. Please wait before trying again",
            "code": "RATE_LIMIT",
            "retryAfterSeconds": 300,
        }
        assert third.headers["retry-after"] == "300"
        assert other_phone.status_code == 200, other_phone.text
        assert later.status_code == 200, later.text


class TestVerifyEndpoint:
    @pytest.mark.asyncio
    async def test_registration_then_login(self, async_client, sms, clock):
        """First verification creates the account, the second signs into it"""
        phone = "+442071838750"

        await async_client.post(f"{BASE}/send", json={"phone": phone, "purpose": "REGISTRATION"})
        first = await async_client.post(f"{BASE}/verify", json={"phone": phone, "code": sms.last_code()})

        assert first.status_code == 200, first.text
        body = first.json()
        assert body["message"] == "Account created and signed in"
        data = body["data"]
        assert data["isNewUser"] is True
        assert data["user"]["phone"] == phone
        assert data["user"]["email"] == "442071838750@fixrx.app"
        assert data["user"]["phoneVerified"] is True
        assert data["accessToken"] and data["refreshToken"] and data["sessionToken"]
        assert data["expiresInSeconds"] == 900

        clock.advance(minutes=2)
        await async_client.post(f"{BASE}/send", json={"phone": phone})
        second = await async_client.post(f"{BASE}/verify", json={"phone": phone, "code": sms.last_code()})

        assert second.status_code == 200, second.text
        assert second.json()["message"] == "Signed in"
        assert second.json()["data"]["isNewUser"] is False
        assert second.json()["data"]["user"]["id"] == data["user"]["id"]

    @pytest.mark.asyncio
    async def test_wrong_codes_block_user(self, async_client, sms, clock, create_user):
        phone = "+15551234567"
        await create_user(phone)
        await async_client.post(f"{BASE}/send", json={"phone": phone})
        bad = wrong(sms.last_code())

        for remaining in (4, 3, 2, 1):
            response = await async_client.post(f"{BASE}/verify", json={"phone": phone, "code": bad})
            assert response.status_code == 400
            assert response.json()["code"] == "INVALID_CODE"
            assert response.json()["attemptsRemaining"] == remaining

        response = await async_client.post(f"{BASE}/verify", json={"phone": phone, "code": bad})
        assert response.status_code == 429
        assert response.json()["code"] == "TOO_MANY_ATTEMPTS"
        assert response.json()["retryAfterSeconds"] == 900

        clock.advance(minutes=2)
        response = await async_client.post(f"{BASE}/resend", json={"phone": phone})
        assert response.status_code == 429
        assert response.json()["code"] == "TOO_MANY_ATTEMPTS"
        assert 1 <= response.json()["retryAfterSeconds"] <= 900

    @pytest.mark.asyncio
    async def test_expired_code(self, build_client, make_policy, sms, clock):
        async with build_client(make_policy(expiry=timedelta(seconds=1))) as client:
            await client.post(f"{BASE}/send", json={"phone": "+15551234567"})
            clock.advance(seconds=2)
            response = await client.post(f"{BASE}/verify", json={"phone": "+15551234567", "code": sms.last_code()})
            again = await client.post(f"{BASE}/verify", json={"phone": "+15551234567", "code": sms.last_code()})

        assert response.status_code == 400
        assert response.json()["code"] == "OTP_EXPIRED"
        assert again.status_code == 400
        assert again.json()["code"] == "VERIFICATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_no_pending_code(self, async_client):
        response = await async_client.post(f"{BASE}/verify", json={"phone": "+15551234567", "code": "000000"})

        assert response.status_code == 400
        assert response.json()["code"] == "VERIFICATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_provisioning_failure(self, async_client, sms, monkeypatch):
        async def boom(self, *args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(AccountProvisioner, "provision", boom)
        await async_client.post(f"{BASE}/send", json={"phone": "+15551234567"})

        response = await async_client.post(f"{BASE}/verify", json={"phone": "+15551234567", "code": sms.last_code()})

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "SERVER_ERROR"
        assert "database unavailable" not in body["message"]

    @pytest.mark.asyncio
    async def test_verify_requests_throttled(self, build_client, clock):
        throttles = OtpThrottles(
            send=RequestThrottle(10, 300, timer=clock.timestamp),
            verify=RequestThrottle(3, 300, timer=clock.timestamp),
        )
        async with build_client(throttles=throttles) as client:
            answers = [
                await client.post(f"{BASE}/verify", json={"phone": "+15551234567", "code": "000000"}) for _ in range(4)
            ]
            other_phone = await client.post(f"{BASE}/verify", json={"phone": "+442071838750", "code": "000000"})

        assert [r.json()["code"] for r in answers[:3]] == ["VERIFICATION_NOT_FOUND"] * 3
        assert answers[3].status_code == 429
        assert answers[3].json()["code"] == "TOO_MANY_ATTEMPTS"
        assert answers[3].json()["message"] == "Too many verification attempts. Please try again later"
        assert answers[3].headers["retry-after"] == "300"
        assert other_phone.status_code == 400
        assert other_phone.json()["code"] == "VERIFICATION_NOT_FOUND"


class TestRefreshEndpoint:
    @pytest.mark.asyncio
    async def test_refresh(self, async_client, sms, clock):
        await async_client.post(f"{BASE}/send", json={"phone": "+15551234567"})
        login = await async_client.post(f"{BASE}/verify", json={"phone": "+15551234567", "code": sms.last_code()})
        refresh_token = login.json()["data"]["refreshToken"]

        clock.advance(minutes=1)
        response = await async_client.post(f"{BASE}/refresh", json={"refreshToken": refresh_token})

        assert response.status_code == 200, response.text
        assert response.json()["data"]["accessToken"]
        assert response.json()["data"]["expiresInSeconds"] == 900

    @pytest.mark.asyncio
    async def test_invalid_refresh(self, async_client):
        response = await async_client.post(f"{BASE}/refresh", json={"refreshToken": "garbage"})

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_REFRESH_TOKEN"

    @pytest.mark.asyncio
    async def test_refresh_token_without_numeric_subject(self, async_client):
        token = create_jwt(
            "abc",
            "refresh",
            secret_key=settings.refresh_secret_key,
            algorithm=settings.JWT_ALGORITHM,
            expires_delta=timedelta(days=1),
        )

        response = await async_client.post(f"{BASE}/refresh", json={"refreshToken": token})

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_REFRESH_TOKEN"


class TestHealthEndpoints:
    @pytest.mark.asyncio
    async def test_otp_health(self, async_client):
        response = await async_client.get(f"{BASE}/health")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "ok"
        assert data["devMode"] is False
        assert data["deliveryProvider"] == "recording"
        assert data["codeLength"] == 6
        assert data["expiryMinutes"] == 10

    @pytest.mark.asyncio
    async def test_app_health_and_request_id(self, async_client):
        response = await async_client.get("/health", headers={"x-request-id": "req-123"})

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.headers["x-request-id"] == "req-123"

    @pytest.mark.asyncio
    async def test_metrics(self, async_client):
        await async_client.post(f"{BASE}/send", json={"phone": "+15551234567"})
        response = await async_client.get("/metrics")

        assert response.status_code == 200
        assert "phoneauth_otp_sent_total" in response.text

    @pytest.mark.asyncio
    async def test_unknown_route_uses_envelope(self, async_client):
        response = await async_client.get("/nope")

        assert response.status_code == 404
        assert response.json()["success"] is False
