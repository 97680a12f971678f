import pytest

from phoneauth.models import OtpPurpose
from phoneauth.services.delivery import (
    METHOD_CONSOLE,
    METHOD_FALLBACK,
    METHOD_SMS,
    DeliveryAdapter,
    render_message,
)

PHONE = "+15551234567"


class TestRenderMessage:
    def test_login_message(self, policy):
        text = render_message("123456", OtpPurpose.LOGIN, policy)
        assert "123456" in text
        assert "login" in text
        assert "10 minutes" in text

    def test_registration_message(self, make_policy):
        text = render_message("654321", OtpPurpose.REGISTRATION, make_policy())
        assert "sign-up" in text

    def test_sub_minute_expiry_rounds_up(self, make_policy):
        from datetime import timedelta

        text = render_message("1", OtpPurpose.LOGIN, make_policy(expiry=timedelta(seconds=1)))
        assert "1 minutes" in text


class TestDeliveryAdapter:
    @pytest.mark.asyncio
    async def test_live_delivery(self, sms, policy):
        adapter = DeliveryAdapter(sms, policy)
        result = await adapter.deliver(PHONE, "123456", OtpPurpose.LOGIN)

        assert result.method == METHOD_SMS
        assert result.live is True
        assert result.message_id == "msg-1"
        assert sms.sent[0][0] == PHONE
        assert sms.last_code() == "123456"

    @pytest.mark.asyncio
    async def test_dev_mode_never_calls_gateway(self, sms, make_policy):
        adapter = DeliveryAdapter(sms, make_policy(dev_mode=True))
        result = await adapter.deliver(PHONE, "123456", OtpPurpose.LOGIN)

        assert result.method == METHOD_CONSOLE
        assert result.live is False
        assert sms.sent == []
        assert adapter.provider_name == METHOD_CONSOLE

    @pytest.mark.asyncio
    async def test_rejection_falls_back(self, sms, policy):
        sms.fail_with = "invalid number"
        result = await DeliveryAdapter(sms, policy).deliver(PHONE, "123456", OtpPurpose.LOGIN)

        assert result.method == METHOD_FALLBACK
        assert result.live is False
        assert result.error == "invalid number"

    @pytest.mark.asyncio
    async def test_exception_falls_back(self, sms, policy):
        sms.raise_exc = ConnectionError("gateway down")
        result = await DeliveryAdapter(sms, policy).deliver(PHONE, "123456", OtpPurpose.LOGIN)

        assert result.method == METHOD_FALLBACK
        assert result.error == "gateway down"

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, sms, policy):
        sms.delay = 1.0
        result = await DeliveryAdapter(sms, policy, timeout=0.05).deliver(PHONE, "123456", OtpPurpose.LOGIN)

        assert result.method == METHOD_FALLBACK
        assert "timeout" in result.error

    def test_provider_name(self, sms, policy):
        assert DeliveryAdapter(sms, policy).provider_name == "recording"
