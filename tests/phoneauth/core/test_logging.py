from phoneauth.core.logging import bound_context, current_request_id, mask_phone, redact_secrets


class TestRedaction:
    def test_secret_keys_masked(self):
        data = {
            "code": "123456",
            "code_digest": "a" * 64,
            "refresh_token": "eyJhbGciOiJIUzI1NiJ9.payload.sig",
            "error_code": "INVALID_CODE",
            "phone": "+1******4567",
        }
        out = redact_secrets(data)

        assert out["code"] == "***"
        assert out["code_digest"] == "aaa***aaa"
        assert out["refresh_token"].startswith("eyJ***")
        assert out["error_code"] == "INVALID_CODE"
        assert out["phone"] == "+1******4567"

    def test_settings_dump_keeps_code_knobs_readable(self):
        out = redact_secrets(
            {
                "OTP_CODE_LENGTH": 6,
                "OTP_DEFAULT_COUNTRY_CODE": "1",
                "OTP_DEV_CODE": "123456",
                "devCode": "123456",
                "status_code": 429,
            }
        )

        assert out["OTP_CODE_LENGTH"] == 6
        assert out["OTP_DEFAULT_COUNTRY_CODE"] == "1"
        assert out["status_code"] == 429
        assert out["OTP_DEV_CODE"] == "***"
        assert out["devCode"] == "***"

    def test_nested(self):
        out = redact_secrets({"settings": {"JWT_SECRET_KEY": "abcdefghij"}, "items": [{"password": "x"}]})
        assert out["settings"]["JWT_SECRET_KEY"] == "abc***hij"
        assert out["items"][0]["password"] == "***"


class TestMaskPhone:
    def test_mask(self):
        assert mask_phone("+15551234567") == "+1******4567"
        assert mask_phone("+442071838750") == "+4*******8750"

    def test_short_and_empty(self):
        assert mask_phone("") == ""
        assert mask_phone(None) == ""
        assert mask_phone("+1234") == "***"


class TestBoundContext:
    def test_request_id_scoped(self):
        assert current_request_id() == ""
        with bound_context(request_id="abc"):
            assert current_request_id() == "abc"
        assert current_request_id() == ""
