from phoneauth.integrations.sms_base import SmsProvider, SmsResult, get_sms_client

__all__ = ["SmsProvider", "SmsResult", "get_sms_client"]
