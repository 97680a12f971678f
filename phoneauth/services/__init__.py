from phoneauth.services.otp_service import ClientContext, OtpService, SendOutcome, VerifyOutcome

__all__ = ["ClientContext", "OtpService", "SendOutcome", "VerifyOutcome"]
