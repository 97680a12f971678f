"""Phone-number OTP login service."""

__version__ = "0.1.0"
