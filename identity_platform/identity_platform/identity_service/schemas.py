import datetime
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from typing import List, Optional


class CamelModel(BaseModel):
    """JSON bodies use camelCase; Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(CamelModel):
    email: str
    password: str


class LoginRequest(CamelModel):
    email: str
    password: str
    two_factor_code: Optional[str] = None
    two_factor_recovery_code: Optional[str] = None


class AccessTokenResponse(CamelModel):
    token_type: str = "Bearer"
    access_token: str
    expires_in: int
    refresh_token: str


class RefreshRequest(CamelModel):
    refresh_token: str


class ResendConfirmationEmailRequest(CamelModel):
    email: str


# Password reset
class ForgotPasswordRequest(CamelModel):
    email: str


class ResetPasswordRequest(CamelModel):
    email: str
    reset_code: str
    new_password: str


# Account management
class InfoRequest(CamelModel):
    new_email: Optional[str] = None
    new_password: Optional[str] = None
    old_password: Optional[str] = None


class InfoResponse(CamelModel):
    email: str
    is_email_confirmed: bool


class TwoFactorRequest(CamelModel):
    enable: Optional[bool] = None
    two_factor_code: Optional[str] = None
    reset_shared_key: bool = False
    reset_recovery_codes: bool = False
    forget_machine: bool = False


class TwoFactorResponse(CamelModel):
    shared_key: str
    recovery_codes_left: int
    recovery_codes: Optional[List[str]] = None
    is_two_factor_enabled: bool
    is_machine_remembered: bool


# Sample resource
class WeatherForecast(CamelModel):
    date: datetime.date
    temperature_c: int
    temperature_f: int
    summary: Optional[str] = None
