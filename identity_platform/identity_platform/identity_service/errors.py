"""
Identity error types and their problem-details responses.
"""
from dataclasses import dataclass
from typing import Iterable, List

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

PROBLEM_JSON = "application/problem+json"


@dataclass(frozen=True)
class IdentityError:
    code: str
    description: str


class IdentityResultError(Exception):
    """Raised when an identity operation fails validation."""

    def __init__(self, errors: Iterable[IdentityError]):
        self.errors: List[IdentityError] = list(errors)
        super().__init__("; ".join(e.description for e in self.errors))

    @classmethod
    def single(cls, code: str, description: str) -> "IdentityResultError":
        return cls([IdentityError(code, description)])


class SignInFailed(Exception):
    """Raised when a sign-in attempt is rejected.

    ``reason`` is one of Failed, LockedOut, NotAllowed or RequiresTwoFactor.
    """

    def __init__(self, reason: str = "Failed"):
        self.reason = reason
        super().__init__(reason)


def validation_problem(errors: Iterable[IdentityError]) -> JSONResponse:
    grouped: dict = {}
    for error in errors:
        grouped.setdefault(error.code, []).append(error.description)
    return JSONResponse(
        status_code=400,
        media_type=PROBLEM_JSON,
        content={
            "type": "https://tools.ietf.org/html/rfc9110#section-15.5.1",
            "title": "One or more validation errors occurred.",
            "status": 400,
            "errors": grouped,
        },
    )


def unauthorized_problem(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        media_type=PROBLEM_JSON,
        content={
            "type": "https://tools.ietf.org/html/rfc9110#section-15.5.2",
            "title": "Unauthorized",
            "status": 401,
            "detail": detail,
        },
    )


async def _identity_result_handler(_request: Request, exc: IdentityResultError) -> JSONResponse:
    return validation_problem(exc.errors)


async def _sign_in_failed_handler(_request: Request, exc: SignInFailed) -> JSONResponse:
    return unauthorized_problem(exc.reason)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IdentityResultError, _identity_result_handler)
    app.add_exception_handler(SignInFailed, _sign_in_failed_handler)
