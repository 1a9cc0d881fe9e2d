"""
User-level identity operations: creation, password rules, sign-in with
lockout and two-factor, emailed codes, authenticator key and recovery codes.

All functions take the request's SQLAlchemy session and commit their own
changes.
"""
import logging
import secrets
from datetime import timedelta
from typing import List, Optional

import pyotp
from sqlalchemy.orm import Session

from .auth import create_purpose_token, hash_password, verify_password, verify_purpose_token
from .config import settings
from .errors import IdentityError, IdentityResultError, SignInFailed
from .models import Role, User, UserClaim, UserToken, new_stamp, utcnow

logger = logging.getLogger(__name__)

EMAIL_CONFIRMATION_PURPOSE = "EmailConfirmation"
RESET_PASSWORD_PURPOSE = "ResetPassword"

TOKEN_STORE_PROVIDER = "[IdentityStore]"
AUTHENTICATOR_KEY_NAME = "AuthenticatorKey"
RECOVERY_CODES_NAME = "RecoveryCodes"

RECOVERY_CODE_ALPHABET = "23456789BCDFGHJKMNPQRTVWXY"


def normalize(value: Optional[str]) -> Optional[str]:
    return value.upper() if value is not None else None


def change_email_purpose(new_email: str) -> str:
    return f"ChangeEmail:{new_email}"


def find_by_email(db: Session, email: Optional[str]) -> Optional[User]:
    if not email:
        return None
    return db.query(User).filter(User.normalized_email == normalize(email)).first()


def find_by_name(db: Session, user_name: str) -> Optional[User]:
    return db.query(User).filter(User.normalized_user_name == normalize(user_name)).first()


def find_by_id(db: Session, user_id: str) -> Optional[User]:
    return db.get(User, user_id)


# ---------------- Validation ----------------

def is_valid_email(email: Optional[str]) -> bool:
    """Exactly one '@' that is neither the first nor the last character."""
    if not email:
        return False
    index = email.find("@")
    return 0 < index < len(email) - 1 and email.find("@", index + 1) == -1


def validate_email(email: str) -> List[IdentityError]:
    if not is_valid_email(email):
        return [IdentityError("InvalidEmail", f"Email '{email}' is invalid.")]
    return []


def _is_ascii_alphanumeric(c: str) -> bool:
    return "a" <= c <= "z" or "A" <= c <= "Z" or "0" <= c <= "9"


def validate_password(password: str) -> List[IdentityError]:
    errors = []
    password = password or ""
    if len(password) < settings.PASSWORD_REQUIRED_LENGTH:
        errors.append(IdentityError(
            "PasswordTooShort",
            f"Passwords must be at least {settings.PASSWORD_REQUIRED_LENGTH} characters."
        ))
    if settings.PASSWORD_REQUIRE_NON_ALPHANUMERIC and all(_is_ascii_alphanumeric(c) for c in password):
        errors.append(IdentityError(
            "PasswordRequiresNonAlphanumeric",
            "Passwords must have at least one non alphanumeric character."
        ))
    if settings.PASSWORD_REQUIRE_DIGIT and not any("0" <= c <= "9" for c in password):
        errors.append(IdentityError(
            "PasswordRequiresDigit",
            "Passwords must have at least one digit ('0'-'9')."
        ))
    if settings.PASSWORD_REQUIRE_LOWERCASE and not any("a" <= c <= "z" for c in password):
        errors.append(IdentityError(
            "PasswordRequiresLower",
            "Passwords must have at least one lowercase ('a'-'z')."
        ))
    if settings.PASSWORD_REQUIRE_UPPERCASE and not any("A" <= c <= "Z" for c in password):
        errors.append(IdentityError(
            "PasswordRequiresUpper",
            "Passwords must have at least one uppercase ('A'-'Z')."
        ))
    if settings.PASSWORD_REQUIRED_UNIQUE_CHARS >= 1 and len(set(password)) < settings.PASSWORD_REQUIRED_UNIQUE_CHARS:
        errors.append(IdentityError(
            "PasswordRequiresUniqueChars",
            f"Passwords must use at least {settings.PASSWORD_REQUIRED_UNIQUE_CHARS} different characters."
        ))
    return errors


def _duplicate_errors(db: Session, email: str, exclude: Optional[User] = None) -> List[IdentityError]:
    existing = find_by_name(db, email)
    if existing is not None and existing is not exclude:
        return [IdentityError("DuplicateUserName", f"Username '{email}' is already taken.")]
    return []


# ---------------- Users ----------------

def create_user(db: Session, email: str, password: str) -> User:
    """
    Create a user whose user name is the email address.

    Raises:
        IdentityResultError: invalid email, duplicate user name, or a
            password that breaks the configured rules
    """
    errors = validate_email(email)
    if not errors:
        errors += _duplicate_errors(db, email)
    errors += validate_password(password)
    if errors:
        raise IdentityResultError(errors)

    user = User(
        user_name=email,
        normalized_user_name=normalize(email),
        email=email,
        normalized_email=normalize(email),
        password_hash=hash_password(password),
        security_stamp=new_stamp(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Created user: user_id=%s, username=%s", user.id, user.user_name)
    return user


def update_security_stamp(user: User) -> None:
    user.security_stamp = new_stamp()


def revoke_refresh_tokens(user: User) -> None:
    user.refresh_stamp = new_stamp()


def add_to_role(db: Session, user: User, role_name: str) -> Role:
    role = db.query(Role).filter(Role.normalized_name == normalize(role_name)).first()
    if role is None:
        role = Role(name=role_name, normalized_name=normalize(role_name))
        db.add(role)
    if role not in user.roles:
        user.roles.append(role)
    db.commit()
    return role


def add_claim(db: Session, user: User, claim_type: str, claim_value: str) -> None:
    user.claims.append(UserClaim(claim_type=claim_type, claim_value=claim_value))
    db.commit()


# ---------------- Lockout ----------------

def is_locked_out(user: User) -> bool:
    return bool(user.lockout_enabled and user.lockout_end and user.lockout_end > utcnow())


def access_failed(db: Session, user: User) -> None:
    """Count a failed access; lock the account once the limit is reached."""
    user.access_failed_count = (user.access_failed_count or 0) + 1
    if user.lockout_enabled and user.access_failed_count >= settings.LOCKOUT_MAX_FAILED_ACCESS_ATTEMPTS:
        user.lockout_end = utcnow() + timedelta(minutes=settings.LOCKOUT_DEFAULT_MINUTES)
        user.access_failed_count = 0
        logger.warning("User locked out: user_id=%s, until=%s", user.id, user.lockout_end.isoformat())
    db.commit()


def reset_access_failed(db: Session, user: User) -> None:
    if user.access_failed_count:
        user.access_failed_count = 0
        db.commit()


def _reject(db: Session, user: User) -> SignInFailed:
    access_failed(db, user)
    return SignInFailed("LockedOut" if is_locked_out(user) else "Failed")


def password_sign_in(
    db: Session,
    email: str,
    password: str,
    two_factor_code: Optional[str] = None,
    recovery_code: Optional[str] = None,
) -> User:
    """
    Check credentials and, when enabled, the second factor.

    Returns:
        The signed-in user

    Raises:
        SignInFailed: with reason Failed, NotAllowed, LockedOut or
            RequiresTwoFactor
    """
    user = find_by_email(db, email)
    if user is None:
        raise SignInFailed("Failed")
    if settings.REQUIRE_CONFIRMED_EMAIL and not user.email_confirmed:
        raise SignInFailed("NotAllowed")
    if is_locked_out(user):
        raise SignInFailed("LockedOut")

    if not verify_password(password, user.password_hash):
        raise _reject(db, user)

    if user.two_factor_enabled:
        if two_factor_code:
            valid = verify_two_factor_code(user, two_factor_code)
        elif recovery_code:
            valid = redeem_recovery_code(db, user, recovery_code)
        else:
            raise SignInFailed("RequiresTwoFactor")
        if not valid:
            raise _reject(db, user)

    reset_access_failed(db, user)
    return user


def validate_refresh_token(db: Session, data: dict) -> Optional[User]:
    """
    User for a decoded refresh token, or None once a credential change
    (security stamp) or a logout (refresh stamp) has revoked it.
    """
    user = find_by_id(db, data["sub"])
    if user is None:
        return None
    if not data.get("stamp") or data["stamp"] != user.security_stamp:
        return None
    if not data.get("rstamp") or data["rstamp"] != user.refresh_stamp:
        return None
    return user


# ---------------- Emailed codes ----------------

def generate_email_confirmation_token(user: User) -> str:
    return create_purpose_token(user, EMAIL_CONFIRMATION_PURPOSE)


def generate_change_email_token(user: User, new_email: str) -> str:
    return create_purpose_token(user, change_email_purpose(new_email))


def generate_password_reset_token(user: User) -> str:
    return create_purpose_token(user, RESET_PASSWORD_PURPOSE)


def _invalid_token() -> IdentityResultError:
    return IdentityResultError.single("InvalidToken", "Invalid token.")


def confirm_email(db: Session, user: User, code: str) -> None:
    if not verify_purpose_token(user, EMAIL_CONFIRMATION_PURPOSE, code):
        raise _invalid_token()
    user.email_confirmed = True
    db.commit()


def change_email(db: Session, user: User, new_email: str, code: str) -> None:
    """Apply a confirmed email change; the user name follows the email."""
    if not verify_purpose_token(user, change_email_purpose(new_email), code):
        raise _invalid_token()
    errors = validate_email(new_email) or _duplicate_errors(db, new_email, exclude=user)
    if errors:
        raise IdentityResultError(errors)
    user.email = new_email
    user.normalized_email = normalize(new_email)
    user.email_confirmed = True
    user.user_name = new_email
    user.normalized_user_name = normalize(new_email)
    update_security_stamp(user)
    db.commit()


def reset_password(db: Session, user: User, code: str, new_password: str) -> None:
    if not verify_purpose_token(user, RESET_PASSWORD_PURPOSE, code):
        raise _invalid_token()
    _set_password(db, user, new_password)


def change_password(db: Session, user: User, old_password: str, new_password: str) -> None:
    if not verify_password(old_password, user.password_hash):
        raise IdentityResultError.single("PasswordMismatch", "Incorrect password.")
    _set_password(db, user, new_password)


def _set_password(db: Session, user: User, new_password: str) -> None:
    errors = validate_password(new_password)
    if errors:
        raise IdentityResultError(errors)
    user.password_hash = hash_password(new_password)
    update_security_stamp(user)
    db.commit()


# ---------------- Two-factor ----------------

def _get_token(user: User, name: str) -> Optional[UserToken]:
    for token in user.tokens:
        if token.login_provider == TOKEN_STORE_PROVIDER and token.name == name:
            return token
    return None


def _set_token(user: User, name: str, value: str) -> None:
    token = _get_token(user, name)
    if token is None:
        user.tokens.append(UserToken(login_provider=TOKEN_STORE_PROVIDER, name=name, value=value))
    else:
        token.value = value


def get_authenticator_key(user: User) -> Optional[str]:
    token = _get_token(user, AUTHENTICATOR_KEY_NAME)
    return token.value if token else None


def reset_authenticator_key(db: Session, user: User) -> str:
    key = pyotp.random_base32()
    _set_token(user, AUTHENTICATOR_KEY_NAME, key)
    update_security_stamp(user)
    db.commit()
    logger.info("Authenticator key reset: user_id=%s", user.id)
    logger.debug("otpauth URI for %s: %s", user.email, authenticator_uri(user))
    return key


def authenticator_uri(user: User) -> Optional[str]:
    key = get_authenticator_key(user)
    if not key:
        return None
    return pyotp.TOTP(key).provisioning_uri(name=user.email, issuer_name=settings.TOTP_ISSUER)


def verify_two_factor_code(user: User, code: str) -> bool:
    key = get_authenticator_key(user)
    if not key or not code:
        return False
    code = code.replace(" ", "").replace("-", "")
    # One 30-second step of tolerance on either side
    return pyotp.TOTP(key).verify(code, valid_window=1)


def set_two_factor_enabled(db: Session, user: User, enabled: bool) -> None:
    user.two_factor_enabled = enabled
    update_security_stamp(user)
    db.commit()


def _recovery_codes(user: User) -> List[str]:
    token = _get_token(user, RECOVERY_CODES_NAME)
    if not token or not token.value:
        return []
    return token.value.split(";")


def count_recovery_codes(user: User) -> int:
    return len(_recovery_codes(user))


def _random_block(length: int = 5) -> str:
    return "".join(secrets.choice(RECOVERY_CODE_ALPHABET) for _ in range(length))


def _new_recovery_code() -> str:
    return f"{_random_block()}-{_random_block()}"


def generate_recovery_codes(db: Session, user: User, count: int = 10) -> List[str]:
    codes = [_new_recovery_code() for _ in range(count)]
    _set_token(user, RECOVERY_CODES_NAME, ";".join(codes))
    db.commit()
    return codes


def redeem_recovery_code(db: Session, user: User, code: str) -> bool:
    codes = _recovery_codes(user)
    code = code.strip().upper()
    if code not in codes:
        return False
    codes.remove(code)
    _set_token(user, RECOVERY_CODES_NAME, ";".join(codes))
    db.commit()
    logger.info("Recovery code redeemed: user_id=%s, remaining=%s", user.id, len(codes))
    return True
