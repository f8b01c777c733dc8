"""Account service - registration, login, profile and password recovery.

Password recovery matches non-secret identity fields (username, email,
phone number, date of birth); there is no email round trip.
"""
import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from auth import create_session_token, hash_password, validate_password_strength, verify_password
from database import database
from models import (
    ActivityAction,
    AuditAction,
    ForgotPasswordRequest,
    RegisterRequest,
    User,
    UserResponse,
    UserRole,
)
from services.activity_service import activity_service
from services.errors import InvalidCredentials, NotFound, ValidationFailed
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

REGISTER_REQUIRED_FIELDS = (
    "full_name", "username", "email", "date_of_birth", "phone_number",
    "state", "city", "password", "confirm_password",
)
FORGOT_PASSWORD_REQUIRED_FIELDS = (
    "username", "email", "date_of_birth", "phone_number", "new_password", "confirm_password",
)


def _missing(data, fields) -> List[str]:
    missing = []
    for name in fields:
        value = getattr(data, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def _as_datetime(value: date) -> datetime:
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


class AuthService:

    def _get_db(self):
        return database.get_db()

    async def register(
        self,
        data: RegisterRequest,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[str, UserResponse]:
        missing = _missing(data, REGISTER_REQUIRED_FIELDS)
        if missing:
            raise ValidationFailed("All fields are required", missing=missing)
        if data.password != data.confirm_password:
            raise ValidationFailed("Passwords do not match")
        ok, message = validate_password_strength(data.password)
        if not ok:
            raise ValidationFailed(message)
        if not data.terms_accepted:
            raise ValidationFailed("You must accept the terms and conditions")

        db = self._get_db()
        email = data.email.lower()
        username = data.username.strip()

        existing = await db.users.find_one(
            {"$or": [{"email": email}, {"username": username}]},
            {"_id": 0, "user_id": 1},
        )
        if existing:
            raise ValidationFailed("User with this email or username already exists")

        user = User(
            full_name=data.full_name.strip(),
            username=username,
            email=email,
            date_of_birth=_as_datetime(data.date_of_birth),
            phone_number=data.phone_number.strip(),
            state=data.state.strip(),
            city=data.city.strip(),
            password_hash=hash_password(data.password),
            terms_accepted=True,
        )
        doc = user.model_dump()
        try:
            await db.users.insert_one(dict(doc))
        except DuplicateKeyError:
            # Lost a race with a concurrent registration
            raise ValidationFailed("User with this email or username already exists")

        logger.info(f"User registered: {user.username} ({user.user_id})")
        await activity_service.log_activity(
            ActivityAction.REGISTER, username=user.username, user_id=user.user_id,
            ip=ip, user_agent=user_agent,
        )
        await create_audit_log(
            action=AuditAction.USER_REGISTERED,
            actor_role=UserRole.ROLE_USER,
            actor_id=user.user_id,
            user_id=user.user_id,
            ip_address=ip,
        )

        # Welcome email is best effort and must not delay or fail registration
        from services.email_service import email_service
        asyncio.create_task(email_service.send_welcome_email(doc))

        return create_session_token(doc), UserResponse(**doc)

    async def login(
        self,
        username: str,
        password: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[str, UserResponse]:
        db = self._get_db()
        user = await db.users.find_one({"username": username.strip()}, {"_id": 0})

        if not user or not verify_password(password, user.get("password_hash")):
            await create_audit_log(
                action=AuditAction.USER_LOGIN_FAILED,
                actor_id=user["user_id"] if user else None,
                metadata={"username": username, "reason": "invalid_password" if user else "user_not_found"},
                ip_address=ip,
            )
            raise InvalidCredentials("Invalid username or password")

        await activity_service.log_activity(
            ActivityAction.LOGIN, username=user["username"], user_id=user["user_id"],
            ip=ip, user_agent=user_agent,
        )
        await create_audit_log(
            action=AuditAction.USER_LOGIN_SUCCESS,
            actor_role=user.get("role"),
            actor_id=user["user_id"],
            user_id=user["user_id"],
            ip_address=ip,
        )
        return create_session_token(user), UserResponse(**user)

    async def logout(self, user: Dict[str, Any], ip: Optional[str] = None, user_agent: Optional[str] = None):
        await activity_service.log_activity(
            ActivityAction.LOGOUT, username=user.get("username"), user_id=user.get("user_id"),
            ip=ip, user_agent=user_agent,
        )

    async def get_profile(self, user_id: str) -> UserResponse:
        db = self._get_db()
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "password_hash": 0})
        if not user:
            raise NotFound("User not found")
        return UserResponse(**user)

    async def forgot_password(
        self,
        data: ForgotPasswordRequest,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ):
        missing = _missing(data, FORGOT_PASSWORD_REQUIRED_FIELDS)
        if missing:
            raise ValidationFailed("All fields are required", missing=missing)
        if data.new_password != data.confirm_password:
            raise ValidationFailed("Passwords do not match")
        ok, message = validate_password_strength(data.new_password)
        if not ok:
            raise ValidationFailed(message)

        db = self._get_db()
        user = await db.users.find_one(
            {
                "username": data.username.strip(),
                "email": data.email.lower(),
                "phone_number": data.phone_number.strip(),
            },
            {"_id": 0},
        )
        dob = user.get("date_of_birth") if user else None
        if not user or not isinstance(dob, datetime) or dob.date() != data.date_of_birth:
            raise NotFound("No account matches the details provided")

        now = datetime.now(timezone.utc)
        await db.users.update_one(
            {"user_id": user["user_id"]},
            {"$set": {"password_hash": hash_password(data.new_password), "updated_at": now}},
        )
        logger.info(f"Password reset for user {user['user_id']}")
        await activity_service.log_activity(
            ActivityAction.PASSWORD_CHANGE, username=user["username"], user_id=user["user_id"],
            ip=ip, user_agent=user_agent, details="Password reset via identity check",
        )
        await create_audit_log(
            action=AuditAction.PASSWORD_RESET,
            actor_id=user["user_id"],
            user_id=user["user_id"],
            ip_address=ip,
        )

    async def list_users(self, limit: int = 500) -> List[UserResponse]:
        db = self._get_db()
        cursor = db.users.find({}, {"_id": 0, "password_hash": 0}).sort("created_at", -1).limit(limit)
        return [UserResponse(**u) for u in await cursor.to_list(length=limit)]


auth_service = AuthService()
