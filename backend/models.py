from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import date, datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    ROLE_USER = "user"
    ROLE_ADMIN = "admin"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

class SubscriptionState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    INACTIVE = "inactive"

class PaymentSource(str, Enum):
    WEB = "web"
    BOT = "bot"
    WEBHOOK = "webhook"
    ADMIN = "admin"

class PaymentProvider(str, Enum):
    PAYSTACK = "paystack"
    ADMIN = "admin"

class ActivityAction(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    REGISTER = "register"
    PASSWORD_CHANGE = "password_change"

class AuditAction(str, Enum):
    # Auth
    USER_REGISTERED = "USER_REGISTERED"
    USER_LOGIN_SUCCESS = "USER_LOGIN_SUCCESS"
    USER_LOGIN_FAILED = "USER_LOGIN_FAILED"
    PASSWORD_RESET = "PASSWORD_RESET"

    # Payments
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_VERIFIED = "PAYMENT_VERIFIED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
    PAYMENT_SUPERSEDED = "PAYMENT_SUPERSEDED"
    PAYMENT_REOPENED = "PAYMENT_REOPENED"

    # Subscription
    SUBSCRIPTION_SNAPSHOT_CORRECTED = "SUBSCRIPTION_SNAPSHOT_CORRECTED"
    ADMIN_SUBSCRIPTION_RENEWED = "ADMIN_SUBSCRIPTION_RENEWED"

    # Email
    EMAIL_SENT = "EMAIL_SENT"
    EMAIL_FAILED = "EMAIL_FAILED"

    # Webhooks
    WEBHOOK_REJECTED = "WEBHOOK_REJECTED"

class EmailTemplateAlias(str, Enum):
    WELCOME = "welcome"
    PAYMENT_RECEIPT = "payment-receipt"

# ============================================================================
# USERS
# ============================================================================

class SubscriptionSnapshot(BaseModel):
    """Denormalized copy of the user's current entitlement. Cache only."""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    plan: str = "none"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: SubscriptionState = SubscriptionState.INACTIVE
    reference: Optional[str] = None

class User(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    user_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    full_name: str
    username: str
    email: EmailStr
    date_of_birth: datetime
    phone_number: str
    state: str
    city: str
    password_hash: str
    terms_accepted: bool = False
    role: UserRole = UserRole.ROLE_USER
    subscription: SubscriptionSnapshot = Field(default_factory=SubscriptionSnapshot)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

# ============================================================================
# PAYMENTS
# ============================================================================

class PaymentRecord(BaseModel):
    """One row per payment attempt. ``reference`` is the idempotency key."""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    user_id: str
    reference: str
    plan: str
    amount: int
    status: PaymentStatus = PaymentStatus.PENDING
    verified: bool = False
    verification_date: Optional[datetime] = None
    subscription_start: Optional[datetime] = None
    subscription_end: Optional[datetime] = None
    payment_provider: PaymentProvider = PaymentProvider.PAYSTACK
    payment_response: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    failure_reason: Optional[str] = None
    verification_source: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class TimeRemaining(BaseModel):
    days: int
    hours: int
    minutes: int

class SubscriptionStatus(BaseModel):
    status: SubscriptionState
    plan: str = "none"
    subscription_start: Optional[datetime] = None
    subscription_end: Optional[datetime] = None
    allowed_pages: List[str] = Field(default_factory=list)
    time_remaining: Optional[TimeRemaining] = None
    reference: Optional[str] = None

class ReconciliationResult(BaseModel):
    reference: str
    status: PaymentStatus
    plan: str
    amount: int
    subscription_start: Optional[datetime] = None
    subscription_end: Optional[datetime] = None
    message: str

class InitiateResult(BaseModel):
    reference: str
    authorization_url: str
    access_code: Optional[str] = None

# ============================================================================
# ACTIVITY / AUDIT / MESSAGES
# ============================================================================

class UserActivity(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    activity_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: ActivityAction
    username: Optional[str] = None
    user_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[str] = None
    actor_id: Optional[str] = None
    user_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class MessageLog(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    postmark_message_id: Optional[str] = None
    user_id: Optional[str] = None
    recipient: EmailStr
    template_alias: EmailTemplateAlias
    subject: str
    status: str = "queued"
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    provider_error_type: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class RegisterRequest(BaseModel):
    full_name: Optional[str] = Field(default=None, alias="fullName")
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    date_of_birth: Optional[date] = Field(default=None, alias="dateOfBirth")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    state: Optional[str] = None
    city: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")
    terms_accepted: bool = Field(default=False, alias="termsAccepted")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

class LoginRequest(BaseModel):
    username: str
    password: str

class ForgotPasswordRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    date_of_birth: Optional[date] = Field(default=None, alias="dateOfBirth")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    new_password: Optional[str] = Field(default=None, alias="newPassword")
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

class UserResponse(BaseModel):
    """Safe user response (no password hash)"""
    model_config = ConfigDict(extra="ignore")

    user_id: str
    full_name: str
    username: str
    email: str
    phone_number: Optional[str] = None
    role: UserRole = UserRole.ROLE_USER
    subscription: Optional[SubscriptionSnapshot] = None
    created_at: datetime

class TokenResponse(BaseModel):
    message: str
    token: str
    token_type: str = "bearer"
    user: UserResponse

class InitializePaymentRequest(BaseModel):
    plan: str
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, alias="fullName")
    phone: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

class AdminRenewRequest(BaseModel):
    plan: str
    duration_days: Optional[float] = Field(default=None, gt=0, alias="durationDays")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

class ActivityLogRequest(BaseModel):
    action: ActivityAction
    username: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    details: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")
