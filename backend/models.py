from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime, date, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    ROLE_OWNER = "ROLE_OWNER"  # Platform owner, manages the plan catalogue
    ROLE_ADMIN = "ROLE_ADMIN"
    ROLE_MEMBER = "ROLE_MEMBER"  # Regular user inside a tenant account

class AccountSubscriptionStatus(str, Enum):
    TRIAL = "trial"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

class ContractStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    OVERDUE = "overdue"

class EntryType(str, Enum):
    RECEIVABLE = "receivable"
    PAYABLE = "payable"

class EntryStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    PAID = "paid"
    CANCELLED = "cancelled"

class FinancialStatus(str, Enum):
    UP_TO_DATE = "UP_TO_DATE"
    LATE = "LATE"  # 1-30 days overdue
    DELINQUENT = "DELINQUENT"  # more than 30 days overdue
    NO_DATA = "NO_DATA"

class ResourceType(str, Enum):
    CLIENTS = "clients"
    USERS = "users"
    EVENTS = "events"
    PRODUCTS = "products"
    FORMS = "forms"
    AI_ANALYSES = "ai_analyses"

class LimitAlertLevel(str, Enum):
    NONE = "NONE"
    NEAR_LIMIT = "NEAR_LIMIT"
    AT_LIMIT = "AT_LIMIT"

class NotificationType(str, Enum):
    CONTRACT_EXPIRY_URGENT = "contract_expiry_urgent"  # 30 days or less
    CONTRACT_EXPIRY_WARNING = "contract_expiry_warning"

class AuditAction(str, Enum):
    # Gating
    PLAN_LIMIT_DENIED = "PLAN_LIMIT_DENIED"
    FEATURE_DENIED = "FEATURE_DENIED"
    ACCESS_DENIED = "ACCESS_DENIED"

    # Account lifecycle
    TRIAL_STARTED = "TRIAL_STARTED"

    # Plan catalogue
    PLAN_CREATED = "PLAN_CREATED"
    PLAN_UPDATED = "PLAN_UPDATED"
    PLAN_DEACTIVATED = "PLAN_DEACTIVATED"

    # Payment provider
    PAYMENT_WEBHOOK_RECEIVED = "PAYMENT_WEBHOOK_RECEIVED"
    SUBSCRIPTION_PAYMENT_UPDATED = "SUBSCRIPTION_PAYMENT_UPDATED"
    CONTRACT_PAYMENT_UPDATED = "CONTRACT_PAYMENT_UPDATED"

    # Clients
    CLIENT_CREATED = "CLIENT_CREATED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

# ============================================================================
# CORE MODELS
# ============================================================================

class Account(BaseModel):
    """Tenant account; owns every other record."""
    model_config = ConfigDict(extra="ignore")

    account_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    email: Optional[EmailStr] = None
    plan_id: Optional[str] = None
    subscription_status: Optional[str] = AccountSubscriptionStatus.TRIAL.value
    trial_ends_at: Optional[datetime] = None
    payment_method_configured: bool = False
    asaas_customer_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

class SubscriptionPlan(BaseModel):
    """Plan catalogue entry. Missing limits fall back to the trial defaults."""
    model_config = ConfigDict(extra="ignore")

    plan_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: Optional[str] = None
    price: float = 0.0
    billing_period: BillingPeriod = BillingPeriod.MONTHLY
    plan_type: str = "standard"
    trial_days: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True

    max_clients: Optional[int] = Field(default=None, ge=0)
    max_users: Optional[int] = Field(default=None, ge=0)
    max_events: Optional[int] = Field(default=None, ge=0)
    max_products: Optional[int] = Field(default=None, ge=0)
    max_forms: Optional[int] = Field(default=None, ge=0)
    max_ai_analyses: Optional[int] = Field(default=None, ge=0)
    max_storage_mb: Optional[int] = Field(default=None, ge=0)
    max_whatsapp_connections: Optional[int] = Field(default=None, ge=0)

    features: Dict[str, bool] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

class SubscriptionPlanUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    billing_period: Optional[BillingPeriod] = None
    plan_type: Optional[str] = None
    trial_days: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    max_clients: Optional[int] = Field(default=None, ge=0)
    max_users: Optional[int] = Field(default=None, ge=0)
    max_events: Optional[int] = Field(default=None, ge=0)
    max_products: Optional[int] = Field(default=None, ge=0)
    max_forms: Optional[int] = Field(default=None, ge=0)
    max_ai_analyses: Optional[int] = Field(default=None, ge=0)
    max_storage_mb: Optional[int] = Field(default=None, ge=0)
    max_whatsapp_connections: Optional[int] = Field(default=None, ge=0)
    features: Optional[Dict[str, bool]] = None

class Client(BaseModel):
    model_config = ConfigDict(extra="ignore")

    client_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None
    financial_status: Optional[FinancialStatus] = None
    financial_status_updated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

class ClientCreate(BaseModel):
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None

class FinancialEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    client_id: Optional[str] = None
    entry_type: EntryType
    status: EntryStatus = EntryStatus.PENDING
    amount: float = 0.0
    due_date: date
    description: Optional[str] = None

class ClientContract(BaseModel):
    model_config = ConfigDict(extra="ignore")

    contract_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    client_id: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: ContractStatus = ContractStatus.PENDING
    value: Optional[float] = None

class Notification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    notification_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    user_id: str
    title: str
    content: str
    type: NotificationType
    link: Optional[str] = None
    source_type: Optional[str] = None
    source_id: Optional[str] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

class ClientSubscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    client_id: str
    product_name: str
    amount: float = 0.0
    currency: str = "BRL"
    billing_period: BillingPeriod = BillingPeriod.MONTHLY
    payment_status: PaymentStatus = PaymentStatus.PENDING
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    next_billing_date: Optional[date] = None

# ============================================================================
# COMPUTED RESULTS
# ============================================================================

class FinancialStatusSummary(BaseModel):
    status: FinancialStatus
    overdue_count: int = 0
    overdue_amount: float = 0.0
    max_days_overdue: int = 0

class ContractTimeline(BaseModel):
    start: date
    end: date
    total_days: int
    elapsed_days: int
    remaining_days: int
    progress: float
    is_expired: bool
    is_near_end: bool
    is_active: bool
    remaining_text: str

class SubscriptionAccess(BaseModel):
    has_access: bool
    is_trial_expired: bool = False
    trial_ends_at: Optional[datetime] = None
    subscription_status: Optional[str] = None
    days_remaining: Optional[int] = None
    payment_method_configured: bool = False

class PlanBadge(BaseModel):
    plan_name: Optional[str] = None
    subscription_status: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    is_trialing: bool = False
    is_active: bool = False
    is_expiring: bool = False

class PlanLimitValues(BaseModel):
    max_clients: int
    max_users: int
    max_events: int
    max_products: int
    max_forms: int
    max_ai_analyses: int
    max_storage_mb: int

class PlanUsage(BaseModel):
    clients: int = 0
    users: int = 0
    events: int = 0
    products: int = 0
    forms: int = 0
    ai_analyses: int = 0

class LimitAlert(BaseModel):
    resource: ResourceType
    level: LimitAlertLevel
    usage: int
    limit: int
    remaining: int
    percentage: int
    message: Optional[str] = None

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_id: Optional[str] = None
    account_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    changes: Optional[Dict[str, Any]] = None  # field -> {"from", "to"}
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)

class ClientIdList(BaseModel):
    client_ids: List[str] = Field(default_factory=list, max_length=500)

class StartTrialRequest(BaseModel):
    plan_id: Optional[str] = None
