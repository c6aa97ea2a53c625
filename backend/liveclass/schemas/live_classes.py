from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SubscriptionStatus(str, Enum):
    registered = "REGISTERED"
    pending_approval = "PENDING_APPROVAL"
    active = "ACTIVE"
    rejected = "REJECTED"
    cancelled = "CANCELLED"
    expired = "EXPIRED"


class PaymentType(str, Enum):
    registration = "REGISTRATION"
    course_access = "COURSE_ACCESS"


class _PaymentProof(BaseModel):
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)


class RegisterRequest(BaseModel):
    class_id: str = Field(min_length=1)
    module_id: Optional[str] = None


class VerifyRegistrationRequest(_PaymentProof):
    class_id: str = Field(min_length=1)
    module_id: Optional[str] = None


class CourseAccessRequest(BaseModel):
    class_id: str = Field(min_length=1)


class VerifyCourseAccessRequest(_PaymentProof):
    class_id: str = Field(min_length=1)


class ToggleClassroomRequest(BaseModel):
    is_on_classroom: bool


class ToggleCourseFeeRequest(BaseModel):
    course_fee_enabled: bool


class ToggleRegistrationRequest(BaseModel):
    registration_enabled: bool


class UserIdsRequest(BaseModel):
    user_ids: List[str] = Field(min_length=1)


class ModuleInput(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class LiveClassCreate(BaseModel):
    title: str = Field(min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    thumbnail_url: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    registration_fee: Decimal = Field(default=Decimal("0"), ge=0)
    course_fee: Decimal = Field(default=Decimal("0"), ge=0)
    course_fee_enabled: bool = True
    registration_enabled: bool = True
    is_first_module_free: bool = False
    is_active: bool = True
    capacity: Optional[int] = Field(default=None, gt=0)
    modules: List[ModuleInput] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_time and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.is_first_module_free and not self.modules:
            raise ValueError("is_first_module_free requires at least one module")
        return self


class LiveClassUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    thumbnail_url: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    registration_fee: Optional[Decimal] = Field(default=None, ge=0)
    course_fee: Optional[Decimal] = Field(default=None, ge=0)
    course_fee_enabled: Optional[bool] = None
    registration_enabled: Optional[bool] = None
    is_first_module_free: Optional[bool] = None
    is_active: Optional[bool] = None
    capacity: Optional[int] = Field(default=None, gt=0)
    modules: Optional[List[ModuleInput]] = None


class PaymentOrder(BaseModel):
    order_id: str
    amount: int
    currency: str
    receipt: str
    key_id: Optional[str] = None
    payment_type: PaymentType


class MeetingDetails(BaseModel):
    link: str
    meeting_id: Optional[str] = None
    password: Optional[str] = None


class SubscriptionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    live_class_id: str
    module_id: Optional[str] = None
    status: SubscriptionStatus
    is_registered: bool
    is_approved: bool
    has_access_to_links: bool
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    next_payment_date: Optional[datetime] = None
    registration_payment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _stringify_ids(cls, data: Any):
        if isinstance(data, dict):
            data = dict(data)
            for key in ("id", "user_id", "live_class_id", "module_id"):
                if data.get(key) is not None:
                    data[key] = str(data[key])
        return data


class RegistrationResponse(BaseModel):
    already_registered: bool = False
    free_enrollment: bool = False
    order: Optional[PaymentOrder] = None
    subscription: Optional[SubscriptionRecord] = None


class CourseAccessResponse(BaseModel):
    already_has_access: bool = False
    order: Optional[PaymentOrder] = None
    subscription: Optional[SubscriptionRecord] = None


class VerifiedSubscriptionResponse(BaseModel):
    """Only carries ``meeting_details`` when the subscriber can join right now."""

    subscription: SubscriptionRecord
    can_join_class: bool = False
    meeting_details: Optional[MeetingDetails] = None


class SubscriptionStatusResponse(BaseModel):
    is_subscribed: bool
    is_registered: bool
    is_approved: bool
    has_access_to_links: bool
    can_join_class: bool
    is_on_classroom: bool
    can_register: bool
    course_fee_enabled: bool
    registration_enabled: bool
    status: Optional[SubscriptionStatus] = None
    subscription_id: Optional[str] = None
    meeting_details: Optional[MeetingDetails] = None


class BulkResultItem(BaseModel):
    user_id: str
    outcome: str
    detail: Optional[str] = None


class BulkResultResponse(BaseModel):
    processed: int
    succeeded: int
    unchanged: int
    failed: int
    results: List[BulkResultItem]


class PaymentRecord(BaseModel):
    id: str
    subscription_id: str
    user_id: str
    payment_type: PaymentType
    amount: Decimal
    currency: str
    provider_order_id: str
    provider_payment_id: str
    receipt_number: str
    status: str
    created_at: Optional[datetime] = None
    user_email: Optional[str] = None
    live_class_title: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _stringify_ids(cls, data: Any):
        if isinstance(data, dict):
            data = dict(data)
            for key in ("id", "subscription_id", "user_id"):
                if data.get(key) is not None:
                    data[key] = str(data[key])
        return data


class PaymentListResponse(BaseModel):
    items: List[PaymentRecord]
    total: int
    page: int
    limit: int


class ClassPopularity(BaseModel):
    live_class_id: str
    title: str
    active_subscriptions: int


class AnalyticsResponse(BaseModel):
    total_classes: int
    active_subscriptions: int
    pending_approvals: int
    total_revenue: Decimal
    monthly_revenue: Decimal
    recent_payments: List[PaymentRecord]
    class_popularity: List[ClassPopularity]


class ExpirationResponse(BaseModel):
    expired: int
    subscription_ids: List[str]
