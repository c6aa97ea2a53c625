from .live_classes import (
    AnalyticsResponse,
    BulkResultItem,
    BulkResultResponse,
    ClassPopularity,
    CourseAccessRequest,
    CourseAccessResponse,
    ExpirationResponse,
    LiveClassCreate,
    LiveClassUpdate,
    MeetingDetails,
    ModuleInput,
    PaymentListResponse,
    PaymentOrder,
    PaymentRecord,
    PaymentType,
    RegisterRequest,
    RegistrationResponse,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionStatusResponse,
    ToggleClassroomRequest,
    ToggleCourseFeeRequest,
    ToggleRegistrationRequest,
    UserIdsRequest,
    VerifiedSubscriptionResponse,
    VerifyCourseAccessRequest,
    VerifyRegistrationRequest,
)

__all__ = [
    "AnalyticsResponse",
    "BulkResultItem",
    "BulkResultResponse",
    "ClassPopularity",
    "CourseAccessRequest",
    "CourseAccessResponse",
    "ExpirationResponse",
    "LiveClassCreate",
    "LiveClassUpdate",
    "MeetingDetails",
    "ModuleInput",
    "PaymentListResponse",
    "PaymentOrder",
    "PaymentRecord",
    "PaymentType",
    "RegisterRequest",
    "RegistrationResponse",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "SubscriptionStatusResponse",
    "ToggleClassroomRequest",
    "ToggleCourseFeeRequest",
    "ToggleRegistrationRequest",
    "UserIdsRequest",
    "VerifiedSubscriptionResponse",
    "VerifyCourseAccessRequest",
    "VerifyRegistrationRequest",
]
