from __future__ import annotations

from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ..auth import CurrentUser, OptionalCurrentUser
from ..dependencies import (
    get_live_class_service,
    get_live_toggle_service,
    get_subscription_service,
)
from ..permissions import AdminUser
from ..schemas.live_classes import (
    AnalyticsResponse,
    BulkResultResponse,
    CourseAccessRequest,
    CourseAccessResponse,
    ExpirationResponse,
    LiveClassCreate,
    LiveClassUpdate,
    PaymentListResponse,
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
from ..services.live_class_service import LiveClassService
from ..services.live_toggle_service import LiveToggleService
from ..services.subscription_service import SubscriptionService

router = APIRouter(prefix="/api/live-classes", tags=["live-classes"])

Subscriptions = Annotated[SubscriptionService, Depends(get_subscription_service)]
Classes = Annotated[LiveClassService, Depends(get_live_class_service)]
Toggles = Annotated[LiveToggleService, Depends(get_live_toggle_service)]


# ---------------------------------------------------------------------- student


@router.get("/classes")
async def list_classes(current: OptionalCurrentUser, classes: Classes) -> dict[str, Any]:
    items = await classes.list_public(current)
    return {"items": items}


@router.get("/class/{identifier}")
async def get_class(
    identifier: str, current: OptionalCurrentUser, classes: Classes
) -> dict[str, Any]:
    return await classes.get_public(identifier, current)


@router.get("/my-subscriptions")
async def my_subscriptions(current: CurrentUser, subscriptions: Subscriptions) -> dict[str, Any]:
    items = await subscriptions.list_my_subscriptions(current)
    return {"items": items}


@router.post("/register", response_model=RegistrationResponse)
async def register(
    payload: RegisterRequest, current: CurrentUser, subscriptions: Subscriptions
) -> RegistrationResponse:
    return await subscriptions.initiate_registration(
        current, payload.class_id, payload.module_id
    )


@router.post(
    "/verify-registration",
    response_model=VerifiedSubscriptionResponse,
    response_model_exclude_unset=True,
)
async def verify_registration(
    payload: VerifyRegistrationRequest, current: CurrentUser, subscriptions: Subscriptions
) -> VerifiedSubscriptionResponse:
    return await subscriptions.confirm_registration(
        current,
        order_id=payload.razorpay_order_id,
        payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
        class_id=payload.class_id,
        module_id=payload.module_id,
    )


@router.post("/pay-course-access", response_model=CourseAccessResponse)
async def pay_course_access(
    payload: CourseAccessRequest, current: CurrentUser, subscriptions: Subscriptions
) -> CourseAccessResponse:
    return await subscriptions.initiate_course_access(current, payload.class_id)


@router.post(
    "/verify-course-access",
    response_model=VerifiedSubscriptionResponse,
    response_model_exclude_unset=True,
)
async def verify_course_access(
    payload: VerifyCourseAccessRequest, current: CurrentUser, subscriptions: Subscriptions
) -> VerifiedSubscriptionResponse:
    return await subscriptions.confirm_course_access(
        current,
        order_id=payload.razorpay_order_id,
        payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
        class_id=payload.class_id,
    )


@router.get("/check-subscription/{class_id}", response_model=SubscriptionStatusResponse)
async def check_subscription(
    class_id: str,
    current: CurrentUser,
    subscriptions: Subscriptions,
    module_id: Optional[str] = Query(default=None),
) -> SubscriptionStatusResponse:
    return await subscriptions.check_subscription(current, class_id, module_id)


@router.post("/cancel-subscription/{subscription_id}", response_model=SubscriptionRecord)
async def cancel_subscription(
    subscription_id: str, current: CurrentUser, subscriptions: Subscriptions
) -> SubscriptionRecord:
    return await subscriptions.cancel(subscription_id, current)


# ------------------------------------------------------------------------ admin


@router.post("/admin/class", status_code=status.HTTP_201_CREATED)
async def admin_create_class(
    payload: LiveClassCreate, current: AdminUser, classes: Classes
) -> dict[str, Any]:
    return await classes.create(payload, current)


@router.get("/admin/classes")
async def admin_list_classes(current: AdminUser, classes: Classes) -> dict[str, Any]:
    return {"items": await classes.list_admin()}


@router.put("/admin/class/{class_id}")
async def admin_update_class(
    class_id: str, payload: LiveClassUpdate, current: AdminUser, classes: Classes
) -> dict[str, Any]:
    return await classes.update(class_id, payload)


@router.delete("/admin/class/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
async def admin_delete_class(class_id: str, current: AdminUser, classes: Classes):
    await classes.delete(class_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/admin/class/{class_id}/toggle-classroom")
async def admin_toggle_classroom(
    class_id: str, payload: ToggleClassroomRequest, current: AdminUser, toggles: Toggles
) -> dict[str, Any]:
    return await toggles.set_live(class_id, payload.is_on_classroom)


@router.post("/admin/class/{class_id}/toggle-course-fee")
async def admin_toggle_course_fee(
    class_id: str, payload: ToggleCourseFeeRequest, current: AdminUser, classes: Classes
) -> dict[str, Any]:
    return await classes.set_course_fee_enabled(class_id, payload.course_fee_enabled)


@router.post("/admin/class/{class_id}/toggle-registration")
async def admin_toggle_registration(
    class_id: str, payload: ToggleRegistrationRequest, current: AdminUser, classes: Classes
) -> dict[str, Any]:
    return await classes.set_registration_enabled(class_id, payload.registration_enabled)


@router.get("/admin/class/{class_id}/registrations")
async def admin_class_registrations(
    class_id: str, current: AdminUser, subscriptions: Subscriptions
) -> dict[str, Any]:
    return {"items": await subscriptions.list_class_registrations(class_id)}


@router.get("/admin/class/{class_id}/attendees")
async def admin_class_attendees(
    class_id: str, current: AdminUser, subscriptions: Subscriptions
) -> dict[str, Any]:
    return {"items": await subscriptions.list_class_attendees(class_id)}


@router.post("/admin/class/{class_id}/approve-registrations", response_model=BulkResultResponse)
async def admin_approve_registrations(
    class_id: str, payload: UserIdsRequest, current: AdminUser, subscriptions: Subscriptions
) -> BulkResultResponse:
    return await subscriptions.bulk_approve(class_id, payload.user_ids)


@router.post("/admin/class/{class_id}/remove-access", response_model=BulkResultResponse)
async def admin_remove_access(
    class_id: str, payload: UserIdsRequest, current: AdminUser, subscriptions: Subscriptions
) -> BulkResultResponse:
    return await subscriptions.remove_access(class_id, payload.user_ids)


@router.get("/admin/pending-approvals")
async def admin_pending_approvals(
    current: AdminUser, subscriptions: Subscriptions
) -> dict[str, Any]:
    items = await subscriptions.list_pending_approvals()
    return {"items": [item.model_dump(mode="json") for item in items]}


@router.get("/admin/subscriptions")
async def admin_subscriptions(
    current: AdminUser,
    subscriptions: Subscriptions,
    status_filter: Optional[SubscriptionStatus] = Query(default=None, alias="status"),
) -> dict[str, Any]:
    return {"items": await subscriptions.list_subscriptions(status_filter)}


@router.post("/admin/approve-subscription/{subscription_id}", response_model=SubscriptionRecord)
async def admin_approve_subscription(
    subscription_id: str, current: AdminUser, subscriptions: Subscriptions
) -> SubscriptionRecord:
    return await subscriptions.approve(subscription_id)


@router.post("/admin/reject-subscription/{subscription_id}", response_model=SubscriptionRecord)
async def admin_reject_subscription(
    subscription_id: str, current: AdminUser, subscriptions: Subscriptions
) -> SubscriptionRecord:
    return await subscriptions.reject(subscription_id)


@router.post("/admin/cancel-subscription/{subscription_id}", response_model=SubscriptionRecord)
async def admin_cancel_subscription(
    subscription_id: str, current: AdminUser, subscriptions: Subscriptions
) -> SubscriptionRecord:
    return await subscriptions.cancel(subscription_id, current)


@router.get("/admin/payments", response_model=PaymentListResponse)
async def admin_payments(
    current: AdminUser,
    subscriptions: Subscriptions,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> PaymentListResponse:
    return await subscriptions.list_payments(page=page, limit=limit)


@router.get("/admin/analytics", response_model=AnalyticsResponse)
async def admin_analytics(current: AdminUser, subscriptions: Subscriptions) -> AnalyticsResponse:
    return await subscriptions.analytics()


@router.post("/admin/process-expirations", response_model=ExpirationResponse)
async def admin_process_expirations(
    current: AdminUser, subscriptions: Subscriptions
) -> ExpirationResponse:
    return await subscriptions.expire_due()
