from fastapi import APIRouter, Body, Depends, Response, status

from skillify.core.deps import AuthorizationService
from skillify.core.enum import RoleName
from skillify.libs.response import success
from skillify.schemas.user.enrollment import EnrollCourse, VerifyPayment
from skillify.services.user.course_enroll import CourseEnrollService

router = APIRouter(prefix="/payment", tags=["Payment"])

STUDENT = [RoleName.STUDENT.value]


@router.post("/create-order", status_code=status.HTTP_201_CREATED)
async def create_order(
    schema: EnrollCourse = Body(),
    service: CourseEnrollService = Depends(CourseEnrollService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    student = await authorization.require_role(STUDENT)
    return success(await service.create_order_async(student, schema.course_id))


@router.post("/verify")
async def verify_payment(
    res: Response,
    schema: VerifyPayment = Body(),
    service: CourseEnrollService = Depends(CourseEnrollService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    student = await authorization.require_role(STUDENT)
    result = await service.verify_payment_async(student, schema)
    if "enrollment" in result:
        res.status_code = status.HTTP_201_CREATED
    return success(result)
