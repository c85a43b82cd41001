import uuid

from fastapi import APIRouter, Body, Depends, status

from skillify.core.deps import AuthorizationService
from skillify.core.enum import RoleName
from skillify.libs.response import success
from skillify.schemas.user.enrollment import EnrollCourse
from skillify.services.user.course_enroll import CourseEnrollService

router = APIRouter(prefix="/enrollment", tags=["Enrollment"])

STUDENT = [RoleName.STUDENT.value]


@router.post("", status_code=status.HTTP_201_CREATED)
async def enroll_free_course(
    schema: EnrollCourse = Body(),
    service: CourseEnrollService = Depends(CourseEnrollService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    student = await authorization.require_role(STUDENT)
    return success(await service.enroll_free_async(student, schema.course_id))


@router.get("/me")
async def get_my_enrollments(
    service: CourseEnrollService = Depends(CourseEnrollService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    student = await authorization.require_role(STUDENT)
    return success(await service.get_my_enrollments_async(student))


@router.get("/count/{course_id}")
async def get_enrollment_count(
    course_id: uuid.UUID,
    service: CourseEnrollService = Depends(CourseEnrollService),
):
    return success(await service.get_enrollment_count_async(course_id))


@router.delete("/{course_id}")
async def unenroll(
    course_id: uuid.UUID,
    service: CourseEnrollService = Depends(CourseEnrollService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    student = await authorization.require_role(STUDENT)
    return success(await service.unenroll_async(student, course_id))
