import uuid

from fastapi import APIRouter, Depends, Query

from skillify.core.deps import AuthorizationService
from skillify.core.enum import RoleName
from skillify.libs.response import success
from skillify.services.instructor.course import CourseService
from skillify.services.user.course_enroll import CourseEnrollService

router = APIRouter(prefix="/course", tags=["Course"])


@router.get("")
async def get_courses(
    page: int = Query(1, ge=1),
    course_service: CourseService = Depends(CourseService),
):
    return success(await course_service.get_courses_async(page))


@router.get("/enrolled")
async def get_enrolled_courses(
    page: int = Query(1, ge=1),
    enroll_service: CourseEnrollService = Depends(CourseEnrollService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    student = await authorization.require_role([RoleName.STUDENT.value])
    return success(await enroll_service.get_student_courses_async(student, page))


@router.get("/{course_id}")
async def get_course_detail(
    course_id: uuid.UUID,
    page: int = Query(1, ge=1),
    course_service: CourseService = Depends(CourseService),
):
    return success(await course_service.get_course_detail_async(course_id, page))
