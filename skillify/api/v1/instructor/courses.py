import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from skillify.core.deps import AuthorizationService
from skillify.core.enum import RoleName
from skillify.libs.response import success
from skillify.schemas.instructor.courses import CreateCourse, MediaFile, UpdateCourse
from skillify.services.instructor.course import CourseService

router = APIRouter(prefix="/course", tags=["Instructor Course"])

INSTRUCTOR = [RoleName.INSTRUCTOR.value]


async def _media(file: Optional[UploadFile]) -> Optional[MediaFile]:
    return await MediaFile.from_upload(file) if file else None


async def _media_list(files: Optional[List[UploadFile]]) -> List[MediaFile]:
    return [await MediaFile.from_upload(f) for f in files or []]


def _form(model: type[BaseModel], **fields) -> BaseModel:
    try:
        return model.model_validate({k: v for k, v in fields.items() if v is not None})
    except SchemaError as e:
        raise RequestValidationError(
            [{**err, "loc": ("body", *err["loc"])} for err in e.errors(include_url=False)]
        ) from e


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_course(
    title: str = Form(...),
    description: str = Form(...),
    price: str = Form("0"),
    upiId: Optional[str] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
    videos: Optional[List[UploadFile]] = File(None),
    course_service: CourseService = Depends(CourseService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    instructor = await authorization.require_role(INSTRUCTOR)
    schema = _form(
        CreateCourse, title=title, description=description, price=price, upiId=upiId
    )
    return success(
        await course_service.create_course_async(
            instructor, schema, await _media(thumbnail), await _media_list(videos)
        )
    )


@router.get("/instructor")
async def get_instructor_courses(
    page: int = Query(1, ge=1),
    course_service: CourseService = Depends(CourseService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    instructor = await authorization.require_role(INSTRUCTOR)
    return success(await course_service.get_instructor_courses_async(instructor, page))


@router.put("/{course_id}")
async def update_course(
    course_id: uuid.UUID,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    upiId: Optional[str] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
    videos: Optional[List[UploadFile]] = File(None),
    course_service: CourseService = Depends(CourseService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    instructor = await authorization.require_role(INSTRUCTOR)
    schema = _form(
        UpdateCourse, title=title, description=description, price=price, upiId=upiId
    )
    return success(
        await course_service.update_course_async(
            course_id,
            instructor,
            schema,
            await _media(thumbnail),
            await _media_list(videos),
        )
    )


@router.delete("/{course_id}")
async def delete_course(
    course_id: uuid.UUID,
    course_service: CourseService = Depends(CourseService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    instructor = await authorization.require_role(INSTRUCTOR)
    return success(await course_service.delete_course_async(course_id, instructor))


@router.delete("/{course_id}/videos/{video_id}")
async def delete_video(
    course_id: uuid.UUID,
    video_id: uuid.UUID,
    course_service: CourseService = Depends(CourseService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    instructor = await authorization.require_role(INSTRUCTOR)
    return success(await course_service.delete_video_async(course_id, video_id, instructor))


@router.put("/{course_id}/videos/{video_id}")
async def replace_video(
    course_id: uuid.UUID,
    video_id: uuid.UUID,
    video: UploadFile = File(...),
    title: Optional[str] = Form(None),
    course_service: CourseService = Depends(CourseService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    instructor = await authorization.require_role(INSTRUCTOR)
    return success(
        await course_service.replace_video_async(
            course_id, video_id, instructor, await MediaFile.from_upload(video), title
        )
    )
