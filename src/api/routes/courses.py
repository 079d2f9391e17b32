"""Course, co-teacher and enrollment routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.routes.auth import get_current_user
from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from core.dependencies import CourseManagerDep
from schemas.common import ApiResponse, Page, Pagination
from schemas.course import (
    CoTeacherRequest,
    CreateCourseRequest,
    EnrollmentInfo,
    EnrollRequest,
    UnenrollRequest,
    UpdateCourseRequest,
)
from schemas.user import User, UserBrief

router = APIRouter(prefix="/api/courses", tags=["Course"])


def _enrollment_info(model) -> EnrollmentInfo:
    info = EnrollmentInfo.model_validate(model)
    info.learner = UserBrief.model_validate(model.learner) if model.learner else None
    return info


@router.get("", response_model=ApiResponse, summary="List courses")
def list_courses(
    course_manager: CourseManagerDep,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    items, total = course_manager.list_courses(current_user, search=search, page=page, limit=limit)
    return ApiResponse(
        data=Page(
            items=[course_manager.to_info(m, current_user) for m in items],
            pagination=Pagination.build(page, limit, total),
        )
    )


@router.post("", response_model=ApiResponse, status_code=201, summary="Create course")
def create_course(
    req: CreateCourseRequest,
    course_manager: CourseManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = course_manager.create_course(current_user, req)
    return ApiResponse(data=course_manager.to_info(model, current_user), message="Course created successfully")


@router.get("/enrolled", response_model=ApiResponse, summary="Courses the learner is enrolled in")
def list_enrolled_courses(
    course_manager: CourseManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    enrollments = course_manager.list_enrolled(current_user)
    return ApiResponse(data=[course_manager.to_info(e.course, current_user) for e in enrollments])


@router.post("/enroll", response_model=ApiResponse, status_code=201, summary="Enroll in a course")
def enroll(
    req: EnrollRequest,
    course_manager: CourseManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = course_manager.enroll(current_user, req.course_id, req.learner_id)
    return ApiResponse(data=_enrollment_info(model), message="Successfully enrolled in course")


@router.get("/{course_id}", response_model=ApiResponse, summary="Get course")
def get_course(
    course_id: str,
    course_manager: CourseManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = course_manager.get_course_for(current_user, course_id)
    return ApiResponse(data=course_manager.to_info(model, current_user))


@router.put("/{course_id}", response_model=ApiResponse, summary="Update course")
def update_course(
    course_id: str,
    req: UpdateCourseRequest,
    course_manager: CourseManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = course_manager.update_course(current_user, course_id, req)
    return ApiResponse(data=course_manager.to_info(model, current_user), message="Course updated successfully")


@router.delete("/{course_id}", response_model=ApiResponse, summary="Delete course")
def delete_course(
    course_id: str,
    course_manager: CourseManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    course_manager.delete_course(current_user, course_id)
    return ApiResponse(message="Course deleted successfully")


@router.post("/{course_id}/unenroll", response_model=ApiResponse, summary="Leave a course")
def unenroll(
    course_id: str,
    course_manager: CourseManagerDep,
    req: Optional[UnenrollRequest] = None,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    course_manager.unenroll(current_user, course_id, req.learner_id if req else None)
    return ApiResponse(message="Successfully unenrolled from course")


@router.get("/{course_id}/enrollments", response_model=ApiResponse, summary="List enrollments")
def list_enrollments(
    course_id: str,
    course_manager: CourseManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    enrollments = course_manager.list_enrollments(current_user, course_id)
    return ApiResponse(data=[_enrollment_info(e) for e in enrollments])


@router.post("/{course_id}/co-teachers", response_model=ApiResponse, status_code=201, summary="Add co-teacher")
def add_co_teacher(
    course_id: str,
    req: CoTeacherRequest,
    course_manager: CourseManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    course_manager.add_co_teacher(current_user, course_id, req.teacher_id)
    model = course_manager.get_course(course_id)
    return ApiResponse(data=course_manager.to_info(model, current_user), message="Co-teacher added")


@router.delete("/{course_id}/co-teachers/{teacher_id}", response_model=ApiResponse, summary="Remove co-teacher")
def remove_co_teacher(
    course_id: str,
    teacher_id: str,
    course_manager: CourseManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    course_manager.remove_co_teacher(current_user, course_id, teacher_id)
    return ApiResponse(message="Co-teacher removed")
