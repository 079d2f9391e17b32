import pytest

from core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from models import EnrollmentModel
from schemas.course import CreateCourseRequest, UpdateCourseRequest
from utils.course_manager import CourseManager, teacher_course_ids


@pytest.fixture
def courses(db):
    return CourseManager(db)


def test_teacher_creates_owned_course(world, courses):
    course = courses.create_course(
        world.outsider_teacher,
        CreateCourseRequest(title="Paediatrics", enrollment_number="PED-1", faculty_name="Paediatrics"),
    )
    assert course.teacher_id == world.outsider_teacher.user_id
    assert course.name == "Paediatrics"


def test_admin_must_name_a_teacher(world, courses):
    with pytest.raises(ValidationError):
        courses.create_course(world.admin, CreateCourseRequest(title="X", enrollment_number="X-1"))
    with pytest.raises(ValidationError):
        courses.create_course(
            world.admin,
            CreateCourseRequest(title="X", enrollment_number="X-1", teacher_id=world.learner.user_id),
        )
    course = courses.create_course(
        world.admin,
        CreateCourseRequest(title="X", enrollment_number="X-1", teacher_id=world.teacher.user_id),
    )
    assert course.teacher_id == world.teacher.user_id


def test_learner_cannot_create_course(world, courses):
    with pytest.raises(ForbiddenError):
        courses.create_course(world.learner, CreateCourseRequest(title="X", enrollment_number="X-2"))


def test_duplicate_enrollment_number(world, courses):
    with pytest.raises(ConflictError):
        courses.create_course(
            world.teacher,
            CreateCourseRequest(title="Again", enrollment_number=world.course.enrollment_number),
        )


def test_duplicate_enrollment_conflicts_and_keeps_original(db, world, courses):
    original = (
        db.query(EnrollmentModel)
        .filter_by(course_id=world.course.course_id, learner_id=world.learner.user_id)
        .one()
    )
    enrolled_at = original.enrolled_at

    with pytest.raises(ConflictError):
        courses.enroll(world.learner, world.course.course_id)

    db.expire_all()
    rows = db.query(EnrollmentModel).filter_by(course_id=world.course.course_id).all()
    assert len(rows) == 1
    assert rows[0].id == original.id
    assert rows[0].enrolled_at == enrolled_at


def test_admin_enrolls_learner_only(world, courses):
    enrollment = courses.enroll(world.admin, world.course.course_id, world.other_learner.user_id)
    assert enrollment.learner_id == world.other_learner.user_id
    with pytest.raises(ValidationError):
        courses.enroll(world.admin, world.course.course_id, world.teacher.user_id)


def test_teacher_cannot_enroll(world, courses):
    with pytest.raises(ForbiddenError):
        courses.enroll(world.teacher, world.course.course_id)


def test_unenroll_refused_while_logs_exist(world, courses, new_log):
    new_log(world.learner, world.course)
    with pytest.raises(ConflictError):
        courses.unenroll(world.learner, world.course.course_id)


def test_unenroll(world, courses):
    courses.unenroll(world.learner, world.course.course_id)
    assert not courses.is_enrolled(world.course.course_id, world.learner.user_id)
    with pytest.raises(NotFoundError):
        courses.unenroll(world.learner, world.course.course_id)


def test_co_teachers(world, courses, db):
    courses.add_co_teacher(world.teacher, world.course.course_id, world.outsider_teacher.user_id)
    assert world.course.course_id in teacher_course_ids(db, world.outsider_teacher.user_id)

    with pytest.raises(ConflictError):
        courses.add_co_teacher(world.teacher, world.course.course_id, world.outsider_teacher.user_id)
    with pytest.raises(ForbiddenError):
        courses.add_co_teacher(world.co_teacher, world.course.course_id, world.outsider_teacher.user_id)
    with pytest.raises(ValidationError):
        courses.add_co_teacher(world.teacher, world.course.course_id, world.learner.user_id)

    courses.remove_co_teacher(world.teacher, world.course.course_id, world.outsider_teacher.user_id)
    assert world.course.course_id not in teacher_course_ids(db, world.outsider_teacher.user_id)


def test_teacher_course_ids_union(world, make_course, db):
    owned = make_course(world.co_teacher)
    assert teacher_course_ids(db, world.co_teacher.user_id) == sorted([world.course.course_id, owned.course_id])


def test_update_only_by_owner_or_admin(world, courses):
    updated = courses.update_course(world.teacher, world.course.course_id, UpdateCourseRequest(location="Ward 4"))
    assert updated.location == "Ward 4"
    with pytest.raises(ForbiddenError):
        courses.update_course(world.co_teacher, world.course.course_id, UpdateCourseRequest(location="x"))
    with pytest.raises(ForbiddenError):
        courses.update_course(
            world.teacher,
            world.course.course_id,
            UpdateCourseRequest(teacher_id=world.co_teacher.user_id),
        )


def test_delete_refused_with_enrollments(world, courses):
    with pytest.raises(ConflictError):
        courses.delete_course(world.teacher, world.course.course_id)


def test_list_courses_by_role(world, make_course, courses):
    make_course(world.outsider_teacher)
    assert courses.list_courses(world.admin)[1] == 2
    assert courses.list_courses(world.co_teacher)[1] == 1
    assert courses.list_courses(world.learner)[1] == 2
    assert courses.list_courses(world.teacher, search="ENR-001")[1] == 1


def test_course_info_counts(world, courses, new_log):
    new_log(world.learner, world.course)
    info = courses.to_info(courses.get_course(world.course.course_id), world.learner)
    assert info.enrollment_count == 1
    assert info.log_count == 1
    assert info.co_teacher_ids == [world.co_teacher.user_id]
    assert info.is_enrolled is True
    assert info.teacher.name == "Dr Owner"


def test_co_teacher_must_exist(world, courses):
    with pytest.raises(NotFoundError):
        courses.add_co_teacher(world.teacher, world.course.course_id, "missing-user")


def test_hidden_course_visible_only_to_enrolled_learners(db, world, courses):
    world.course.visible = False
    db.commit()

    assert courses.get_course_for(world.learner, world.course.course_id).course_id == world.course.course_id
    assert courses.get_course_for(world.co_teacher, world.course.course_id).course_id == world.course.course_id
    with pytest.raises(NotFoundError):
        courses.get_course_for(world.other_learner, world.course.course_id)
    with pytest.raises(NotFoundError):
        courses.get_course_for(world.outsider_teacher, world.course.course_id)
