from datetime import datetime

import pytz

from conftest import log_payload
from schemas.case_log import CaseLogCreate
from utils.case_number import CaseNumberAllocator, format_case_no


def _at(year, month=6, day=1):
    return datetime(year, month, day, 12, tzinfo=pytz.utc)


def test_format_pads_to_three_digits():
    assert format_case_no(2024, 7) == "CASE-2024-007"
    assert format_case_no(2024, 1234) == "CASE-2024-1234"


def test_third_log_of_the_year(db, world, log_manager):
    for month in (2, 5):
        log_manager.create_log(
            world.learner,
            CaseLogCreate(**log_payload(world.course.course_id, date=_at(2024, month))),
            now=_at(2024, month),
        )

    allocator = CaseNumberAllocator(db)
    assert allocator.count_logs_in_year(world.course.course_id, 2024) == 2
    assert allocator.next_case_no(world.course.course_id, now=_at(2024, 9)) == "CASE-2024-003"


def test_new_year_restarts_sequence(db, world, log_manager):
    log_manager.create_log(
        world.learner,
        CaseLogCreate(**log_payload(world.course.course_id, date=_at(2024))),
        now=_at(2024),
    )
    assert CaseNumberAllocator(db).next_case_no(world.course.course_id, now=_at(2025, 1, 2)) == "CASE-2025-001"


def test_other_course_starts_at_one(db, world, make_course, enroll, log_manager):
    log_manager.create_log(
        world.learner,
        CaseLogCreate(**log_payload(world.course.course_id, date=_at(2024))),
        now=_at(2024),
    )
    other = make_course(world.teacher)
    enroll(other, world.learner)

    log = log_manager.create_log(
        world.learner,
        CaseLogCreate(**log_payload(other.course_id, date=_at(2023))),
        now=_at(2023),
    )
    assert log.case_no == "CASE-2023-001"


def test_skips_numbers_held_by_other_courses(db, world, make_course, enroll, log_manager):
    first = log_manager.create_log(
        world.learner,
        CaseLogCreate(**log_payload(world.course.course_id, date=_at(2024))),
        now=_at(2024),
    )
    other = make_course(world.teacher)
    enroll(other, world.learner)

    second = log_manager.create_log(
        world.learner,
        CaseLogCreate(**log_payload(other.course_id, date=_at(2024))),
        now=_at(2024),
    )

    assert first.case_no == "CASE-2024-001"
    assert second.case_no == "CASE-2024-002"


def test_repeated_calls_without_insert_agree(db, world, log_manager):
    log_manager.create_log(
        world.learner,
        CaseLogCreate(**log_payload(world.course.course_id, date=_at(2024))),
        now=_at(2024),
    )
    allocator = CaseNumberAllocator(db)
    first = allocator.next_case_no(world.course.course_id, now=_at(2024))
    assert first == "CASE-2024-002"
    assert allocator.next_case_no(world.course.course_id, now=_at(2024)) == first


def test_counts_by_log_date_not_creation_time(db, world, log_manager):
    # Filed in 2024 about a case seen in 2023
    log_manager.create_log(
        world.learner,
        CaseLogCreate(**log_payload(world.course.course_id, date=_at(2023))),
        now=_at(2024),
    )
    allocator = CaseNumberAllocator(db)
    assert allocator.count_logs_in_year(world.course.course_id, 2024) == 0
    assert allocator.count_logs_in_year(world.course.course_id, 2023) == 1
