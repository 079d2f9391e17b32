from datetime import datetime

import pytest
import pytz

from conftest import log_payload
from core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from models import CaseLogModel, CourseActivityModel
from models.enums import LogStatus, UserRole
from schemas.case_log import CaseLogCreate, CaseLogUpdate
from utils.case_log_manager import CaseLogManager
from utils.case_number import CaseNumberAllocator

REASON = "Missing vitals and differential diagnosis"


def _count_logs(db):
    db.expire_all()
    return db.query(CaseLogModel).count()


class TestCreate:
    def test_creates_draft_with_case_number(self, world, new_log):
        log = new_log(world.learner, world.course)
        assert log.status == LogStatus.DRAFT
        assert log.case_no.startswith("CASE-")
        assert log.submitted_at is None
        assert log.created_by_id == world.learner.user_id

    def test_create_as_submitted_stamps_submitted_at(self, world, new_log):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        assert log.status == LogStatus.SUBMITTED
        assert log.submitted_at is not None

    def test_unenrolled_learner_is_refused_and_nothing_persists(self, db, world, new_log):
        with pytest.raises(UnauthorizedError):
            new_log(world.other_learner, world.course)
        assert _count_logs(db) == 0

    def test_teacher_cannot_create(self, world, log_manager):
        with pytest.raises(ForbiddenError):
            log_manager.create_log(world.teacher, CaseLogCreate(**log_payload(world.course.course_id)))

    def test_unknown_course(self, world, log_manager):
        with pytest.raises(NotFoundError):
            log_manager.create_log(world.learner, CaseLogCreate(**log_payload("nope")))

    def test_creation_records_activity(self, db, world, new_log):
        log = new_log(world.learner, world.course)
        actions = [a.action for a in db.query(CourseActivityModel).all()]
        assert actions == ["LOG_CREATED"]
        assert db.query(CourseActivityModel).one().meta_info["case_no"] == log.case_no


class _StaleAllocator(CaseNumberAllocator):
    """Hands out a number someone else already holds for the first ``stale`` attempts."""

    def __init__(self, db, taken, stale):
        super().__init__(db)
        self.taken = taken
        self.stale = stale
        self.calls = 0

    def next_case_no(self, course_id, now=None):
        self.calls += 1
        if self.calls <= self.stale:
            return self.taken
        return super().next_case_no(course_id, now=now)


class _RacingAllocator(CaseNumberAllocator):
    """Lets another session commit a log right after the first number is picked."""

    def __init__(self, db, competitor):
        super().__init__(db)
        self.competitor = competitor
        self.picked = []

    def next_case_no(self, course_id, now=None):
        case_no = super().next_case_no(course_id, now=now)
        self.picked.append(case_no)
        if len(self.picked) == 1:
            self.competitor()
        return case_no


class TestCaseNumberRace:
    def test_retries_after_losing_the_insert_race(self, db, world, new_log):
        first = new_log(world.learner, world.course)
        allocator = _StaleAllocator(db, first.case_no, stale=1)
        manager = CaseLogManager(db, allocator=allocator)

        log = manager.create_log(world.learner, CaseLogCreate(**log_payload(world.course.course_id)))

        assert log.case_no != first.case_no
        assert allocator.calls == 2
        assert _count_logs(db) == 2

    def test_gives_up_with_conflict(self, db, world, new_log):
        first = new_log(world.learner, world.course)
        manager = CaseLogManager(db, allocator=_StaleAllocator(db, first.case_no, stale=99))

        with pytest.raises(ConflictError) as exc_info:
            manager.create_log(world.learner, CaseLogCreate(**log_payload(world.course.course_id)))

        assert "case number" in exc_info.value.message.lower()
        assert _count_logs(db) == 1

    def test_lost_race_takes_the_next_number_in_sequence(self, database, db, world, log_manager):
        in_2024 = datetime(2024, 6, 1, 12, tzinfo=pytz.utc)
        payload = CaseLogCreate(**log_payload(world.course.course_id))
        existing = log_manager.create_log(world.learner, payload, now=in_2024)

        def competitor():
            with database.session() as other:
                CaseLogManager(other).create_log(world.learner, payload, now=in_2024)

        allocator = _RacingAllocator(db, competitor)
        log = CaseLogManager(db, allocator=allocator).create_log(world.learner, payload, now=in_2024)

        assert existing.case_no == "CASE-2024-001"
        assert allocator.picked == ["CASE-2024-002", "CASE-2024-003"]
        assert log.case_no == "CASE-2024-003"
        db.expire_all()
        numbers = sorted(row[0] for row in db.query(CaseLogModel.case_no).all())
        assert numbers == ["CASE-2024-001", "CASE-2024-002", "CASE-2024-003"]


class TestLearnerTransitions:
    def test_edit_draft_content(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course)
        updated = log_manager.update_log(world.learner, log.log_id, CaseLogUpdate(diagnosis="Unstable angina"))
        assert updated.diagnosis == "Unstable angina"
        assert updated.status == LogStatus.DRAFT

    def test_only_author_edits(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course)
        with pytest.raises(ForbiddenError):
            log_manager.update_log(world.teacher, log.log_id, CaseLogUpdate(diagnosis="x"))

    def test_other_learner_cannot_see_log(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course)
        with pytest.raises(NotFoundError):
            log_manager.get_log(world.other_learner, log.log_id)

    def test_update_can_submit(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course)
        updated = log_manager.update_log(world.learner, log.log_id, CaseLogUpdate(status=LogStatus.SUBMITTED))
        assert updated.status == LogStatus.SUBMITTED
        assert updated.submitted_at is not None

    def test_update_cannot_move_back_to_draft(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        with pytest.raises(InvalidTransitionError):
            log_manager.update_log(world.learner, log.log_id, CaseLogUpdate(status=LogStatus.DRAFT))

    def test_submit_twice_is_invalid(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course)
        log_manager.submit_log(world.learner, log.log_id)
        with pytest.raises(InvalidTransitionError):
            log_manager.submit_log(world.learner, log.log_id)

    def test_resubmit_clears_rejection_reason(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        log_manager.reject_log(world.teacher, log.log_id, REASON)

        resubmitted = log_manager.submit_log(world.learner, log.log_id)

        assert resubmitted.status == LogStatus.RESUBMITTED
        assert resubmitted.rejection_reason is None

    def test_delete_draft(self, db, world, new_log, log_manager):
        log = new_log(world.learner, world.course)
        log_manager.delete_log(world.learner, log.log_id)
        assert _count_logs(db) == 0

    def test_cannot_delete_submitted(self, db, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        with pytest.raises(InvalidTransitionError):
            log_manager.delete_log(world.learner, log.log_id)
        assert _count_logs(db) == 1


class TestReview:
    def test_round_trip_draft_submit_approve(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course)
        log_manager.submit_log(world.learner, log.log_id)

        approved = log_manager.approve_log(world.teacher, log.log_id, "Well documented")

        assert approved.status == LogStatus.APPROVED
        assert approved.submitted_at <= approved.approved_at
        assert approved.rejection_reason is None
        assert approved.approved_by_id == world.teacher.user_id
        assert approved.teacher_comments == "Well documented"

    def test_co_teacher_can_reject(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        rejected = log_manager.reject_log(world.co_teacher, log.log_id, REASON)
        assert rejected.status == LogStatus.REJECTED
        assert rejected.rejected_by_id == world.co_teacher.user_id
        assert rejected.rejected_at is not None
        assert rejected.rejection_reason == REASON

    def test_outside_teacher_cannot_see_or_review(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        with pytest.raises(NotFoundError):
            log_manager.approve_log(world.outsider_teacher, log.log_id)

    def test_admin_can_view_but_not_review(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        assert log_manager.get_log(world.admin, log.log_id).log_id == log.log_id
        with pytest.raises(ForbiddenError):
            log_manager.approve_log(world.admin, log.log_id)

    def test_draft_cannot_be_approved(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course)
        with pytest.raises(InvalidTransitionError):
            log_manager.approve_log(world.teacher, log.log_id)

    def test_short_rejection_reason_fails_without_state_change(self, db, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        with pytest.raises(ValidationError) as exc_info:
            log_manager.reject_log(world.teacher, log.log_id, "too short")  # 9 characters
        assert "rejection_reason" in exc_info.value.fields
        db.expire_all()
        assert db.get(CaseLogModel, log.log_id).status == LogStatus.SUBMITTED

    def test_overlong_comments_fail(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        with pytest.raises(ValidationError):
            log_manager.approve_log(world.teacher, log.log_id, "x" * 1001)

    @pytest.mark.parametrize(
        "attempt",
        [
            lambda m, w, log_id: m.update_log(w.learner, log_id, CaseLogUpdate(diagnosis="changed")),
            lambda m, w, log_id: m.delete_log(w.learner, log_id),
            lambda m, w, log_id: m.approve_log(w.teacher, log_id),
            lambda m, w, log_id: m.reject_log(w.teacher, log_id, REASON),
            lambda m, w, log_id: m.submit_log(w.learner, log_id),
        ],
        ids=["edit", "delete", "approve", "reject", "submit"],
    )
    def test_approved_is_terminal(self, db, world, new_log, log_manager, attempt):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        log_manager.approve_log(world.teacher, log.log_id)

        with pytest.raises(ConflictError):
            attempt(log_manager, world, log.log_id)

        db.expire_all()
        stored = db.get(CaseLogModel, log.log_id)
        assert stored.status == LogStatus.APPROVED
        assert stored.diagnosis != "changed"

    def test_approve_reject_race_has_one_winner(self, database, world, new_log):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)

        with database.session() as first, database.session() as second:
            approver = CaseLogManager(first)
            rejecter = CaseLogManager(second)
            # Both reviewers have loaded the log while it was still SUBMITTED
            rejecter.get_log(world.co_teacher, log.log_id)

            approver.approve_log(world.teacher, log.log_id)
            with pytest.raises(ConflictError):
                rejecter.reject_log(world.co_teacher, log.log_id, REASON)

        with database.session() as check:
            stored = check.get(CaseLogModel, log.log_id)
            assert stored.status == LogStatus.APPROVED
            assert stored.rejected_by_id is None
            assert stored.rejection_reason is None


class _InterleavedBulkManager(CaseLogManager):
    """Runs ``between`` after the eligibility check and before the batched UPDATE."""

    def __init__(self, db, between):
        super().__init__(db)
        self.between = between

    def _eligible_for_approval(self, ids, course_ids):
        eligible = super()._eligible_for_approval(ids, course_ids)
        self.between()
        return eligible


class TestBulkApprove:
    def test_approves_pending_logs(self, world, new_log, log_manager):
        first = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        second = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)

        result = log_manager.bulk_approve(world.co_teacher, [first.log_id, second.log_id], "Good batch")

        assert result.approved_count == 2
        assert result.requested_count == 2
        assert sorted(result.approved_ids) == sorted([first.log_id, second.log_id])
        assert log_manager.get_log(world.learner, first.log_id).status == LogStatus.APPROVED

    def test_log_rejected_mid_batch_is_left_out(self, database, db, world, new_log):
        kept = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        contested = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)

        def reject_elsewhere():
            with database.session() as other:
                CaseLogManager(other).reject_log(world.co_teacher, contested.log_id, REASON)

        result = _InterleavedBulkManager(db, reject_elsewhere).bulk_approve(
            world.teacher, [kept.log_id, contested.log_id]
        )

        assert result.approved_count == 1
        assert result.requested_count == 2
        assert result.approved_ids == [kept.log_id]
        with database.session() as check:
            stored = check.get(CaseLogModel, contested.log_id)
            assert stored.status == LogStatus.REJECTED
            assert stored.approved_by_id is None
            assert stored.rejection_reason == REASON
            assert check.get(CaseLogModel, kept.log_id).status == LogStatus.APPROVED

    def test_includes_resubmitted(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        log_manager.reject_log(world.teacher, log.log_id, REASON)
        log_manager.submit_log(world.learner, log.log_id)

        assert log_manager.bulk_approve(world.teacher, [log.log_id]).approved_count == 1

    def test_mixed_batch_is_rejected_whole(self, world, new_log, log_manager):
        pending = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        draft = new_log(world.learner, world.course)

        with pytest.raises(ValidationError) as exc_info:
            log_manager.bulk_approve(world.teacher, [pending.log_id, draft.log_id])

        assert draft.log_id in exc_info.value.message
        assert log_manager.get_log(world.learner, pending.log_id).status == LogStatus.SUBMITTED

    def test_nothing_valid(self, world, new_log, log_manager):
        draft = new_log(world.learner, world.course)
        with pytest.raises(NotFoundError):
            log_manager.bulk_approve(world.teacher, [draft.log_id])

    def test_outsider_sees_nothing(self, world, new_log, log_manager):
        log = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        with pytest.raises(NotFoundError):
            log_manager.bulk_approve(world.outsider_teacher, [log.log_id])

    @pytest.mark.parametrize("ids", [[], [""], ["id"] * 51])
    def test_bad_id_lists(self, world, log_manager, ids):
        with pytest.raises(ValidationError):
            log_manager.bulk_approve(world.teacher, ids)

    def test_learner_cannot_bulk_approve(self, world, log_manager):
        with pytest.raises(ForbiddenError):
            log_manager.bulk_approve(world.learner, ["x"])


class TestListing:
    def test_scopes_by_role(self, world, make_user, make_course, enroll, new_log, log_manager):
        other_teacher = make_user(UserRole.TEACHER)
        other_course = make_course(other_teacher)
        enroll(other_course, world.other_learner)
        new_log(world.learner, world.course)
        new_log(world.other_learner, other_course)

        assert log_manager.list_logs(world.learner)[1] == 1
        assert log_manager.list_logs(world.co_teacher)[1] == 1
        assert log_manager.list_logs(other_teacher)[1] == 1
        assert log_manager.list_logs(world.admin)[1] == 2
        assert log_manager.list_logs(world.outsider_teacher) == ([], 0)

    def test_filters_and_search(self, world, new_log, log_manager):
        new_log(world.learner, world.course, date=datetime(2024, 1, 5, tzinfo=pytz.utc))
        new_log(world.learner, world.course, status=LogStatus.SUBMITTED, date=datetime(2024, 6, 5, tzinfo=pytz.utc))

        assert log_manager.list_logs(world.teacher, status="submitted")[1] == 1
        assert log_manager.list_logs(world.teacher, status="ALL")[1] == 2
        assert (
            log_manager.list_logs(
                world.teacher,
                start_date=datetime(2024, 3, 1, tzinfo=pytz.utc),
                end_date=datetime(2024, 12, 31, tzinfo=pytz.utc),
            )[1]
            == 1
        )
        assert log_manager.list_logs(world.teacher, search="asha")[1] == 2
        assert log_manager.list_logs(world.teacher, search="Rotation")[1] == 2

    @pytest.mark.parametrize("kwargs", [{"search": "a"}, {"status": "LOST"}, {"page": 0}, {"limit": 101}])
    def test_rejects_bad_filters(self, world, log_manager, kwargs):
        with pytest.raises(ValidationError):
            log_manager.list_logs(world.teacher, **kwargs)

    def test_review_queue_oldest_first(self, world, new_log, log_manager):
        first = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        second = new_log(world.learner, world.course, status=LogStatus.SUBMITTED)
        new_log(world.learner, world.course)

        items, total = log_manager.list_for_review(world.teacher)

        assert total == 2
        assert [i.log_id for i in items] == [first.log_id, second.log_id]

    def test_review_queue_for_foreign_course(self, world, make_user, make_course, log_manager):
        foreign = make_course(make_user(UserRole.TEACHER))
        with pytest.raises(NotFoundError):
            log_manager.list_for_review(world.teacher, course_id=foreign.course_id)
