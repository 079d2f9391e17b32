"""Case log review workflow.

A case log moves through DRAFT -> SUBMITTED -> APPROVED, or through REJECTED
and RESUBMITTED when a teacher sends it back. Every write that depends on the
current status is a conditional UPDATE whose WHERE clause repeats the status
precondition, so of two racing reviewers exactly one changes the row and the
other gets a ConflictError.
"""

import logging
import secrets
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session, joinedload

from config import (
    BULK_APPROVE_MAX,
    CASE_NUMBER_MAX_ATTEMPTS,
    REJECTION_REASON_MAX_LENGTH,
    REJECTION_REASON_MIN_LENGTH,
    TEACHER_COMMENTS_MAX_LENGTH,
)
from core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from models.case_log import CaseLogModel
from models.course import CourseModel
from models.enrollment import EnrollmentModel
from models.enums import PENDING_STATUSES, LogStatus, UserRole
from models.user import UserModel
from schemas.case_log import CaseLogCreate, CaseLogUpdate
from schemas.submission import BulkApproveResult
from schemas.user import User
from utils.access_policy import (
    can_create_log,
    can_delete_log,
    can_edit_log,
    can_review_log,
    can_view_log,
    is_log_owner,
)
from utils.activity_recorder import record_activity
from utils.case_number import CaseNumberAllocator
from utils.course_manager import teacher_course_ids
from utils.pagination import check_date_range, check_pagination, parse_status_filter
from utils.time_utils import utc_now

logger = logging.getLogger(__name__)

SEARCH_MIN_LENGTH = 2
SEARCH_MAX_LENGTH = 100

# The submit edge: where "submit" leads from each status that allows it
SUBMIT_TARGETS = {
    LogStatus.DRAFT: LogStatus.SUBMITTED,
    LogStatus.REJECTED: LogStatus.RESUBMITTED,
}


class CaseLogManager:
    """Creates case logs and drives them through review."""

    def __init__(self, db: Session, allocator: Optional[CaseNumberAllocator] = None):
        """Initialize CaseLogManager.

        Args:
            db: SQLAlchemy Session.
            allocator: Case number source; defaults to one over ``db``.
        """
        self.db = db
        self.allocator = allocator or CaseNumberAllocator(db)

    # --- Reads ---

    def _base_query(self) -> Query:
        return self.db.query(CaseLogModel).options(
            joinedload(CaseLogModel.course).selectinload(CourseModel.co_teachers),
            joinedload(CaseLogModel.created_by),
            joinedload(CaseLogModel.approved_by),
        )

    def _load(self, log_id: str) -> CaseLogModel:
        model = self._base_query().filter(CaseLogModel.log_id == log_id).first()
        if not model:
            raise NotFoundError(f"Log '{log_id}' not found")
        return model

    def get_log(self, actor: User, log_id: str) -> CaseLogModel:
        """Fetch a log the actor may see.

        Raises:
            NotFoundError: If the log does not exist or is not visible to the
                actor. The two cases are indistinguishable.
        """
        model = self._load(log_id)
        if not can_view_log(actor, model):
            raise NotFoundError(f"Log '{log_id}' not found")
        return model

    def list_logs(
        self,
        actor: User,
        course_id: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[CaseLogModel], int]:
        """List logs scoped to what the actor may see.

        Learners see their own logs, teachers the logs of the courses they
        own or co-teach, admins everything.

        Args:
            actor: Requesting user.
            course_id: Optional course filter.
            status: Status name or ``ALL``.
            start_date: Earliest clinical date, inclusive.
            end_date: Latest clinical date, inclusive.
            search: Term matched against course, learner and case number.
            page: 1-based page number.
            limit: Page size.

        Returns:
            The requested page of logs, newest first, and the total count.
        """
        check_pagination(page, limit)
        check_date_range(start_date, end_date)
        status_filter = parse_status_filter(status)

        query = self._base_query()
        if actor.role == UserRole.LEARNER:
            query = query.filter(CaseLogModel.created_by_id == actor.user_id)
        elif actor.role == UserRole.TEACHER:
            course_ids = teacher_course_ids(self.db, actor.user_id)
            if not course_ids:
                return [], 0
            query = query.filter(CaseLogModel.course_id.in_(course_ids))

        if course_id:
            query = query.filter(CaseLogModel.course_id == course_id)
        if status_filter is not None:
            query = query.filter(CaseLogModel.status == status_filter)
        if start_date:
            query = query.filter(CaseLogModel.date >= start_date)
        if end_date:
            query = query.filter(CaseLogModel.date <= end_date)
        if search is not None:
            query = query.filter(self._search_clause(search))

        total = query.count()
        items = (
            query.order_by(CaseLogModel.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def list_for_review(
        self,
        actor: User,
        course_id: Optional[str] = None,
        status: LogStatus = LogStatus.SUBMITTED,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[CaseLogModel], int]:
        """Teacher review queue, oldest submission first."""
        if actor.role != UserRole.TEACHER:
            raise ForbiddenError("Only teachers can access the review queue")
        if status not in PENDING_STATUSES:
            raise ValidationError(
                "Review status must be SUBMITTED or RESUBMITTED",
                fields={"status": "must be SUBMITTED or RESUBMITTED"},
            )
        check_pagination(page, limit)

        course_ids = teacher_course_ids(self.db, actor.user_id)
        if course_id:
            if course_id not in course_ids:
                raise NotFoundError(f"Course '{course_id}' not found")
            course_ids = [course_id]
        if not course_ids:
            return [], 0

        query = self._base_query().filter(
            CaseLogModel.course_id.in_(course_ids),
            CaseLogModel.status == status,
        )
        total = query.count()
        items = (
            query.order_by(CaseLogModel.submitted_at.asc(), CaseLogModel.created_at.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def _search_clause(search: str):
        term = search.strip()
        if len(term) < SEARCH_MIN_LENGTH or len(term) > SEARCH_MAX_LENGTH:
            raise ValidationError(
                f"Search term must be between {SEARCH_MIN_LENGTH} and {SEARCH_MAX_LENGTH} characters",
                fields={"search": f"must be {SEARCH_MIN_LENGTH}-{SEARCH_MAX_LENGTH} characters"},
            )
        pattern = f"%{term}%"
        return or_(
            CaseLogModel.case_no.ilike(pattern),
            CaseLogModel.course.has(
                or_(
                    CourseModel.title.ilike(pattern),
                    CourseModel.enrollment_number.ilike(pattern),
                    CourseModel.faculty_name.ilike(pattern),
                )
            ),
            CaseLogModel.created_by.has(
                or_(UserModel.name.ilike(pattern), UserModel.email.ilike(pattern))
            ),
        )

    # --- Creation ---

    def create_log(self, actor: User, request: CaseLogCreate, now: Optional[datetime] = None) -> CaseLogModel:
        """Create a log in DRAFT or SUBMITTED with a fresh case number.

        A lost race on the case number rolls back the insert and retries with
        the next candidate, up to ``CASE_NUMBER_MAX_ATTEMPTS`` times.

        Raises:
            ForbiddenError: If the actor is not a learner.
            NotFoundError: If the course does not exist.
            UnauthorizedError: If the learner is not enrolled in the course.
            ConflictError: If no free case number could be claimed.
        """
        if not can_create_log(actor):
            raise ForbiddenError("Only learners can create case logs")
        course = self.db.query(CourseModel).filter(CourseModel.course_id == request.course_id).first()
        if not course:
            raise NotFoundError(f"Course '{request.course_id}' not found")
        enrolled = (
            self.db.query(EnrollmentModel.id)
            .filter(
                EnrollmentModel.course_id == request.course_id,
                EnrollmentModel.learner_id == actor.user_id,
            )
            .first()
        )
        if not enrolled:
            raise UnauthorizedError("You are not enrolled in this course")

        now = now or utc_now()
        fields = request.model_dump(exclude={"course_id", "status"})
        for attempt in range(CASE_NUMBER_MAX_ATTEMPTS):
            case_no = self.allocator.next_case_no(request.course_id, now=now)
            model = CaseLogModel(
                log_id=secrets.token_hex(12),
                case_no=case_no,
                course_id=request.course_id,
                created_by_id=actor.user_id,
                status=request.status,
                created_at=now,
                updated_at=now,
                submitted_at=now if request.status == LogStatus.SUBMITTED else None,
                **fields,
            )
            self.db.add(model)
            record_activity(
                self.db,
                actor.user_id,
                request.course_id,
                "LOG_CREATED",
                log_id=model.log_id,
                case_no=case_no,
                status=request.status.value,
            )
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.warning(
                    "Case number %s taken for course %s (attempt %d/%d)",
                    case_no,
                    request.course_id,
                    attempt + 1,
                    CASE_NUMBER_MAX_ATTEMPTS,
                )
                continue
            logger.info("Created log %s (%s) by %s as %s", model.log_id, case_no, actor.user_id, request.status.value)
            return self._load(model.log_id)

        logger.error("Gave up allocating a case number for course %s", request.course_id)
        raise ConflictError(
            "Duplicate case number, please retry",
            fields={"case_no": "could not allocate a unique case number"},
        )

    # --- Learner transitions ---

    def update_log(self, actor: User, log_id: str, request: CaseLogUpdate) -> CaseLogModel:
        """Edit content; a status in the payload may only follow the submit edge."""
        model = self.get_log(actor, log_id)
        if not is_log_owner(actor, model):
            raise ForbiddenError("Only the author can edit this log")
        if not can_edit_log(actor, model):
            raise InvalidTransitionError(log_id, model.status, "edit")

        values = request.model_dump(exclude_unset=True, exclude_none=True, exclude={"status"})
        now = utc_now()
        if request.status is not None and request.status != model.status:
            target = SUBMIT_TARGETS.get(model.status)
            if target is None or request.status != target:
                raise InvalidTransitionError(log_id, model.status, f"move to {request.status.value}")
            values.update(self._submit_values(model, target, now))
        if not values:
            return model

        values["updated_at"] = now
        action = "LOG_SUBMITTED" if "status" in values else "LOG_UPDATED"
        return self._transition(actor, model, (model.status,), values, action, "edit")

    def submit_log(self, actor: User, log_id: str) -> CaseLogModel:
        """DRAFT -> SUBMITTED, or REJECTED -> RESUBMITTED."""
        model = self.get_log(actor, log_id)
        if not is_log_owner(actor, model):
            raise ForbiddenError("Only the author can submit this log")
        target = SUBMIT_TARGETS.get(model.status)
        if target is None:
            raise InvalidTransitionError(log_id, model.status, "submit")
        now = utc_now()
        values = self._submit_values(model, target, now)
        values["updated_at"] = now
        return self._transition(actor, model, (model.status,), values, "LOG_SUBMITTED", "submit")

    @staticmethod
    def _submit_values(model: CaseLogModel, target: LogStatus, now: datetime) -> Dict:
        values = {"status": target, "submitted_at": now}
        if model.status == LogStatus.REJECTED:
            values["rejection_reason"] = None
        return values

    def delete_log(self, actor: User, log_id: str) -> None:
        model = self.get_log(actor, log_id)
        if not is_log_owner(actor, model):
            raise ForbiddenError("Only the author can delete this log")
        if not can_delete_log(actor, model):
            raise InvalidTransitionError(log_id, model.status, "delete")

        deleted = (
            self.db.query(CaseLogModel)
            .filter(CaseLogModel.log_id == log_id, CaseLogModel.status == LogStatus.DRAFT)
            .delete(synchronize_session=False)
        )
        if not deleted:
            self.db.rollback()
            raise ConflictError(f"Log '{log_id}' was already processed")
        record_activity(self.db, actor.user_id, model.course_id, "LOG_DELETED", log_id=log_id, case_no=model.case_no)
        self.db.commit()
        logger.info("Deleted log %s (%s) by %s", log_id, model.case_no, actor.user_id)

    # --- Teacher transitions ---

    def approve_log(self, actor: User, log_id: str, teacher_comments: Optional[str] = None) -> CaseLogModel:
        comments = clean_teacher_comments(teacher_comments)
        model = self._load_for_review(actor, log_id, "approve")
        now = utc_now()
        values = {
            "status": LogStatus.APPROVED,
            "approved_by_id": actor.user_id,
            "approved_at": now,
            "rejection_reason": None,
            "teacher_comments": comments,
            "updated_at": now,
        }
        return self._transition(actor, model, PENDING_STATUSES, values, "LOG_APPROVED", "approve")

    def reject_log(
        self,
        actor: User,
        log_id: str,
        rejection_reason: Optional[str],
        teacher_comments: Optional[str] = None,
    ) -> CaseLogModel:
        """Send a pending log back to its author.

        Raises:
            ValidationError: If the reason is shorter than
                ``REJECTION_REASON_MIN_LENGTH`` or longer than
                ``REJECTION_REASON_MAX_LENGTH`` once stripped.
        """
        reason = clean_rejection_reason(rejection_reason)
        comments = clean_teacher_comments(teacher_comments)
        model = self._load_for_review(actor, log_id, "reject")
        now = utc_now()
        values = {
            "status": LogStatus.REJECTED,
            "rejected_by_id": actor.user_id,
            "rejected_at": now,
            "rejection_reason": reason,
            "teacher_comments": comments,
            "updated_at": now,
        }
        return self._transition(actor, model, PENDING_STATUSES, values, "LOG_REJECTED", "reject")

    def bulk_approve(
        self,
        actor: User,
        case_ids: Iterable[str],
        teacher_comments: Optional[str] = None,
    ) -> BulkApproveResult:
        """Approve several pending logs of the teacher's courses at once.

        Every id is checked up front; the batched UPDATE then repeats the
        status and course predicates so logs another reviewer processed in
        the meantime are skipped rather than overwritten.

        Raises:
            ForbiddenError: If the actor is not a teacher.
            ValidationError: On a bad id list, or when some ids are not
                pending logs of the teacher's courses.
            NotFoundError: When none of the ids qualifies.
        """
        if actor.role != UserRole.TEACHER:
            raise ForbiddenError("Only teachers can approve cases")
        ids = self._clean_case_ids(case_ids)
        comments = clean_teacher_comments(teacher_comments)

        course_ids = teacher_course_ids(self.db, actor.user_id)
        eligible = self._eligible_for_approval(ids, course_ids)
        if not eligible:
            raise NotFoundError("No valid cases found for approval")
        if len(eligible) != len(ids):
            invalid = [log_id for log_id in ids if log_id not in eligible]
            raise ValidationError(
                f"Some cases are not valid for approval. Invalid IDs: {', '.join(invalid)}",
                fields={"case_ids": ", ".join(invalid)},
            )

        now = utc_now()
        approved = (
            self.db.query(CaseLogModel)
            .filter(
                CaseLogModel.log_id.in_(ids),
                CaseLogModel.course_id.in_(course_ids),
                CaseLogModel.status.in_(PENDING_STATUSES),
            )
            .update(
                {
                    "status": LogStatus.APPROVED,
                    "approved_by_id": actor.user_id,
                    "approved_at": now,
                    "rejection_reason": None,
                    "teacher_comments": comments,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        approved_rows = (
            self.db.query(CaseLogModel.log_id, CaseLogModel.course_id)
            .filter(
                CaseLogModel.log_id.in_(ids),
                CaseLogModel.status == LogStatus.APPROVED,
                CaseLogModel.approved_by_id == actor.user_id,
                CaseLogModel.approved_at == now,
            )
            .all()
        )
        for log_id, course_id in approved_rows:
            record_activity(self.db, actor.user_id, course_id, "LOG_APPROVED", log_id=log_id, bulk=True)
        self.db.commit()

        approved_ids = [row[0] for row in approved_rows]
        if approved < len(ids):
            logger.warning("Bulk approve by %s skipped %d already processed logs", actor.user_id, len(ids) - approved)
        logger.info("Bulk approved %d/%d logs by %s", approved, len(ids), actor.user_id)
        return BulkApproveResult(
            approved_count=approved,
            requested_count=len(ids),
            approved_ids=approved_ids,
        )

    # --- Helpers ---

    def _load_for_review(self, actor: User, log_id: str, action: str) -> CaseLogModel:
        model = self.get_log(actor, log_id)
        if not can_review_log(actor, model):
            raise ForbiddenError("Only a teacher of this course can review this log")
        if model.status not in PENDING_STATUSES:
            raise InvalidTransitionError(log_id, model.status, action)
        return model

    def _transition(
        self,
        actor: User,
        model: CaseLogModel,
        expected: Iterable[LogStatus],
        values: Dict,
        activity: str,
        action: str,
    ) -> CaseLogModel:
        """Apply ``values`` only if the row is still in one of ``expected``."""
        log_id = model.log_id
        previous = model.status
        changed = (
            self.db.query(CaseLogModel)
            .filter(CaseLogModel.log_id == log_id, CaseLogModel.status.in_(tuple(expected)))
            .update(values, synchronize_session=False)
        )
        if not changed:
            self.db.rollback()
            logger.info("Lost race to %s log %s", action, log_id)
            raise ConflictError(f"Log '{log_id}' was already processed; reload and try again")

        new_status = values.get("status", previous)
        record_activity(
            self.db,
            actor.user_id,
            model.course_id,
            activity,
            log_id=log_id,
            case_no=model.case_no,
            from_status=previous.value,
            to_status=new_status.value,
        )
        self.db.commit()
        logger.info(
            "Log %s (%s) %s -> %s by %s",
            log_id,
            model.case_no,
            previous.value,
            new_status.value,
            actor.user_id,
        )
        self.db.expire_all()
        return self._load(log_id)

    def _eligible_for_approval(self, ids: List[str], course_ids: List[str]) -> set:
        if not course_ids:
            return set()
        rows = (
            self.db.query(CaseLogModel.log_id)
            .filter(
                CaseLogModel.log_id.in_(ids),
                CaseLogModel.course_id.in_(course_ids),
                CaseLogModel.status.in_(PENDING_STATUSES),
            )
            .all()
        )
        return {row[0] for row in rows}

    @staticmethod
    def _clean_case_ids(case_ids: Iterable[str]) -> List[str]:
        ids = list(case_ids or [])
        if not ids:
            raise ValidationError("Case IDs must be a non-empty array", fields={"case_ids": "required"})
        if len(ids) > BULK_APPROVE_MAX:
            raise ValidationError(
                f"Cannot approve more than {BULK_APPROVE_MAX} cases at once",
                fields={"case_ids": f"at most {BULK_APPROVE_MAX} ids"},
            )
        if any(not isinstance(i, str) or not i.strip() for i in ids):
            raise ValidationError("All case IDs must be non-empty strings", fields={"case_ids": "invalid id"})
        # Keep first occurrence order
        return list(dict.fromkeys(i.strip() for i in ids))


def clean_rejection_reason(reason: Optional[str]) -> str:
    text = (reason or "").strip()
    if not (REJECTION_REASON_MIN_LENGTH <= len(text) <= REJECTION_REASON_MAX_LENGTH):
        raise ValidationError(
            f"Rejection reason must be between {REJECTION_REASON_MIN_LENGTH} "
            f"and {REJECTION_REASON_MAX_LENGTH} characters",
            fields={
                "rejection_reason": f"must be {REJECTION_REASON_MIN_LENGTH}-{REJECTION_REASON_MAX_LENGTH} characters"
            },
        )
    return text


def clean_teacher_comments(comments: Optional[str]) -> Optional[str]:
    if comments is None:
        return None
    text = comments.strip()
    if len(text) > TEACHER_COMMENTS_MAX_LENGTH:
        raise ValidationError(
            f"Teacher comments cannot exceed {TEACHER_COMMENTS_MAX_LENGTH} characters",
            fields={"teacher_comments": f"at most {TEACHER_COMMENTS_MAX_LENGTH} characters"},
        )
    return text or None
