"""
Class Registry

Create, update and delete classes. Runs the recurrence generator and the
availability checks before anything is written, and hands billing side
effects to the BillingReconciler once the class itself is committed.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from flask import current_app
from sqlalchemy import false, or_

from lms_scheduler import db
from lms_scheduler.models.class_model import Class, ClassSession
from lms_scheduler.models.user import User
from lms_scheduler.services.availability_service import AvailabilityService
from lms_scheduler.services.billing_service import (
    BillingReconciler, ClassSnapshot, ReconciliationResult
)
from lms_scheduler.services.error_service import (
    AuthorizationError, ConflictError, NotFoundError, ReconciliationWarning, ValidationError
)
from lms_scheduler.services.validation_service import ValidationService
from lms_scheduler.utils.clock import get_clock
from lms_scheduler.utils.locks import class_locks
from lms_scheduler.utils.permissions import (
    ensure_can_manage, ensure_can_view, ensure_manager, resolve_center_id
)
from lms_scheduler.utils.recurrence import generate_session_dates

logger = logging.getLogger(__name__)

# Patch keys that require the session plan to be recomputed
SCHEDULE_FIELDS = ('tutor_id', 'start_time', 'duration', 'custom_duration',
                   'class_date', 'start_date', 'end_date', 'recurring_days')

# Patch keys copied onto the class as-is
SIMPLE_FIELDS = ('title', 'subject', 'description', 'notes', 'max_capacity', 'amount', 'currency',
                 'payment_status', 'join_window_minutes', 'start_time', 'duration', 'custom_duration',
                 'class_date', 'start_date', 'end_date', 'tutor_id')


@dataclass
class ClassOperationResult:
    class_item: Class
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    billing: Optional[ReconciliationResult] = None

    def to_dict(self):
        data = self.class_item.to_dict()
        if self.billing is not None:
            data['billing'] = self.billing.to_dict()
        return data


@dataclass
class SessionPlan:
    dates: List[Any]
    conflicts: set
    warnings: List[Dict[str, Any]]


class ClassRegistry:
    """Owns the class lifecycle: scheduling, roster and commercial terms"""

    def __init__(self, clock=None, reconciler=None):
        self.clock = clock or get_clock()
        self.reconciler = reconciler or BillingReconciler(self.clock)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, data: Dict[str, Any], actor) -> ClassOperationResult:
        """
        Create a class with its session stubs and initial billing

        Raises:
            ValidationError, NotFoundError, AuthorizationError, ConflictError
        """
        ensure_manager(actor)

        cleaned, errors = ValidationService.validate_class_payload(data or {})
        if 'duration' not in errors and 'custom_duration' not in errors:
            errors.update(ValidationService.validate_duration(cleaned.get('duration'),
                                                              cleaned.get('custom_duration')))
        if 'schedule_type' in cleaned:
            errors.update(ValidationService.validate_schedule(
                cleaned['schedule_type'], cleaned.get('class_date'), cleaned.get('start_date'),
                cleaned.get('end_date'), cleaned.get('recurring_days')))
        if errors:
            raise ValidationError(errors)

        tutor = self._load_tutor(cleaned['tutor_id'])
        requested_center = cleaned.get('center_id')
        if requested_center is None and actor.role == 'superadmin':
            requested_center = tutor.center_id
        center_id = resolve_center_id(actor, requested_center)
        self._check_same_center(tutor, center_id, 'Tutor')

        students = self._load_students(cleaned['student_ids'], center_id)
        self._check_capacity(len(students), cleaned['max_capacity'])

        duration = cleaned.get('custom_duration') or cleaned['duration']
        plan = self._plan_sessions(
            cleaned['schedule_type'], tutor.id, cleaned['start_time'], duration,
            class_date=cleaned.get('class_date'),
            start_date=cleaned.get('start_date'),
            end_date=cleaned.get('end_date'),
            recurring_days=cleaned.get('recurring_days'),
        )

        is_recurring = cleaned['schedule_type'] == 'weekly-recurring'
        class_item = Class(
            title=cleaned['title'],
            subject=cleaned['subject'],
            description=cleaned.get('description'),
            notes=cleaned.get('notes'),
            center_id=center_id,
            created_by=actor.id,
            schedule_type=cleaned['schedule_type'],
            class_date=None if is_recurring else cleaned['class_date'],
            start_date=cleaned['start_date'] if is_recurring else None,
            end_date=cleaned['end_date'] if is_recurring else None,
            start_time=cleaned['start_time'],
            duration=cleaned['duration'],
            custom_duration=cleaned.get('custom_duration'),
            tutor_id=tutor.id,
            max_capacity=cleaned['max_capacity'],
            amount=cleaned['amount'],
            currency=cleaned['currency'],
            payment_status=cleaned['payment_status'],
            join_window_minutes=cleaned['join_window_minutes'],
            status='scheduled',
            created_at=self.clock.now(),
        )
        class_item.set_students([s.id for s in students])
        if is_recurring:
            class_item.set_recurring_days(cleaned['recurring_days'])
        class_item.sessions = [
            ClassSession(session_date=d, status='scheduled', conflict=d in plan.conflicts)
            for d in plan.dates
        ]

        config = current_app.config
        class_item.generate_meeting(config['MEETING_PLATFORM'], config['MEETING_LINK_PREFIX'])

        db.session.add(class_item)
        db.session.commit()

        logger.info(
            f"Class {class_item.id} created by user {actor.id}: {class_item.schedule_type}, "
            f"{len(plan.dates)} session(s), {len(students)} student(s)"
        )

        result = ClassOperationResult(class_item, list(plan.warnings))
        try:
            result.billing = self.reconciler.create_initial_transactions(class_item, actor.id)
        except ReconciliationWarning as warning:
            logger.warning(f"Class {class_item.id} created without complete billing: {warning}")
            result.warnings.append(warning.to_dict())
        return result

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, class_id, patch: Dict[str, Any], actor) -> ClassOperationResult:
        """
        Apply a partial update, then reconcile billing against the change

        The class change is committed before reconciliation starts; billing
        failures come back as warnings and never undo it.
        """
        ensure_manager(actor)

        cleaned, errors = ValidationService.validate_class_payload(patch or {}, partial=True)
        if errors:
            raise ValidationError(errors)

        with class_locks.hold(class_id):
            class_item = Class.live().filter_by(id=class_id).with_for_update().first()
            if class_item is None:
                raise NotFoundError("Class")
            ensure_can_manage(actor, class_item)

            if 'schedule_type' in cleaned and cleaned['schedule_type'] != class_item.schedule_type:
                raise ValidationError({'schedule_type': 'Schedule type cannot be changed'})
            cleaned.pop('schedule_type', None)
            cleaned.pop('center_id', None)

            merged = self._merge(class_item, cleaned)
            errors = {}
            errors.update(ValidationService.validate_duration(merged['duration'], merged['custom_duration']))
            errors.update(ValidationService.validate_schedule(
                class_item.schedule_type, merged['class_date'], merged['start_date'],
                merged['end_date'], merged['recurring_days']))
            if errors:
                raise ValidationError(errors)

            if 'tutor_id' in cleaned and cleaned['tutor_id'] != class_item.tutor_id:
                tutor = self._load_tutor(cleaned['tutor_id'])
                self._check_same_center(tutor, class_item.center_id, 'Tutor')

            if 'student_ids' in cleaned:
                student_ids = [s.id for s in self._load_students(cleaned['student_ids'], class_item.center_id)]
            else:
                student_ids = class_item.get_students()
            self._check_capacity(len(student_ids), merged['max_capacity'])

            plan = None
            if any(key in cleaned and merged[key] != self._current(class_item, key) for key in SCHEDULE_FIELDS):
                plan = self._plan_sessions(
                    class_item.schedule_type, merged['tutor_id'], merged['start_time'],
                    merged['custom_duration'] or merged['duration'],
                    class_date=merged['class_date'],
                    start_date=merged['start_date'],
                    end_date=merged['end_date'],
                    recurring_days=merged['recurring_days'],
                    exclude_class_id=class_item.id,
                )

            old = ClassSnapshot.of(class_item)

            for key in SIMPLE_FIELDS:
                if key in cleaned:
                    setattr(class_item, key, cleaned[key])
            if 'recurring_days' in cleaned:
                class_item.set_recurring_days(cleaned['recurring_days'])
            class_item.set_students(student_ids)
            class_item.calculate_end_time()
            if plan is not None:
                self._sync_sessions(class_item, plan)
            class_item.updated_at = self.clock.now()

            db.session.commit()
            logger.info(f"Class {class_item.id} updated by user {actor.id}: {sorted(cleaned.keys())}")

            result = ClassOperationResult(class_item, list(plan.warnings) if plan else [])
            new = ClassSnapshot.of(class_item)
            try:
                result.billing = self.reconciler.reconcile(class_item.id, old, new, actor.id)
            except ReconciliationWarning as warning:
                logger.warning(f"Class {class_item.id} updated but billing is out of sync: {warning}")
                result.warnings.append(warning.to_dict())

        return result

    @staticmethod
    def _current(class_item, key):
        if key == 'recurring_days':
            return class_item.get_recurring_days()
        return getattr(class_item, key)

    def _merge(self, class_item, cleaned):
        keys = SIMPLE_FIELDS + ('recurring_days',)
        return {key: cleaned[key] if key in cleaned else self._current(class_item, key) for key in keys}

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, class_id, actor) -> ClassOperationResult:
        """Soft delete the class and cancel its unpaid and democlass transactions"""
        ensure_manager(actor)

        with class_locks.hold(class_id):
            class_item = Class.live().filter_by(id=class_id).with_for_update().first()
            if class_item is None:
                raise NotFoundError("Class")
            ensure_can_manage(actor, class_item)

            canceled = self.reconciler.cancel_for_class(class_item.id, actor.id, 'Class deleted')
            class_item.soft_delete(self.clock.now())
            db.session.commit()

        logger.info(f"Class {class_id} deleted by user {actor.id}; {canceled} transaction(s) canceled")
        return ClassOperationResult(class_item, [], ReconciliationResult(canceled=canceled, steps=['delete']))

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_class(self, class_id, actor):
        class_item = Class.live().filter_by(id=class_id).first()
        if class_item is None:
            raise NotFoundError("Class")
        ensure_can_view(actor, class_item)
        return class_item

    def list_classes(self, actor, filters=None, page=1, per_page=None):
        """Paginated classes visible to the actor"""
        filters = filters or {}
        config = current_app.config
        per_page = min(per_page or config['CLASSES_PER_PAGE'], config['MAX_PER_PAGE'])

        query = Class.live()
        if actor.role == 'superadmin':
            if filters.get('center_id'):
                query = query.filter(Class.center_id == filters['center_id'])
        elif actor.role == 'admin':
            query = query.filter(Class.center_id == actor.center_id)
        elif actor.role == 'tutor':
            query = query.filter(Class.tutor_id == actor.id)
        elif actor.role == 'student':
            query = query.filter(roster_contains([actor.id]))
        elif actor.role == 'parent':
            children = [u.id for u in User.query.filter_by(parent_id=actor.id).all()]
            if not children:
                query = query.filter(false())
            else:
                query = query.filter(roster_contains(children))
        else:
            raise AuthorizationError('Role cannot list classes')

        if filters.get('status'):
            query = query.filter(Class.status == filters['status'])
        if filters.get('schedule_type'):
            query = query.filter(Class.schedule_type == filters['schedule_type'])
        if filters.get('subject'):
            query = query.filter(Class.subject.ilike(f"%{filters['subject']}%"))
        if filters.get('tutor_id'):
            query = query.filter(Class.tutor_id == filters['tutor_id'])

        return query.order_by(Class.created_at.desc(), Class.id.desc()).paginate(
            page=page, per_page=per_page, error_out=False
        )

    def find_available_tutors(self, actor, date_obj, start_time, duration, subject=None, center_id=None):
        ensure_manager(actor)
        if actor.role == 'admin':
            center_id = actor.center_id
        return AvailabilityService.find_available_tutors(
            date_obj, start_time, duration, subject=subject, center_id=center_id
        )

    # ------------------------------------------------------------------
    # Period billing
    # ------------------------------------------------------------------

    def generate_period_billing(self, period_start, period_end, actor_id=None) -> Dict[str, Any]:
        """Bill every live recurring class for its sessions inside the period"""
        classes = Class.live().filter(
            Class.schedule_type == 'weekly-recurring',
            Class.status == 'scheduled',
            Class.payment_status != 'democlass'
        ).order_by(Class.id).all()

        summary = {'classes': len(classes), 'created': 0, 'failed': []}
        for class_item in classes:
            with class_locks.hold(class_item.id):
                try:
                    summary['created'] += self.reconciler.bill_period(
                        class_item, period_start, period_end, actor_id)
                except Exception as e:
                    db.session.rollback()
                    logger.error(f"Period billing failed for class {class_item.id}: {e}", exc_info=True)
                    summary['failed'].append(class_item.id)

        logger.info(f"Period billing {period_start} to {period_end}: {summary}")
        return summary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _plan_sessions(self, schedule_type, tutor_id, start_time, duration, class_date=None,
                       start_date=None, end_date=None, recurring_days=None, exclude_class_id=None):
        """Session dates for a schedule, with availability applied.

        One-time classes fail hard on a conflict; recurring classes record it
        per date and keep going.
        """
        if schedule_type == 'one-time':
            available, conflicting = AvailabilityService.check_tutor_availability(
                tutor_id, class_date, start_time, duration, exclude_class_id=exclude_class_id
            )
            if not available:
                raise ConflictError(
                    'Tutor is not available at the requested time',
                    {
                        'date': class_date.isoformat(),
                        'time': start_time.strftime('%H:%M'),
                        'conflicting_class_id': conflicting.id
                    }
                )
            return SessionPlan([class_date], set(), [])

        dates = generate_session_dates(start_date, end_date, recurring_days)
        if not dates:
            raise ValidationError({'recurring_days': 'No sessions fall on the selected days in this date range'})

        conflicts = set()
        warnings = []
        for session_date in dates:
            available, conflicting = AvailabilityService.check_tutor_availability(
                tutor_id, session_date, start_time, duration, exclude_class_id=exclude_class_id
            )
            if available:
                continue
            conflicts.add(session_date)
            message = f"Tutor has another class ({conflicting.id}) at this time"
            logger.warning(f"Tutor {tutor_id} conflict on {session_date} at {start_time.strftime('%H:%M')}: {message}")
            warnings.append({
                'date': session_date.isoformat(),
                'time': start_time.strftime('%H:%M'),
                'message': message
            })
        return SessionPlan(dates, conflicts, warnings)

    @staticmethod
    def _sync_sessions(class_item, plan):
        """Replace stubs with the new plan; kept dates keep their status, completed ones always stay"""
        existing = {stub.session_date: stub for stub in class_item.sessions}
        stubs = []
        for session_date in plan.dates:
            stub = existing.pop(session_date, None)
            if stub is None:
                stub = ClassSession(session_date=session_date, status='scheduled')
            stub.conflict = session_date in plan.conflicts
            stubs.append(stub)
        stubs.extend(stub for stub in existing.values() if stub.status == 'completed')
        stubs.sort(key=lambda stub: stub.session_date)
        class_item.sessions = stubs

    @staticmethod
    def _load_tutor(tutor_id):
        tutor = db.session.get(User, tutor_id)
        if tutor is None:
            raise NotFoundError("Tutor")
        if tutor.role != 'tutor':
            raise ValidationError({'tutor_id': 'Selected user is not a tutor'})
        if not tutor.is_active:
            raise ValidationError({'tutor_id': 'Tutor is not active'})
        return tutor

    def _load_students(self, student_ids, center_id):
        if not student_ids:
            return []
        found = {u.id: u for u in User.query.filter(User.id.in_(student_ids)).all()}
        students = []
        for student_id in student_ids:
            student = found.get(student_id)
            if student is None:
                raise NotFoundError(f"Student {student_id}")
            if student.role != 'student':
                raise ValidationError({'student_ids': f'User {student_id} is not a student'})
            if not student.is_active:
                raise ValidationError({'student_ids': f'Student {student_id} is not active'})
            self._check_same_center(student, center_id, f'Student {student_id}')
            students.append(student)
        return students

    @staticmethod
    def _check_same_center(user, center_id, label):
        if user.center_id != center_id:
            raise AuthorizationError(f'{label} belongs to another center')

    @staticmethod
    def _check_capacity(count, capacity):
        if count > capacity:
            raise ConflictError(
                f'Class capacity exceeded ({count} students, capacity {capacity})',
                {'students': count, 'max_capacity': capacity}
            )


def roster_contains(student_ids):
    """Match classes whose JSON roster holds any of the ids"""
    clauses = []
    for student_id in student_ids:
        clauses.extend([
            Class.students == f'[{student_id}]',
            Class.students.like(f'[{student_id},%'),
            Class.students.like(f'% {student_id},%'),
            Class.students.like(f'% {student_id}]'),
        ])
    return or_(*clauses)
