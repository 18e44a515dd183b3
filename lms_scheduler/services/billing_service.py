"""
Billing Reconciler

Keeps per-student billing transactions in line with the current roster,
schedule, price, currency and payment status of a class. Reconciliation is
diff based: it compares an old and a new ClassSnapshot and applies only the
transaction changes that difference implies. Every step is idempotent and
committed on its own, so a failed pass can be re-run with the same snapshots.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import ClassVar, Dict, List, Tuple

from lms_scheduler import db
from lms_scheduler.models.billing_transaction import BillingTransaction
from lms_scheduler.models.class_model import Class
from lms_scheduler.models.user import User
from lms_scheduler.services.error_service import (
    ConflictError, NotFoundError, ReconciliationWarning, ValidationError
)
from lms_scheduler.utils.clock import get_clock
from lms_scheduler.utils.locks import class_locks
from lms_scheduler.utils.permissions import ensure_can_manage, ensure_can_view

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingTerms:
    """Commercial terms of a class, one variant per payment status"""
    list_amount: float
    currency: str
    status: ClassVar[str] = ''

    @property
    def amount(self):
        return self.list_amount


class UnpaidTerms(BillingTerms):
    status = 'unpaid'


class PaidTerms(BillingTerms):
    status = 'paid'


class DemoClassTerms(BillingTerms):
    status = 'democlass'

    @property
    def amount(self):
        return 0.0


TERMS_BY_STATUS = {
    'unpaid': UnpaidTerms,
    'paid': PaidTerms,
    'democlass': DemoClassTerms,
}


def terms_for(payment_status, amount, currency):
    try:
        variant = TERMS_BY_STATUS[payment_status]
    except KeyError:
        raise ValueError(f"Unknown payment status: {payment_status}")
    return variant(float(amount or 0), currency)


@dataclass(frozen=True)
class ClassSnapshot:
    """Billing-relevant state of a class at one point in time"""
    class_id: int
    schedule_type: str
    subject: str
    tutor_id: int
    students: Tuple[int, ...]
    terms: BillingTerms
    session_dates: Tuple[date, ...]
    start_time: time
    duration: int

    @classmethod
    def of(cls, class_item):
        return cls(
            class_id=class_item.id,
            schedule_type=class_item.schedule_type,
            subject=class_item.subject,
            tutor_id=class_item.tutor_id,
            students=tuple(class_item.get_students()),
            terms=terms_for(class_item.payment_status, class_item.amount, class_item.currency),
            session_dates=tuple(class_item.get_session_dates()),
            start_time=class_item.start_time,
            duration=class_item.effective_duration,
        )

    def window_for(self, session_date):
        start = datetime.combine(session_date, self.start_time)
        return start, start + timedelta(minutes=self.duration)

    def to_dict(self):
        return {
            'class_id': self.class_id,
            'schedule_type': self.schedule_type,
            'tutor_id': self.tutor_id,
            'students': list(self.students),
            'payment_status': self.terms.status,
            'amount': self.terms.list_amount,
            'currency': self.terms.currency,
            'session_dates': [d.isoformat() for d in self.session_dates],
            'start_time': self.start_time.strftime('%H:%M') if self.start_time else None,
            'duration': self.duration,
        }


@dataclass
class ReconciliationResult:
    created: int = 0
    canceled: int = 0
    updated: int = 0
    steps: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            'created': self.created,
            'canceled': self.canceled,
            'updated': self.updated,
            'steps': list(self.steps),
        }


class BillingReconciler:
    """Computes and applies the minimal transaction changes for a class edit"""

    def __init__(self, clock=None):
        self.clock = clock or get_clock()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, class_id, old: ClassSnapshot, new: ClassSnapshot, actor_id=None) -> ReconciliationResult:
        """
        Bring transactions for class_id in line with the new snapshot

        Raises:
            ReconciliationWarning: one or more steps failed; steps that
            succeeded stay applied.
        """
        result = ReconciliationResult()
        failures = []

        added = [s for s in new.students if s not in old.students]
        removed = [s for s in old.students if s not in new.students]

        def run(step, fn, *args):
            try:
                created, canceled, updated = fn(*args)
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                logger.error(
                    f"Billing reconciliation step '{step}' failed for class {class_id}: {e}",
                    extra={'reconciliation': {
                        'class_id': class_id,
                        'step': step,
                        'actor_id': actor_id,
                        'old': old.to_dict(),
                        'new': new.to_dict(),
                    }},
                    exc_info=True
                )
                failures.append((step, str(e)))
                return
            result.created += created
            result.canceled += canceled
            result.updated += updated
            result.steps.append(step)

        if added:
            run('add_students', self._add_students, new, added, actor_id)

        if removed:
            run('remove_students', self._remove_students, class_id, removed, actor_id)

        if (old.session_dates != new.session_dates or old.start_time != new.start_time
                or old.duration != new.duration):
            continuing = [s for s in new.students if s not in added]
            run('schedule', self._apply_schedule, old, new, continuing, actor_id)

        if old.terms.status != new.terms.status:
            run('payment_status', self._apply_payment_status, new, actor_id)
        elif old.terms.list_amount != new.terms.list_amount or old.terms.currency != new.terms.currency:
            run('amount_currency', self._apply_amount_currency, new, actor_id)

        if old.tutor_id != new.tutor_id:
            run('tutor', self._apply_tutor, new, actor_id)

        if failures:
            steps = ', '.join(step for step, _ in failures)
            raise ReconciliationWarning(
                class_id,
                steps,
                '; '.join(message for _, message in failures),
                {
                    'actor_id': actor_id,
                    'old': old.to_dict(),
                    'new': new.to_dict(),
                    'applied': result.to_dict(),
                }
            )

        logger.info(f"Reconciled billing for class {class_id}: {result.to_dict()}")
        return result

    def _add_students(self, snapshot, student_ids, actor_id):
        created = self._ensure_transactions(snapshot, student_ids, snapshot.session_dates, actor_id)
        return created, 0, 0

    def _remove_students(self, class_id, student_ids, actor_id):
        rows = self._mutable_rows(class_id).filter(BillingTransaction.student_id.in_(student_ids)).all()
        for row in rows:
            row.cancel('Student removed from class', actor_id)
        return 0, len(rows), 0

    def _apply_schedule(self, old, new, continuing, actor_id):
        dropped = [d for d in old.session_dates if d not in new.session_dates]
        appeared = [d for d in new.session_dates if d not in old.session_dates]

        canceled = 0
        if dropped:
            rows = self._mutable_rows(new.class_id).filter(BillingTransaction.session_date.in_(dropped)).all()
            for row in rows:
                row.cancel('Session removed from schedule', actor_id)
            canceled = len(rows)

        created = 0
        if appeared and continuing:
            created = self._ensure_transactions(new, continuing, appeared, actor_id)

        updated = 0
        if old.start_time != new.start_time or old.duration != new.duration:
            for row in self._mutable_rows(new.class_id).all():
                start, end = new.window_for(row.session_date)
                if (row.scheduled_start, row.scheduled_end, row.duration_minutes) != (start, end, new.duration):
                    row.scheduled_start = start
                    row.scheduled_end = end
                    row.duration_minutes = new.duration
                    row.updated_by = actor_id
                    updated += 1
        return created, canceled, updated

    def _apply_payment_status(self, snapshot, actor_id):
        updated = 0
        for row in self._mutable_rows(snapshot.class_id).all():
            if row.apply_terms(snapshot.terms, actor_id):
                updated += 1
        return 0, 0, updated

    def _apply_amount_currency(self, snapshot, actor_id):
        updated = 0
        for row in self._mutable_rows(snapshot.class_id).all():
            amount = 0.0 if row.status == 'democlass' else snapshot.terms.amount
            if row.amount != amount or row.currency != snapshot.terms.currency:
                row.amount = amount
                row.currency = snapshot.terms.currency
                row.updated_by = actor_id
                updated += 1
        return 0, 0, updated

    def _apply_tutor(self, snapshot, actor_id):
        rows = self._mutable_rows(snapshot.class_id).filter(BillingTransaction.tutor_id != snapshot.tutor_id).all()
        for row in rows:
            row.tutor_id = snapshot.tutor_id
            row.updated_by = actor_id
        return 0, 0, len(rows)

    # ------------------------------------------------------------------
    # Transaction creation
    # ------------------------------------------------------------------

    def create_initial_transactions(self, class_item, actor_id=None, period=None) -> ReconciliationResult:
        """Bill a newly created class for the current billing period.

        One-time classes bill their single session; recurring classes bill the
        sessions inside period (default: the clock's calendar month). Demo
        classes are skipped.
        """
        result = ReconciliationResult()
        if class_item.payment_status == 'democlass' or not class_item.get_students():
            logger.info(f"Skipping initial billing for class {class_item.id} ({class_item.payment_status})")
            return result

        snapshot = ClassSnapshot.of(class_item)
        if class_item.is_recurring:
            period_start, period_end = period or self.current_period()
            dates = [d for d in snapshot.session_dates if period_start <= d <= period_end]
        else:
            dates = list(snapshot.session_dates)

        try:
            result.created = self._ensure_transactions(snapshot, snapshot.students, dates, actor_id)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Initial billing failed for class {class_item.id}: {e}", exc_info=True)
            raise ReconciliationWarning(class_item.id, 'initial_billing', str(e),
                                        {'actor_id': actor_id, 'new': snapshot.to_dict()})
        result.steps.append('initial_billing')
        return result

    def bill_period(self, class_item, period_start, period_end, actor_id=None) -> int:
        """Ensure transactions for every roster student on sessions inside the period"""
        if class_item.payment_status == 'democlass':
            return 0
        snapshot = ClassSnapshot.of(class_item)
        dates = [d for d in snapshot.session_dates if period_start <= d <= period_end]
        created = self._ensure_transactions(snapshot, snapshot.students, dates, actor_id)
        db.session.commit()
        return created

    def current_period(self):
        """First and last day of the clock's current month"""
        today = self.clock.today()
        start = today.replace(day=1)
        next_month = (start + timedelta(days=32)).replace(day=1)
        return start, next_month - timedelta(days=1)

    def _ensure_transactions(self, snapshot, student_ids, dates, actor_id):
        """Create missing (student, date) transactions; existing live rows are reused"""
        student_ids = list(student_ids)
        dates = list(dates)
        if not student_ids or not dates:
            return 0

        existing = {
            (row.student_id, row.session_date)
            for row in BillingTransaction.query.filter(
                BillingTransaction.class_id == snapshot.class_id,
                BillingTransaction.student_id.in_(student_ids),
                BillingTransaction.session_date.in_(dates),
                BillingTransaction.status != 'canceled'
            ).all()
        }
        parents = {
            user.id: user.parent_id
            for user in User.query.filter(User.id.in_(student_ids)).all()
        }

        created = 0
        for student_id in student_ids:
            for session_date in dates:
                if (student_id, session_date) in existing:
                    continue
                start, end = snapshot.window_for(session_date)
                db.session.add(BillingTransaction(
                    class_id=snapshot.class_id,
                    student_id=student_id,
                    tutor_id=snapshot.tutor_id,
                    parent_id=parents.get(student_id),
                    subject=snapshot.subject,
                    status=snapshot.terms.status,
                    amount=snapshot.terms.amount,
                    currency=snapshot.terms.currency,
                    session_date=session_date,
                    scheduled_start=start,
                    scheduled_end=end,
                    duration_minutes=snapshot.duration,
                    created_by=actor_id,
                    notes=''
                ))
                created += 1
        return created

    # ------------------------------------------------------------------
    # Cancellation, payments and reads
    # ------------------------------------------------------------------

    def cancel_for_class(self, class_id, actor_id=None, note='Class deleted') -> int:
        """Cancel every mutable transaction of a class. Caller commits."""
        rows = self._mutable_rows(class_id).all()
        for row in rows:
            row.cancel(note, actor_id)
        return len(rows)

    def mark_transaction_paid(self, transaction_id, actor, payment_method=None, payment_reference=None):
        """Record that a transaction has been paid outside the system"""
        if payment_method is not None and payment_method not in BillingTransaction.PAYMENT_METHODS:
            raise ValidationError({'payment_method': f"Payment method must be one of: "
                                                     f"{', '.join(BillingTransaction.PAYMENT_METHODS)}"})

        row = db.session.get(BillingTransaction, transaction_id)
        if row is None:
            raise NotFoundError("Billing transaction")
        class_id = row.class_id

        with class_locks.hold(class_id):
            row = BillingTransaction.query.filter_by(id=transaction_id).with_for_update().first()
            ensure_can_manage(actor, row.class_item)

            if row.status == 'paid':
                return row
            if row.status == 'canceled':
                raise ConflictError("Canceled transactions cannot be paid",
                                    {'transaction_id': transaction_id})

            row.mark_as_paid(self.clock.now(), payment_method, payment_reference, actor.id)
            db.session.commit()

        logger.info(f"Transaction {transaction_id} of class {class_id} marked paid by user {actor.id}")
        return row

    def list_transactions(self, class_id, actor, status=None):
        class_item = Class.live().filter_by(id=class_id).first()
        if class_item is None:
            raise NotFoundError("Class")
        ensure_can_view(actor, class_item)

        query = BillingTransaction.query.filter_by(class_id=class_id)
        if status:
            query = query.filter_by(status=status)
        if actor.role == 'student':
            query = query.filter_by(student_id=actor.id)
        elif actor.role == 'parent':
            query = query.filter_by(parent_id=actor.id)
        return query.order_by(BillingTransaction.session_date, BillingTransaction.student_id).all()

    def billing_report(self, actor, filters: Dict) -> Dict:
        filters = dict(filters)
        if actor.role == 'admin':
            filters['center_id'] = actor.center_id
        elif actor.role == 'tutor':
            filters['tutor_id'] = actor.id
        elif actor.role == 'student':
            filters['student_id'] = actor.id
        elif actor.role == 'parent':
            filters['parent_id'] = actor.id
        return BillingTransaction.get_billing_report(**filters)

    @staticmethod
    def _mutable_rows(class_id):
        return BillingTransaction.query.filter(
            BillingTransaction.class_id == class_id,
            BillingTransaction.status.in_(BillingTransaction.MUTABLE_STATUSES)
        )
