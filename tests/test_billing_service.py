from dataclasses import replace
from datetime import date, datetime, time

import pytest

from conftest import one_time_payload, recurring_payload
from lms_scheduler import db
from lms_scheduler.models import BillingTransaction
from lms_scheduler.services.billing_service import (
    ClassSnapshot, DemoClassTerms, PaidTerms, UnpaidTerms, terms_for
)
from lms_scheduler.services.error_service import (
    AuthorizationError, ConflictError, ErrorCode, ReconciliationWarning, ValidationError
)


def rows_by_student(class_id):
    rows = {}
    for row in BillingTransaction.query.filter_by(class_id=class_id).order_by(BillingTransaction.id):
        rows.setdefault(row.student_id, []).append(row)
    return rows


def test_terms_variants():
    assert isinstance(terms_for('unpaid', 20, 'USD'), UnpaidTerms)
    assert isinstance(terms_for('paid', 20, 'USD'), PaidTerms)

    demo = terms_for('democlass', 20, 'USD')
    assert isinstance(demo, DemoClassTerms)
    assert demo.status == 'democlass'
    assert demo.amount == 0.0
    assert demo.list_amount == 20.0

    assert terms_for('unpaid', 20, 'USD') == UnpaidTerms(20.0, 'USD')
    assert terms_for('unpaid', 20, 'USD') != PaidTerms(20.0, 'USD')

    with pytest.raises(ValueError):
        terms_for('refunded', 20, 'USD')


def test_roster_diff_is_minimal(registry, people):
    a, b, c, d = people.student_a.id, people.student_b.id, people.student_c.id, people.student_d.id
    class_item = registry.create(one_time_payload(people.tutor.id, [a, b, c]), people.admin).class_item
    before = {sid: (rows[0].id, rows[0].updated_at) for sid, rows in rows_by_student(class_item.id).items()}

    result = registry.update(class_item.id, {'student_ids': [b, c, d]}, people.admin)

    assert result.warnings == []
    assert (result.billing.created, result.billing.canceled, result.billing.updated) == (1, 1, 0)

    rows = rows_by_student(class_item.id)
    assert [r.status for r in rows[a]] == ['canceled']
    assert rows[a][0].notes == 'Student removed from class'
    assert [r.status for r in rows[d]] == ['unpaid']
    for sid in (b, c):
        assert len(rows[sid]) == 1
        assert (rows[sid][0].id, rows[sid][0].updated_at) == before[sid]
        assert rows[sid][0].status == 'unpaid'


def test_recurring_added_student_billed_for_every_session(registry, people):
    class_item = registry.create(recurring_payload(people.tutor.id, [people.student_a.id]), people.admin).class_item
    result = registry.update(class_item.id, {'student_ids': [people.student_a.id, people.student_b.id]},
                             people.admin)

    assert result.billing.created == 5
    dates = sorted(r.session_date for r in rows_by_student(class_item.id)[people.student_b.id])
    assert dates == class_item.get_session_dates()


def test_paid_transactions_are_immutable(registry, reconciler, people):
    a, b = people.student_a.id, people.student_b.id
    class_item = registry.create(one_time_payload(people.tutor.id, [a, b]), people.admin).class_item
    paid = rows_by_student(class_item.id)[a][0]
    reconciler.mark_transaction_paid(paid.id, people.admin, 'cash', 'RCPT-1')

    registry.update(class_item.id, {'student_ids': [b], 'amount': 35, 'currency': 'EUR'}, people.admin)
    registry.update(class_item.id, {'payment_status': 'democlass'}, people.admin)

    paid = db.session.get(BillingTransaction, paid.id)
    assert paid.status == 'paid'
    assert paid.amount == 20
    assert paid.currency == 'USD'
    assert paid.payment_reference == 'RCPT-1'

    other = rows_by_student(class_item.id)[b][0]
    assert (other.status, other.amount, other.currency) == ('democlass', 0.0, 'EUR')


def test_payment_status_round_trip(registry, people):
    class_item = registry.create(one_time_payload(people.tutor.id, [people.student_a.id]), people.admin).class_item

    result = registry.update(class_item.id, {'payment_status': 'democlass'}, people.admin)
    assert result.billing.updated == 1
    row = rows_by_student(class_item.id)[people.student_a.id][0]
    assert (row.status, row.amount) == ('democlass', 0.0)

    registry.update(class_item.id, {'payment_status': 'unpaid'}, people.admin)
    row = rows_by_student(class_item.id)[people.student_a.id][0]
    assert (row.status, row.amount) == ('unpaid', 20.0)


def test_amount_change_leaves_democlass_rows_free(registry, people):
    class_item = registry.create(
        one_time_payload(people.tutor.id, [people.student_a.id], payment_status='democlass'), people.admin
    ).class_item
    registry.update(class_item.id, {'student_ids': [people.student_a.id, people.student_b.id]}, people.admin)
    registry.update(class_item.id, {'amount': 50}, people.admin)

    for rows in rows_by_student(class_item.id).values():
        assert all(r.amount == 0.0 and r.status == 'democlass' for r in rows)


def test_tutor_change_moves_open_transactions(registry, people):
    class_item = registry.create(one_time_payload(people.tutor.id, [people.student_a.id]), people.admin).class_item
    result = registry.update(class_item.id, {'tutor_id': people.tutor_b.id}, people.admin)

    assert result.billing.updated == 1
    row = rows_by_student(class_item.id)[people.student_a.id][0]
    assert row.tutor_id == people.tutor_b.id


def test_schedule_edit_cancels_removed_dates_and_moves_windows(registry, people):
    class_item = registry.create(recurring_payload(people.tutor.id, [people.student_a.id]), people.admin).class_item

    result = registry.update(class_item.id, {'end_date': '2025-01-13', 'start_time': '17:00'}, people.admin)

    rows = rows_by_student(class_item.id)[people.student_a.id]
    live = sorted((r.session_date, r.scheduled_start) for r in rows if r.status == 'unpaid')
    assert live == [
        (date(2025, 1, 6), datetime(2025, 1, 6, 17, 0)),
        (date(2025, 1, 8), datetime(2025, 1, 8, 17, 0)),
        (date(2025, 1, 13), datetime(2025, 1, 13, 17, 0)),
    ]
    removed = sorted(r.session_date for r in rows if r.status == 'canceled')
    assert removed == [date(2025, 1, 15), date(2025, 1, 20)]
    assert all(r.notes == 'Session removed from schedule' for r in rows if r.status == 'canceled')
    assert result.billing.canceled == 2
    assert result.billing.updated == 3


def test_schedule_edit_bills_new_dates(registry, people):
    class_item = registry.create(recurring_payload(people.tutor.id, [people.student_a.id]), people.admin).class_item
    result = registry.update(class_item.id, {'recurring_days': ['monday', 'wednesday', 'friday']}, people.admin)

    assert result.billing.created == 2
    dates = sorted(r.session_date for r in rows_by_student(class_item.id)[people.student_a.id])
    assert set(dates) == set(class_item.get_session_dates())


def test_reconcile_is_idempotent(registry, reconciler, people):
    a, b, c, d = people.student_a.id, people.student_b.id, people.student_c.id, people.student_d.id
    class_item = registry.create(one_time_payload(people.tutor.id, [a, b, c]), people.admin).class_item

    old = ClassSnapshot.of(class_item)
    new = replace(old, students=(b, c, d), terms=UnpaidTerms(25.0, 'USD'))

    first = reconciler.reconcile(class_item.id, old, new, people.admin.id)
    assert (first.created, first.canceled) == (1, 1)
    assert first.updated == 2

    second = reconciler.reconcile(class_item.id, old, new, people.admin.id)
    assert (second.created, second.canceled, second.updated) == (0, 0, 0)
    assert BillingTransaction.query.filter_by(class_id=class_item.id).count() == 4


def test_failed_step_becomes_warning(registry, people, caplog):
    a, b = people.student_a.id, people.student_b.id
    class_item = registry.create(one_time_payload(people.tutor.id, [a]), people.admin).class_item

    def broken(*args):
        raise RuntimeError('ledger unavailable')

    registry.reconciler._add_students = broken
    with caplog.at_level('ERROR'):
        result = registry.update(class_item.id, {'student_ids': [b], 'title': 'Renamed'}, people.admin)

    assert result.class_item.title == 'Renamed'
    assert result.class_item.get_students() == [b]
    assert len(result.warnings) == 1
    warning = result.warnings[0]
    assert warning['code'] == ErrorCode.RECONCILIATION_WARNING
    assert warning['step'] == 'add_students'
    assert warning['class_id'] == class_item.id
    assert 'ledger unavailable' in caplog.text

    rows = rows_by_student(class_item.id)
    assert [r.status for r in rows[a]] == ['canceled']
    assert b not in rows


def test_retry_after_failure_heals(registry, reconciler, people):
    a, b = people.student_a.id, people.student_b.id
    class_item = registry.create(one_time_payload(people.tutor.id, [a]), people.admin).class_item
    old = ClassSnapshot.of(class_item)
    new = replace(old, students=(a, b))

    def boom(*args):
        raise RuntimeError('boom')

    reconciler._ensure_transactions = boom
    with pytest.raises(ReconciliationWarning) as exc:
        reconciler.reconcile(class_item.id, old, new)
    assert exc.value.step == 'add_students'

    del reconciler._ensure_transactions
    result = reconciler.reconcile(class_item.id, old, new)
    assert result.created == 1


def test_mark_paid_rules(registry, reconciler, people):
    class_item = registry.create(one_time_payload(people.tutor.id, [people.student_a.id, people.student_b.id]),
                                 people.admin).class_item
    rows = rows_by_student(class_item.id)
    first = rows[people.student_a.id][0]

    with pytest.raises(AuthorizationError):
        reconciler.mark_transaction_paid(first.id, people.admin_far)
    with pytest.raises(ValidationError):
        reconciler.mark_transaction_paid(first.id, people.admin, payment_method='barter')

    paid = reconciler.mark_transaction_paid(first.id, people.admin, 'card')
    assert paid.status == 'paid'
    assert paid.paid_at == datetime(2025, 1, 6, 9, 0)
    assert paid.updated_by == people.admin.id

    registry.update(class_item.id, {'student_ids': [people.student_a.id]}, people.admin)
    canceled = rows_by_student(class_item.id)[people.student_b.id][0]
    with pytest.raises(ConflictError):
        reconciler.mark_transaction_paid(canceled.id, people.admin)


def test_list_transactions_scoping(registry, reconciler, people):
    class_item = registry.create(one_time_payload(people.tutor.id, [people.student_a.id, people.student_b.id]),
                                 people.admin).class_item

    assert len(reconciler.list_transactions(class_item.id, people.admin)) == 2
    assert len(reconciler.list_transactions(class_item.id, people.tutor)) == 2
    assert [t.student_id for t in reconciler.list_transactions(class_item.id, people.student_b)] == \
        [people.student_b.id]
    assert [t.student_id for t in reconciler.list_transactions(class_item.id, people.parent)] == \
        [people.student_a.id]


def test_billing_report_totals(registry, reconciler, people):
    class_item = registry.create(
        one_time_payload(people.tutor.id, [people.student_a.id, people.student_b.id, people.student_c.id]),
        people.admin
    ).class_item
    rows = rows_by_student(class_item.id)
    reconciler.mark_transaction_paid(rows[people.student_a.id][0].id, people.admin, 'cash')
    registry.update(class_item.id, {'student_ids': [people.student_a.id, people.student_b.id]}, people.admin)

    report = reconciler.billing_report(people.admin, {'class_id': class_item.id})
    assert report['total_transactions'] == 3
    assert report['paid_amount'] == 20.0
    assert report['unpaid_amount'] == 20.0
    assert report['canceled'] == 1
    assert report['by_currency'] == {'USD': 40.0}

    assert reconciler.billing_report(people.admin_far, {})['total_transactions'] == 0


def test_snapshot_captures_billing_state(registry, people):
    class_item = registry.create(recurring_payload(people.tutor.id, [people.student_a.id]), people.admin).class_item
    snapshot = ClassSnapshot.of(class_item)

    assert snapshot.students == (people.student_a.id,)
    assert snapshot.terms == UnpaidTerms(15.0, 'USD')
    assert snapshot.start_time == time(16, 0)
    assert snapshot.duration == 60
    assert len(snapshot.session_dates) == 5
    assert snapshot.window_for(date(2025, 1, 8)) == (datetime(2025, 1, 8, 16, 0), datetime(2025, 1, 8, 17, 0))
