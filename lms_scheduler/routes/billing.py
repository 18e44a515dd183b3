from flask import Blueprint, request
from flask_login import login_required, current_user

from lms_scheduler.services.billing_service import BillingReconciler
from lms_scheduler.services.error_service import ValidationError, handle_errors
from lms_scheduler.services.validation_service import ValidationService
from lms_scheduler.utils.helper import get_json_payload, success_response

bp = Blueprint('billing', __name__)


@bp.route('/classes/<int:class_id>/transactions', methods=['GET'])
@login_required
@handle_errors
def class_transactions(class_id):
    status = request.args.get('status')
    transactions = BillingReconciler().list_transactions(class_id, current_user, status=status)
    return success_response({
        'transactions': [t.to_dict() for t in transactions],
        'count': len(transactions)
    })


@bp.route('/transactions/<int:transaction_id>/mark-paid', methods=['POST'])
@login_required
@handle_errors
def mark_paid(transaction_id):
    """Record an externally settled payment"""
    data = get_json_payload(request)
    transaction = BillingReconciler().mark_transaction_paid(
        transaction_id,
        current_user,
        payment_method=data.get('payment_method'),
        payment_reference=data.get('payment_reference')
    )
    return success_response(transaction.to_dict())


@bp.route('/report', methods=['GET'])
@login_required
@handle_errors
def billing_report():
    """Totals by status, scoped to what the caller may see"""
    filters = {
        'class_id': request.args.get('class_id', None, type=int),
        'student_id': request.args.get('student_id', None, type=int),
        'tutor_id': request.args.get('tutor_id', None, type=int),
        'center_id': request.args.get('center_id', None, type=int),
    }

    errors = {}
    for key, label in (('date_from', 'Date from'), ('date_to', 'Date to')):
        raw = request.args.get(key)
        if not raw:
            filters[key] = None
            continue
        filters[key], error = ValidationService.parse_date(raw, label)
        if error:
            errors[key] = error
    if errors:
        raise ValidationError(errors)

    report = BillingReconciler().billing_report(current_user, filters)
    return success_response(report)
