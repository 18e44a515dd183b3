from flask import Blueprint, request, current_app
from flask_login import login_required, current_user

from lms_scheduler.services.attendance_service import SessionAttendanceTracker
from lms_scheduler.services.class_service import ClassRegistry
from lms_scheduler.services.error_service import ValidationError, handle_errors
from lms_scheduler.services.validation_service import ValidationService
from lms_scheduler.utils.helper import get_json_payload, pagination_meta, success_response

bp = Blueprint('classes', __name__)


# ============ CLASS MANAGEMENT ============

@bp.route('', methods=['POST'])
@login_required
@handle_errors
def create_class():
    """Create a one-time or weekly recurring class"""
    result = ClassRegistry().create(get_json_payload(request), current_user)
    current_app.logger.info(f"Class {result.class_item.id} created via API by user {current_user.id}")
    return success_response(result.to_dict(), result.warnings, 201)


@bp.route('', methods=['GET'])
@login_required
@handle_errors
def list_classes():
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', None, type=int)
    filters = {
        'status': request.args.get('status'),
        'schedule_type': request.args.get('schedule_type'),
        'subject': request.args.get('subject', '').strip() or None,
        'tutor_id': request.args.get('tutor_id', None, type=int),
        'center_id': request.args.get('center_id', None, type=int),
    }

    pagination = ClassRegistry().list_classes(current_user, filters, page, per_page)
    return success_response({
        'classes': [class_item.to_dict() for class_item in pagination.items],
        'pagination': pagination_meta(pagination)
    })


@bp.route('/available-tutors', methods=['GET'])
@login_required
@handle_errors
def available_tutors():
    """Active tutors free for a date/time slot, optionally filtered by subject"""
    errors = {}
    date_obj, error = ValidationService.parse_date(request.args.get('date'))
    if error:
        errors['date'] = error
    start_time, error = ValidationService.parse_time(request.args.get('start_time'))
    if error:
        errors['start_time'] = error
    duration, error = ValidationService.parse_int(
        request.args.get('duration', current_app.config['DEFAULT_DURATION']), "Duration", minimum=1)
    if error:
        errors['duration'] = error
    if errors:
        raise ValidationError(errors)

    tutors = ClassRegistry().find_available_tutors(
        current_user, date_obj, start_time, duration,
        subject=request.args.get('subject'),
        center_id=request.args.get('center_id', None, type=int)
    )
    return success_response({'tutors': [tutor.to_dict() for tutor in tutors], 'count': len(tutors)})


@bp.route('/<int:class_id>', methods=['GET'])
@login_required
@handle_errors
def get_class(class_id):
    class_item = ClassRegistry().get_class(class_id, current_user)
    return success_response(class_item.to_dict())


@bp.route('/<int:class_id>', methods=['PUT'])
@login_required
@handle_errors
def update_class(class_id):
    """Partial update; billing problems come back as warnings"""
    result = ClassRegistry().update(class_id, get_json_payload(request), current_user)
    return success_response(result.to_dict(), result.warnings)


@bp.route('/<int:class_id>', methods=['DELETE'])
@login_required
@handle_errors
def delete_class(class_id):
    result = ClassRegistry().delete(class_id, current_user)
    return success_response({
        'id': class_id,
        'canceled_transactions': result.billing.canceled
    }, result.warnings)


# ============ LIVE SESSIONS ============

@bp.route('/<int:class_id>/join', methods=['POST'])
@login_required
@handle_errors
def join_session(class_id):
    data = SessionAttendanceTracker().join_session(class_id, current_user)
    return success_response(data)


@bp.route('/<int:class_id>/leave', methods=['POST'])
@login_required
@handle_errors
def leave_session(class_id):
    data = SessionAttendanceTracker().leave_session(class_id, current_user)
    return success_response(data)


@bp.route('/<int:class_id>/session-status', methods=['GET'])
@login_required
@handle_errors
def session_status(class_id):
    data = SessionAttendanceTracker().get_session_status(class_id, current_user)
    return success_response(data)


@bp.route('/<int:class_id>/history', methods=['GET'])
@login_required
@handle_errors
def session_history(class_id):
    page = request.args.get('page', 1, type=int)
    limit = request.args.get('limit', None, type=int)

    pagination = SessionAttendanceTracker().list_session_history(class_id, current_user, page, limit)
    return success_response({
        'sessions': [session.to_dict() for session in pagination.items],
        'pagination': pagination_meta(pagination)
    })
