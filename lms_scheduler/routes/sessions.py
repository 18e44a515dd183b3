from flask import Blueprint
from flask_login import login_required, current_user

from lms_scheduler.services.attendance_service import SessionAttendanceTracker
from lms_scheduler.services.error_service import ValidationError, handle_errors
from lms_scheduler.services.validation_service import ValidationService
from lms_scheduler.utils.helper import success_response

bp = Blueprint('sessions', __name__)


@bp.route('/<int:class_id>/<session_date>/cancel', methods=['POST'])
@login_required
@handle_errors
def cancel_session(class_id, session_date):
    """Cancel one occurrence of a class that nobody has joined yet"""
    date_obj, error = ValidationService.parse_date(session_date, "Session date")
    if error:
        raise ValidationError({'session_date': error})

    session = SessionAttendanceTracker().cancel_session(class_id, date_obj, current_user)
    return success_response(session.to_dict(include_participants=False))
