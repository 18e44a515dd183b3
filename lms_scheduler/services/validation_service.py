"""
Validation Service for class scheduling payloads
Provides consistent parsing and validation of client input
"""
import math
from datetime import datetime
from typing import Any, Dict, Tuple
from flask import current_app

from lms_scheduler.utils.recurrence import normalize_weekdays

# Fields a class update may carry
UPDATABLE_FIELDS = (
    'title', 'subject', 'description', 'notes', 'tutor_id', 'student_ids', 'max_capacity',
    'start_time', 'duration', 'custom_duration', 'class_date', 'start_date', 'end_date',
    'recurring_days', 'amount', 'currency', 'payment_status', 'join_window_minutes',
    'schedule_type'
)


class ValidationService:
    """Centralized validation service"""

    @staticmethod
    def parse_time(value) -> Tuple[Any, str]:
        """Accept 'HH:MM' or 'HH:MM:SS'"""
        if not value:
            return None, "Start time is required"
        for fmt in ('%H:%M', '%H:%M:%S'):
            try:
                return datetime.strptime(str(value), fmt).time().replace(second=0), ""
            except ValueError:
                continue
        return None, "Invalid time format (expected HH:MM)"

    @staticmethod
    def parse_date(value, label="Date") -> Tuple[Any, str]:
        """Accept 'YYYY-MM-DD' or a full ISO timestamp"""
        if not value:
            return None, f"{label} is required"
        text = str(value)
        try:
            return datetime.strptime(text[:10], '%Y-%m-%d').date(), ""
        except ValueError:
            return None, f"Invalid {label.lower()} format (expected YYYY-MM-DD)"

    @staticmethod
    def parse_int(value, label, minimum=None, maximum=None) -> Tuple[Any, str]:
        if isinstance(value, bool):
            return None, f"{label} must be a whole number"
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None, f"{label} must be a whole number"
        if isinstance(value, float) and value != number:
            return None, f"{label} must be a whole number"
        if minimum is not None and number < minimum:
            return None, f"{label} must be at least {minimum}"
        if maximum is not None and number > maximum:
            return None, f"{label} must be at most {maximum}"
        return number, ""

    @staticmethod
    def validate_amount(value) -> Tuple[Any, str]:
        if value is None or isinstance(value, bool):
            return None, "Amount is required and must be a non-negative number"
        try:
            amount = float(value)
        except (TypeError, ValueError):
            return None, "Amount is required and must be a non-negative number"
        if not math.isfinite(amount) or amount < 0:
            return None, "Amount is required and must be a non-negative number"
        return amount, ""

    @staticmethod
    def validate_currency(value) -> Tuple[Any, str]:
        supported = current_app.config['SUPPORTED_CURRENCIES']
        currency = str(value or '').upper()
        if currency not in supported:
            return None, f"Invalid currency. Must be one of: {', '.join(supported)}"
        return currency, ""

    @staticmethod
    def validate_payment_status(value) -> Tuple[Any, str]:
        if value not in ('unpaid', 'paid', 'democlass'):
            return None, "Invalid payment status. Must be: unpaid, paid, or democlass"
        return value, ""

    @staticmethod
    def validate_student_ids(value) -> Tuple[Any, str]:
        if value is None:
            return [], ""
        if not isinstance(value, list):
            return None, "Students must be a list of user ids"
        student_ids = []
        for raw in value:
            if raw in (None, '', 'undefined'):
                continue
            student_id, error = ValidationService.parse_int(raw, "Student id", minimum=1)
            if error:
                return None, f"Invalid student id: {raw}"
            if student_id not in student_ids:
                student_ids.append(student_id)
        return student_ids, ""

    @staticmethod
    def validate_duration(duration, custom_duration) -> Dict[str, str]:
        """Duration must be a predefined length unless a custom one is given"""
        errors = {}
        config = current_app.config
        if custom_duration is not None:
            low, high = config['CUSTOM_DURATION_RANGE']
            if not low <= custom_duration <= high:
                errors['custom_duration'] = f"Custom duration must be between {low} and {high} minutes"
        elif duration not in config['ALLOWED_DURATIONS']:
            allowed = ', '.join(str(d) for d in config['ALLOWED_DURATIONS'])
            errors['duration'] = f"Duration must be one of: {allowed}"
        return errors

    @staticmethod
    def validate_schedule(schedule_type, class_date, start_date, end_date, recurring_days) -> Dict[str, str]:
        """Cross-field schedule rules, run on the merged (old + patch) values"""
        errors = {}
        if schedule_type == 'one-time':
            if not class_date:
                errors['class_date'] = "Class date is required for one-time classes"
        elif schedule_type == 'weekly-recurring':
            if not start_date:
                errors['start_date'] = "Start date is required for recurring classes"
            if not end_date:
                errors['end_date'] = "End date is required for recurring classes"
            if start_date and end_date and start_date >= end_date:
                errors['end_date'] = "End date must be after start date"
            if not recurring_days:
                errors['recurring_days'] = "At least one recurring day is required"
        else:
            errors['schedule_type'] = "Schedule type must be 'one-time' or 'weekly-recurring'"
        return errors

    @staticmethod
    def validate_class_payload(data: Dict[str, Any], partial: bool = False) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """
        Parse a create (or, with partial=True, update) payload

        Args:
            data: Request JSON
            partial: Only validate the keys present

        Returns:
            Tuple of (cleaned_values, errors)
        """
        config = current_app.config
        cleaned = {}
        errors = {}

        def present(key):
            return key in data and data[key] is not None

        for key in ('title', 'subject'):
            if present(key):
                value = str(data[key]).strip()
                if not value:
                    errors[key] = f"{key.title()} cannot be empty"
                else:
                    cleaned[key] = value[:200]
            elif not partial:
                errors[key] = f"{key.title()} is required"

        for key in ('description', 'notes'):
            if key in data:
                cleaned[key] = str(data[key] or '').strip() or None

        if present('tutor_id'):
            value, error = ValidationService.parse_int(data['tutor_id'], "Tutor id", minimum=1)
            if error:
                errors['tutor_id'] = "Invalid tutor ID format"
            else:
                cleaned['tutor_id'] = value
        elif not partial:
            errors['tutor_id'] = "Tutor is required"

        if 'student_ids' in data or not partial:
            value, error = ValidationService.validate_student_ids(data.get('student_ids'))
            if error:
                errors['student_ids'] = error
            else:
                cleaned['student_ids'] = value

        if present('max_capacity') or not partial:
            value, error = ValidationService.parse_int(
                data.get('max_capacity', config['DEFAULT_MAX_CAPACITY']), "Capacity",
                minimum=1, maximum=config['MAX_CLASS_CAPACITY'])
            if error:
                errors['max_capacity'] = error
            else:
                cleaned['max_capacity'] = value

        if present('schedule_type'):
            if data['schedule_type'] not in ('one-time', 'weekly-recurring'):
                errors['schedule_type'] = "Schedule type must be 'one-time' or 'weekly-recurring'"
            else:
                cleaned['schedule_type'] = data['schedule_type']
        elif not partial:
            errors['schedule_type'] = "Schedule type is required"

        if present('start_time') or not partial:
            value, error = ValidationService.parse_time(data.get('start_time'))
            if error:
                errors['start_time'] = error
            else:
                cleaned['start_time'] = value

        if present('duration') or not partial:
            value, error = ValidationService.parse_int(
                data.get('duration', config['DEFAULT_DURATION']), "Duration", minimum=1)
            if error:
                errors['duration'] = error
            else:
                cleaned['duration'] = value

        if 'custom_duration' in data:
            if data['custom_duration'] in (None, ''):
                cleaned['custom_duration'] = None
            else:
                value, error = ValidationService.parse_int(data['custom_duration'], "Custom duration", minimum=1)
                if error:
                    errors['custom_duration'] = error
                else:
                    cleaned['custom_duration'] = value

        for key, label in (('class_date', 'Class date'), ('start_date', 'Start date'), ('end_date', 'End date')):
            if present(key):
                value, error = ValidationService.parse_date(data[key], label)
                if error:
                    errors[key] = error
                else:
                    cleaned[key] = value

        if present('recurring_days'):
            try:
                cleaned['recurring_days'] = normalize_weekdays(data['recurring_days'])
            except (ValueError, TypeError) as e:
                errors['recurring_days'] = str(e)

        if 'amount' in data or not partial:
            value, error = ValidationService.validate_amount(data.get('amount'))
            if error:
                errors['amount'] = error
            else:
                cleaned['amount'] = value

        if present('currency') or not partial:
            value, error = ValidationService.validate_currency(data.get('currency', config['DEFAULT_CURRENCY']))
            if error:
                errors['currency'] = error
            else:
                cleaned['currency'] = value

        if present('payment_status') or not partial:
            value, error = ValidationService.validate_payment_status(data.get('payment_status', 'unpaid'))
            if error:
                errors['payment_status'] = error
            else:
                cleaned['payment_status'] = value

        if present('join_window_minutes') or not partial:
            low, high = config['JOIN_WINDOW_RANGE']
            value, error = ValidationService.parse_int(
                data.get('join_window_minutes', config['JOIN_WINDOW_MINUTES']), "Join window",
                minimum=low, maximum=high)
            if error:
                errors['join_window_minutes'] = error
            else:
                cleaned['join_window_minutes'] = value

        if present('center_id'):
            value, error = ValidationService.parse_int(data['center_id'], "Center id", minimum=1)
            if error:
                errors['center_id'] = error
            else:
                cleaned['center_id'] = value

        return cleaned, errors
