"""
Tutor availability checks against already committed class sessions
"""
import logging
from lms_scheduler.models.class_model import Class, ClassSession
from lms_scheduler.models.user import User

logger = logging.getLogger(__name__)


def time_to_minutes(value):
    return value.hour * 60 + value.minute


def slots_overlap(start_a, end_a, start_b, end_b):
    """Half-open interval overlap; touching endpoints do not conflict"""
    return start_a < end_b and start_b < end_a


class AvailabilityService:
    """Decides whether a tutor is free for a candidate slot"""

    @staticmethod
    def check_tutor_availability(tutor_id, date_obj, start_time, duration, exclude_class_id=None):
        """
        Check the slot [start_time, start_time + duration) on date_obj

        Args:
            tutor_id: Tutor user id
            date_obj: Calendar date of the candidate session
            start_time: datetime.time start
            duration: Length in minutes
            exclude_class_id: Class to ignore (the one being edited)

        Returns:
            Tuple of (available, conflicting_class)
        """
        start = time_to_minutes(start_time)
        end = start + duration

        query = Class.query.join(ClassSession, ClassSession.class_id == Class.id).filter(
            Class.tutor_id == tutor_id,
            Class.deleted_at.is_(None),
            Class.status != 'cancelled',
            ClassSession.session_date == date_obj,
            ClassSession.status != 'cancelled'
        )

        if exclude_class_id:
            query = query.filter(Class.id != exclude_class_id)

        for existing_class in query.all():
            existing_start = time_to_minutes(existing_class.start_time)
            existing_end = existing_start + existing_class.effective_duration

            if slots_overlap(start, end, existing_start, existing_end):
                logger.debug(
                    f"Tutor {tutor_id} busy on {date_obj}: class {existing_class.id} "
                    f"{existing_class.start_time.strftime('%H:%M')} for {existing_class.effective_duration}m"
                )
                return False, existing_class

        return True, None

    @staticmethod
    def find_available_tutors(date_obj, start_time, duration, subject=None, center_id=None):
        """Active tutors, optionally teaching subject, with no conflict for the slot"""
        query = User.query.filter_by(role='tutor', is_active=True)
        if center_id:
            query = query.filter_by(center_id=center_id)

        available = []
        for tutor in query.order_by(User.full_name).all():
            if subject and not tutor.teaches(subject):
                continue
            is_available, _ = AvailabilityService.check_tutor_availability(
                tutor.id, date_obj, start_time, duration
            )
            if is_available:
                available.append(tutor)
        return available
