"""
Session Attendance Tracker

Join and leave bookkeeping for live sessions. Each (class, day) pair is
serialized: the can-join check, the lazy session creation and the participant
append commit as one unit, so two first joiners never both start a session.
"""
import logging
from flask import current_app

from lms_scheduler import db
from lms_scheduler.models.class_model import Class
from lms_scheduler.models.session_history import SessionHistory, SessionParticipant
from lms_scheduler.services.error_service import (
    AuthorizationError, ConflictError, NotFoundError
)
from lms_scheduler.utils.clock import get_clock
from lms_scheduler.utils.locks import attendance_locks
from lms_scheduler.utils.permissions import ensure_can_manage, ensure_can_view

logger = logging.getLogger(__name__)


class SessionAttendanceTracker:
    """Tracks who attended each concrete meeting of a class"""

    def __init__(self, clock=None):
        self.clock = clock or get_clock()

    def get_or_create_for_today(self, class_item):
        """
        Today's open session for the class, created from the schedule if missing

        Returns None when the class has no occurrence today. Caller commits.
        """
        today = self.clock.today()
        session = SessionHistory.query.filter(
            SessionHistory.class_id == class_item.id,
            SessionHistory.session_date == today,
            SessionHistory.status.in_(('scheduled', 'in-progress'))
        ).with_for_update().order_by(SessionHistory.id).first()
        if session:
            return session

        stub = class_item.session_on(today)
        if stub is None or stub.status != 'scheduled':
            return None

        if not class_item.meeting_id:
            config = current_app.config
            class_item.generate_meeting(config['MEETING_PLATFORM'], config['MEETING_LINK_PREFIX'])

        session = SessionHistory.from_class(class_item, today)
        db.session.add(session)
        logger.info(f"Created session history for class {class_item.id} on {today}")
        return session

    def join_session(self, class_id, actor):
        """
        Record the actor joining today's session of a class

        Returns:
            Dict with meeting details and the session id

        Raises:
            NotFoundError, AuthorizationError, ConflictError
        """
        class_item = self._load_class(class_id)
        role = self._participant_role(actor, class_item)
        now = self.clock.now()

        with attendance_locks.hold((class_item.id, now.date())):
            try:
                session = self.get_or_create_for_today(class_item)
                if session is None:
                    status = class_item.join_status(now)
                    reason = 'No session today' if status['can_join'] else status['reason']
                    raise ConflictError(reason, {'next_session_time': _iso(status['next_session_time'])})

                window = class_item.join_window_minutes or current_app.config['JOIN_WINDOW_MINUTES']
                if not session.can_join(now, window):
                    raise ConflictError('Session is not open for joining',
                                        {'scheduled_start_time': session.scheduled_start_time.isoformat(),
                                         'status': session.status})

                participant, is_new = session.add_participant(actor.id, role, now)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        if is_new:
            logger.info(f"User {actor.id} ({role}) joined class {class_item.id} session {session.id}")

        return {
            'meeting_id': class_item.meeting_id,
            'meeting_link': class_item.meeting_link,
            'meeting_platform': class_item.meeting_platform,
            'session_id': session.id,
            'role': role,
            'joined_at': participant.join_time.isoformat(),
            'already_joined': not is_new
        }

    def leave_session(self, class_id, actor):
        """
        Record the actor leaving; the last one out completes the session

        The open session is found by participation rather than by today's
        date, so a session that runs past midnight can still be left.
        """
        class_item = self._load_class(class_id)
        now = self.clock.now()

        session = self._open_session(class_item.id, actor.id)
        if session is None:
            raise NotFoundError("Active session")

        with attendance_locks.hold((class_item.id, session.session_date)):
            try:
                session = SessionHistory.query.filter_by(
                    id=session.id
                ).with_for_update().populate_existing().first()

                participant = session.remove_participant(actor.id, now)
                if participant is not None and session.status == 'completed':
                    class_item.mark_session_completed(session.session_date)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        if participant is None:
            logger.debug(f"User {actor.id} left class {class_item.id} without an open participation")
        else:
            logger.info(f"User {actor.id} left class {class_item.id} after {participant.duration} minute(s)")
            if session.status == 'completed':
                logger.info(f"Session {session.id} of class {class_item.id} completed "
                            f"({session.total_duration} minute(s))")

        return {
            'session_id': session.id,
            'status': session.status,
            'duration': participant.duration if participant else None,
            'session_completed': session.status == 'completed'
        }

    def get_session_status(self, class_id, actor):
        class_item = self._load_class(class_id)
        ensure_can_view(actor, class_item)
        now = self.clock.now()

        join_status = class_item.join_status(now)
        today_session = SessionHistory.query.filter_by(
            class_id=class_item.id, session_date=now.date()
        ).order_by(SessionHistory.id.desc()).first()

        return {
            'class_id': class_item.id,
            'class_status': class_item.status,
            'can_join': join_status['can_join'],
            'reason': join_status['reason'],
            'next_session_time': _iso(join_status['next_session_time']),
            'upcoming_sessions': class_item.get_upcoming_session_count(now),
            'meeting_id': class_item.meeting_id,
            'current_session': today_session.to_dict() if today_session else None
        }

    def list_session_history(self, class_id, actor, page=1, limit=None):
        class_item = self._load_class(class_id)
        ensure_can_view(actor, class_item)

        config = current_app.config
        limit = min(limit or config['SESSION_HISTORY_PER_PAGE'], config['MAX_PER_PAGE'])
        return SessionHistory.query.filter_by(class_id=class_item.id).order_by(
            SessionHistory.session_date.desc(), SessionHistory.id.desc()
        ).paginate(page=page, per_page=limit, error_out=False)

    def cancel_session(self, class_id, session_date, actor):
        """
        Administrative cancel of one occurrence of a class

        Only occurrences nobody has joined yet can be cancelled. The cancel is
        recorded as a cancelled session and the schedule stub is cancelled too,
        so later joins that day are refused.

        Raises:
            NotFoundError, AuthorizationError, ConflictError
        """
        class_item = self._load_class(class_id)
        ensure_can_manage(actor, class_item)

        with attendance_locks.hold((class_item.id, session_date)):
            try:
                stub = class_item.session_on(session_date)
                if stub is None:
                    raise NotFoundError("Scheduled session")

                session = SessionHistory.query.filter_by(
                    class_id=class_item.id, session_date=session_date
                ).with_for_update().order_by(SessionHistory.id.desc()).first()
                status = session.status if session else stub.status
                if status != 'scheduled':
                    raise ConflictError(f"Only scheduled sessions can be cancelled (status: {status})")

                if session is None:
                    session = SessionHistory.from_class(class_item, session_date)
                    db.session.add(session)
                session.cancel()
                stub.status = 'cancelled'
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        logger.info(f"Session of class {class_item.id} on {session_date} cancelled by user {actor.id}")
        return session

    @staticmethod
    def _open_session(class_id, user_id):
        """Newest in-progress session of the class, preferring one the user is still in"""
        open_sessions = SessionHistory.query.filter_by(
            class_id=class_id, status='in-progress'
        ).order_by(SessionHistory.session_date.desc(), SessionHistory.id.desc())

        session = open_sessions.join(SessionHistory.participants).filter(
            SessionParticipant.user_id == user_id,
            SessionParticipant.leave_time.is_(None)
        ).first()
        return session or open_sessions.first()

    @staticmethod
    def _load_class(class_id):
        class_item = Class.live().filter_by(id=class_id).first()
        if class_item is None:
            raise NotFoundError("Class")
        return class_item

    @staticmethod
    def _participant_role(actor, class_item):
        if actor.role == 'tutor' and class_item.tutor_id == actor.id:
            return 'tutor'
        if actor.role == 'student' and class_item.has_student(actor.id):
            return 'student'
        raise AuthorizationError('Only the class tutor and enrolled students can join')


def _iso(value):
    return value.isoformat() if value else None
