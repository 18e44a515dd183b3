from datetime import datetime, timedelta
from lms_scheduler import db
from lms_scheduler.utils.clock import minutes_between

class SessionHistory(db.Model):
    """One concrete meeting of a class, as it actually happened"""
    __tablename__ = 'session_history'

    STATUSES = ('scheduled', 'in-progress', 'completed', 'cancelled')

    id = db.Column(db.Integer, primary_key=True)
    class_id = db.Column(db.Integer, db.ForeignKey('classes.id'), nullable=False)
    meeting_id = db.Column(db.String(100), nullable=False, index=True)

    # Session timing
    session_date = db.Column(db.Date, nullable=False, index=True)
    scheduled_start_time = db.Column(db.DateTime, nullable=False)
    scheduled_end_time = db.Column(db.DateTime, nullable=False)

    # Actual timing: set by the first join and the last leave
    actual_start_time = db.Column(db.DateTime)
    actual_end_time = db.Column(db.DateTime)

    status = db.Column(db.String(20), default='scheduled', index=True)  # scheduled, in-progress, completed, cancelled
    total_duration = db.Column(db.Integer)  # Minutes
    notes = db.Column(db.Text)

    # Attendance summary, filled on completion
    total_participants = db.Column(db.Integer)
    students_present = db.Column(db.Integer)
    tutors_present = db.Column(db.Integer)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    class_item = db.relationship('Class', backref='session_histories', lazy=True)
    participants = db.relationship('SessionParticipant',
                                   backref='session',
                                   order_by='SessionParticipant.id',
                                   cascade='all, delete-orphan',
                                   lazy=True)

    __table_args__ = (
        db.Index('ix_session_history_class_date', 'class_id', 'session_date'),
    )

    def __init__(self, **kwargs):
        super(SessionHistory, self).__init__(**kwargs)
        if self.status is None:
            self.status = 'scheduled'

    @classmethod
    def from_class(cls, class_item, session_date):
        """New scheduled session using the class start time and duration as template"""
        start = datetime.combine(session_date, class_item.start_time)
        return cls(
            class_id=class_item.id,
            meeting_id=class_item.meeting_id,
            session_date=session_date,
            scheduled_start_time=start,
            scheduled_end_time=start + timedelta(minutes=class_item.effective_duration),
            status='scheduled'
        )

    @property
    def active_participants(self):
        return [p for p in self.participants if p.leave_time is None]

    def find_active_participant(self, user_id):
        for participant in self.participants:
            if participant.user_id == user_id and participant.leave_time is None:
                return participant
        return None

    def can_join(self, now, join_window_minutes=15):
        """Join allowed from window minutes before start until window minutes after end"""
        if self.status in ('completed', 'cancelled'):
            return False
        window = timedelta(minutes=join_window_minutes)
        return self.scheduled_start_time - window <= now <= self.scheduled_end_time + window

    def add_participant(self, user_id, role, now):
        """Record a join. Returns the participant entry and whether it is new."""
        existing = self.find_active_participant(user_id)
        if existing:
            return existing, False

        participant = SessionParticipant(user_id=user_id, role=role, join_time=now)
        self.participants.append(participant)

        if self.actual_start_time is None:
            self.actual_start_time = now
            self.status = 'in-progress'
        return participant, True

    def remove_participant(self, user_id, now):
        """Record a leave. Returns the participant entry, or None if the user was not active."""
        participant = self.find_active_participant(user_id)
        if participant is None:
            return None

        participant.leave_time = now
        participant.duration = minutes_between(participant.join_time, now)

        if not self.active_participants:
            self.complete(now)
        return participant

    def complete(self, now):
        self.actual_end_time = now
        self.status = 'completed'
        if self.actual_start_time:
            self.total_duration = minutes_between(self.actual_start_time, now)

        # Everyone ever recorded, one count per user
        students = {p.user_id for p in self.participants if p.role == 'student'}
        tutors = {p.user_id for p in self.participants if p.role == 'tutor'}
        self.total_participants = len({p.user_id for p in self.participants})
        self.students_present = len(students)
        self.tutors_present = len(tutors)

    def cancel(self):
        if self.status != 'scheduled':
            raise ValueError(f"Only scheduled sessions can be cancelled (status: {self.status})")
        self.status = 'cancelled'

    @property
    def attendance_summary(self):
        if self.status != 'completed':
            return None
        return {
            'total_participants': self.total_participants,
            'students_present': self.students_present,
            'tutors_present': self.tutors_present
        }

    def to_dict(self, include_participants=True):
        data = {
            'id': self.id,
            'class_id': self.class_id,
            'meeting_id': self.meeting_id,
            'session_date': self.session_date.isoformat(),
            'scheduled_start_time': self.scheduled_start_time.isoformat(),
            'scheduled_end_time': self.scheduled_end_time.isoformat(),
            'actual_start_time': self.actual_start_time.isoformat() if self.actual_start_time else None,
            'actual_end_time': self.actual_end_time.isoformat() if self.actual_end_time else None,
            'status': self.status,
            'total_duration': self.total_duration,
            'participant_count': len(self.participants),
            'attendance_summary': self.attendance_summary
        }
        if include_participants:
            data['participants'] = [p.to_dict() for p in self.participants]
        return data

    def __repr__(self):
        return f'<SessionHistory Class:{self.class_id} {self.session_date} {self.status}>'


class SessionParticipant(db.Model):
    __tablename__ = 'session_participants'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('session_history.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)  # student, tutor
    join_time = db.Column(db.DateTime, nullable=False)
    leave_time = db.Column(db.DateTime)
    duration = db.Column(db.Integer)  # Minutes, set on leave

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'role': self.role,
            'join_time': self.join_time.isoformat(),
            'leave_time': self.leave_time.isoformat() if self.leave_time else None,
            'duration': self.duration
        }
