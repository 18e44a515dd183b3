from datetime import datetime, timedelta
from lms_scheduler import db
from lms_scheduler.utils.clock import format_time_remaining
import json
import math
import uuid

class Class(db.Model):
    __tablename__ = 'classes'

    SCHEDULE_TYPES = ('one-time', 'weekly-recurring')
    PAYMENT_STATUSES = ('unpaid', 'paid', 'democlass')

    id = db.Column(db.Integer, primary_key=True)

    # Class Basic Information
    title = db.Column(db.String(200), nullable=False)
    subject = db.Column(db.String(100), nullable=False, index=True)
    description = db.Column(db.Text)
    notes = db.Column(db.Text)

    # Ownership
    center_id = db.Column(db.Integer, nullable=False, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))

    # Scheduling
    schedule_type = db.Column(db.String(20), nullable=False, default='one-time')  # 'one-time', 'weekly-recurring'
    class_date = db.Column(db.Date)  # One-time classes
    start_date = db.Column(db.Date)  # Recurring classes
    end_date = db.Column(db.Date)
    recurring_days = db.Column(db.Text)  # JSON array of weekday names
    start_time = db.Column(db.Time, nullable=False)
    duration = db.Column(db.Integer, nullable=False, default=35)  # Duration in minutes
    custom_duration = db.Column(db.Integer)
    end_time = db.Column(db.Time)  # Calculated field

    # Roster
    tutor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    students = db.Column(db.Text)  # JSON array of student IDs
    max_capacity = db.Column(db.Integer, default=10)

    # Commercial terms
    amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(3), nullable=False, default='USD')
    payment_status = db.Column(db.String(20), nullable=False, default='unpaid')  # unpaid, paid, democlass

    # Meeting
    meeting_id = db.Column(db.String(100), unique=True)
    meeting_link = db.Column(db.String(500))
    meeting_platform = db.Column(db.String(50))
    join_window_minutes = db.Column(db.Integer, default=15)

    # Class Status
    status = db.Column(db.String(20), default='scheduled', index=True)  # scheduled, completed, cancelled

    # Tracking
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = db.Column(db.DateTime)

    # Relationships
    tutor = db.relationship('User', foreign_keys=[tutor_id], lazy=True)
    creator = db.relationship('User', foreign_keys=[created_by], lazy=True)
    sessions = db.relationship('ClassSession',
                               backref='class_item',
                               order_by='ClassSession.session_date',
                               cascade='all, delete-orphan',
                               lazy=True)

    def __init__(self, **kwargs):
        super(Class, self).__init__(**kwargs)
        if self.start_time and self.duration:
            self.calculate_end_time()

    @property
    def effective_duration(self):
        return self.custom_duration or self.duration

    @property
    def is_recurring(self):
        return self.schedule_type == 'weekly-recurring'

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def calculate_end_time(self):
        """Calculate end time based on start time and duration"""
        if self.start_time and self.effective_duration:
            start_datetime = datetime.combine(datetime.today(), self.start_time)
            end_datetime = start_datetime + timedelta(minutes=self.effective_duration)
            self.end_time = end_datetime.time()

    @classmethod
    def live(cls):
        """Query over classes that have not been deleted"""
        return cls.query.filter(cls.deleted_at.is_(None))

    def get_students(self):
        """Get list of student IDs for this class"""
        if self.students:
            try:
                return json.loads(self.students)
            except ValueError:
                return []
        return []

    def set_students(self, student_ids):
        """Set roster, keeping first occurrence order"""
        ordered = []
        for student_id in student_ids:
            if student_id not in ordered:
                ordered.append(student_id)
        self.students = json.dumps(ordered)

    def has_student(self, user_id):
        return user_id in self.get_students()

    def get_recurring_days(self):
        if self.recurring_days:
            try:
                return json.loads(self.recurring_days)
            except ValueError:
                return []
        return []

    def set_recurring_days(self, days):
        self.recurring_days = json.dumps(list(days))

    def get_session_dates(self):
        return [s.session_date for s in self.sessions]

    def session_on(self, date_obj):
        for session in self.sessions:
            if session.session_date == date_obj:
                return session
        return None

    def get_scheduled_datetime(self, date_obj=None):
        """Combined start instant for a session date (the class date for one-time classes)"""
        date_obj = date_obj or self.class_date
        if date_obj and self.start_time:
            return datetime.combine(date_obj, self.start_time)
        return None

    def next_session_date(self, today):
        """Date of the next non-cancelled occurrence on or after today"""
        for session in self.sessions:
            if session.status != 'cancelled' and session.session_date >= today:
                return session.session_date
        return None

    def get_next_session_time(self, now):
        """Start of the first non-cancelled occurrence strictly after now"""
        for session in self.sessions:
            if session.status == 'cancelled':
                continue
            start = self.get_scheduled_datetime(session.session_date)
            if start > now:
                return start
        return None

    def get_upcoming_session_count(self, now):
        return sum(
            1 for session in self.sessions
            if session.status == 'scheduled' and self.get_scheduled_datetime(session.session_date) > now
        )

    def join_status(self, now):
        """Whether the class can be joined now, with a reason for the client"""
        if self.status != 'scheduled':
            return {'can_join': False, 'reason': 'Class not scheduled', 'next_session_time': None}

        window = timedelta(minutes=self.join_window_minutes or 15)
        length = timedelta(minutes=self.effective_duration)

        session_time = None
        todays = self.session_on(now.date())
        if todays and todays.status != 'cancelled':
            start = self.get_scheduled_datetime(todays.session_date)
            if start - window <= now <= start + length:
                session_time = start
        if session_time is None:
            session_time = self.get_next_session_time(now)

        if session_time is None:
            return {'can_join': False, 'reason': 'No upcoming session', 'next_session_time': None}

        join_time = session_time - window
        if now < join_time:
            minutes_until = math.ceil((join_time - now).total_seconds() / 60)
            return {
                'can_join': False,
                'reason': f'Join available in {format_time_remaining(minutes_until)}',
                'next_session_time': session_time
            }
        if now > session_time + length:
            return {'can_join': False, 'reason': 'Session has ended', 'next_session_time': session_time}

        return {'can_join': True, 'reason': 'Ready to join', 'next_session_time': session_time}

    def generate_meeting(self, platform='agora', link_prefix='/meeting/'):
        """Assign a stable meeting room if the class has none yet"""
        if not self.meeting_id:
            self.meeting_id = f"class-{uuid.uuid4().hex[:12]}"
        if not self.meeting_link:
            self.meeting_link = f"{link_prefix}{self.meeting_id}"
        if not self.meeting_platform:
            self.meeting_platform = platform
        return {'meeting_id': self.meeting_id, 'meeting_link': self.meeting_link}

    def mark_session_completed(self, date_obj):
        """Complete the stub for a date; the class completes once nothing is left to run"""
        session = self.session_on(date_obj)
        if session and session.status == 'scheduled':
            session.status = 'completed'
        if self.sessions and not any(s.status == 'scheduled' for s in self.sessions):
            self.status = 'completed'

    def soft_delete(self, when):
        self.status = 'cancelled'
        self.deleted_at = when

    def get_duration_display(self):
        """Get formatted duration string"""
        hours = self.effective_duration // 60
        minutes = self.effective_duration % 60
        if hours > 0:
            return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"
        return f"{minutes}m"

    def to_dict(self):
        """Convert class to dictionary"""
        return {
            'id': self.id,
            'title': self.title,
            'subject': self.subject,
            'description': self.description,
            'center_id': self.center_id,
            'created_by': self.created_by,
            'schedule_type': self.schedule_type,
            'class_date': self.class_date.isoformat() if self.class_date else None,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'recurring_days': self.get_recurring_days(),
            'start_time': self.start_time.strftime('%H:%M') if self.start_time else None,
            'end_time': self.end_time.strftime('%H:%M') if self.end_time else None,
            'duration': self.effective_duration,
            'duration_display': self.get_duration_display(),
            'tutor_id': self.tutor_id,
            'student_ids': self.get_students(),
            'max_capacity': self.max_capacity,
            'amount': self.amount,
            'currency': self.currency,
            'payment_status': self.payment_status,
            'status': self.status,
            'meeting_id': self.meeting_id,
            'meeting_link': self.meeting_link,
            'meeting_platform': self.meeting_platform,
            'join_window_minutes': self.join_window_minutes,
            'notes': self.notes,
            'sessions': [s.to_dict() for s in self.sessions],
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<Class {self.id} {self.subject} ({self.schedule_type})>'


class ClassSession(db.Model):
    """One planned occurrence of a class"""
    __tablename__ = 'class_sessions'

    id = db.Column(db.Integer, primary_key=True)
    class_id = db.Column(db.Integer, db.ForeignKey('classes.id'), nullable=False, index=True)
    session_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(20), default='scheduled')  # scheduled, completed, cancelled
    conflict = db.Column(db.Boolean, default=False)

    __table_args__ = (
        db.UniqueConstraint('class_id', 'session_date', name='uq_class_session_date'),
    )

    def to_dict(self):
        return {
            'session_date': self.session_date.isoformat(),
            'status': self.status,
            'conflict': bool(self.conflict)
        }

    def __repr__(self):
        return f'<ClassSession {self.class_id} {self.session_date}>'
