from datetime import datetime
from flask_login import UserMixin
from lms_scheduler import db

class User(UserMixin, db.Model):
    """Projection of an identity-service user.

    Accounts are managed upstream; this table only carries what scheduling
    needs for roster checks and authorization.
    """
    __tablename__ = 'users'

    ROLES = ('student', 'tutor', 'admin', 'superadmin', 'parent')

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, index=True)

    # Role and Center
    role = db.Column(db.String(20), nullable=False, default='student')  # student, tutor, admin, superadmin, parent
    center_id = db.Column(db.Integer, index=True)

    # Students only: linked parent account
    parent_id = db.Column(db.Integer, db.ForeignKey('users.id'))

    # Status and Tracking
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Tutors only: comma separated subject names
    subjects = db.Column(db.Text)

    def __init__(self, **kwargs):
        super(User, self).__init__(**kwargs)

    def get_subjects(self):
        """Get subjects taught as list"""
        if not self.subjects:
            return []
        return [s.strip() for s in self.subjects.split(',') if s.strip()]

    def teaches(self, subject):
        subject = (subject or '').strip().lower()
        return any(s.lower() == subject for s in self.get_subjects())

    def is_admin(self):
        return self.role in ('admin', 'superadmin')

    def to_dict(self):
        return {
            'id': self.id,
            'full_name': self.full_name,
            'email': self.email,
            'role': self.role,
            'center_id': self.center_id,
            'is_active': self.is_active
        }

    def __repr__(self):
        return f'<User {self.id} {self.role}>'
