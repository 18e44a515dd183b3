# lms_scheduler/models/__init__.py

from lms_scheduler.models.user import User
from lms_scheduler.models.class_model import Class, ClassSession
from lms_scheduler.models.session_history import SessionHistory, SessionParticipant
from lms_scheduler.models.billing_transaction import BillingTransaction

__all__ = [
    'User',
    'Class',
    'ClassSession',
    'SessionHistory',
    'SessionParticipant',
    'BillingTransaction'
]
