from datetime import datetime
from types import SimpleNamespace

import pytest

from config import TestingConfig
from lms_scheduler import create_app, db
from lms_scheduler.models import User
from lms_scheduler.services.attendance_service import SessionAttendanceTracker
from lms_scheduler.services.billing_service import BillingReconciler
from lms_scheduler.services.class_service import ClassRegistry
from lms_scheduler.utils.clock import FixedClock

# Monday morning
START = datetime(2025, 1, 6, 9, 0)


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def app(clock):
    """App with a fresh in-memory database and a seeded center"""
    app = create_app(TestingConfig, clock=clock)
    with app.app_context():
        db.create_all()
        app.seed = seed_users()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ids(app):
    """Seeded user ids, usable without an app context"""
    return app.seed


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app
        db.session.rollback()


@pytest.fixture
def people(ctx, ids):
    """Seeded users loaded in the active app context"""
    return SimpleNamespace(**{name: db.session.get(User, user_id) for name, user_id in vars(ids).items()})


@pytest.fixture
def registry(ctx, clock):
    return ClassRegistry(clock=clock)


@pytest.fixture
def reconciler(ctx, clock):
    return BillingReconciler(clock=clock)


@pytest.fixture
def tracker(ctx, clock):
    return SessionAttendanceTracker(clock=clock)


@pytest.fixture
def client(app):
    return app.test_client()


def seed_users():
    parent = User(full_name='Pat Parent', email='parent@center1.test', role='parent', center_id=1)
    db.session.add(parent)
    db.session.flush()

    users = {
        'parent': parent,
        'admin': User(full_name='Ada Admin', email='admin@center1.test', role='admin', center_id=1),
        'admin_far': User(full_name='Otto Admin', email='admin@center2.test', role='admin', center_id=2),
        'superadmin': User(full_name='Sam Super', email='super@lms.test', role='superadmin'),
        'tutor': User(full_name='Tara Tutor', email='tara@center1.test', role='tutor', center_id=1,
                      subjects='Math, Physics'),
        'tutor_b': User(full_name='Ben Tutor', email='ben@center1.test', role='tutor', center_id=1,
                        subjects='Math'),
        'tutor_far': User(full_name='Fay Tutor', email='fay@center2.test', role='tutor', center_id=2,
                          subjects='Math'),
        'student_a': User(full_name='Alice Student', email='alice@center1.test', role='student',
                          center_id=1, parent_id=parent.id),
        'student_b': User(full_name='Bob Student', email='bob@center1.test', role='student', center_id=1),
        'student_c': User(full_name='Cara Student', email='cara@center1.test', role='student', center_id=1),
        'student_d': User(full_name='Dan Student', email='dan@center1.test', role='student', center_id=1),
        'student_far': User(full_name='Eve Student', email='eve@center2.test', role='student', center_id=2),
        'student_inactive': User(full_name='Ian Student', email='ian@center1.test', role='student',
                                 center_id=1, is_active=False),
    }
    db.session.add_all(users.values())
    db.session.commit()
    return SimpleNamespace(**{name: user.id for name, user in users.items()})


def one_time_payload(tutor_id, student_ids, **overrides):
    payload = {
        'title': 'Algebra I',
        'subject': 'Math',
        'tutor_id': tutor_id,
        'student_ids': list(student_ids),
        'schedule_type': 'one-time',
        'class_date': '2025-01-06',
        'start_time': '14:00',
        'duration': 35,
        'amount': 20,
        'currency': 'USD',
        'payment_status': 'unpaid',
    }
    payload.update(overrides)
    return payload


def recurring_payload(tutor_id, student_ids, **overrides):
    payload = {
        'title': 'Physics Weekly',
        'subject': 'Physics',
        'tutor_id': tutor_id,
        'student_ids': list(student_ids),
        'schedule_type': 'weekly-recurring',
        'start_date': '2025-01-06',
        'end_date': '2025-01-20',
        'recurring_days': ['Monday', 'Wednesday'],
        'start_time': '16:00',
        'duration': 60,
        'amount': 15,
        'currency': 'USD',
        'payment_status': 'unpaid',
    }
    payload.update(overrides)
    return payload


def as_user(user_id):
    return {TestingConfig.ACTOR_HEADER: str(user_id)}
