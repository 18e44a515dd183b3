import threading
from datetime import datetime

import pytest

from config import TestingConfig
from conftest import one_time_payload, seed_users
from lms_scheduler import create_app, db
from lms_scheduler.models import SessionHistory, SessionParticipant, User
from lms_scheduler.services.attendance_service import SessionAttendanceTracker
from lms_scheduler.services.class_service import ClassRegistry
from lms_scheduler.utils.clock import FixedClock


@pytest.fixture
def file_app(tmp_path):
    """App on a file database so each thread gets its own connection"""
    class FileConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'scheduler.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30, 'check_same_thread': False}}

    clock = FixedClock(datetime(2025, 1, 6, 9, 0))
    app = create_app(FileConfig, clock=clock)
    with app.app_context():
        db.create_all()
        app.seed = seed_users()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def test_simultaneous_first_joins_start_one_session(file_app):
    clock = file_app.clock
    ids = file_app.seed
    joiners = [ids.tutor, ids.student_a, ids.student_b, ids.student_c]

    with file_app.app_context():
        admin = db.session.get(User, ids.admin)
        payload = one_time_payload(ids.tutor, [ids.student_a, ids.student_b, ids.student_c],
                                   start_time='10:00', duration=60)
        class_id = ClassRegistry(clock=clock).create(payload, admin).class_item.id
    clock.set(datetime(2025, 1, 6, 10, 0))

    barrier = threading.Barrier(len(joiners))
    results, errors = [], []

    def join(user_id):
        with file_app.app_context():
            try:
                actor = db.session.get(User, user_id)
                barrier.wait(timeout=10)
                results.append(SessionAttendanceTracker(clock=clock).join_session(class_id, actor))
            except Exception as exc:
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=join, args=(user_id,)) for user_id in joiners]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len({result['session_id'] for result in results}) == 1
    assert sum(not result['already_joined'] for result in results) == len(joiners)

    with file_app.app_context():
        session = SessionHistory.query.one()
        assert session.status == 'in-progress'
        assert session.actual_start_time == datetime(2025, 1, 6, 10, 0)
        assert SessionParticipant.query.filter_by(session_id=session.id).count() == len(joiners)
