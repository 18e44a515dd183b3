# Health check endpoint for production monitoring

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from lms_scheduler import db
from lms_scheduler.models.class_model import Class
from lms_scheduler.utils.locks import attendance_locks, class_locks

bp = Blueprint('health', __name__)

@bp.route('/health')
def health_check():
    """Health check endpoint for monitoring"""

    health_status = {
        'status': 'healthy',
        'timestamp': current_app.clock.now().isoformat(),
        'version': '1.0.0',
        'checks': {}
    }

    # Database connectivity check
    try:
        db.session.execute(text('SELECT 1'))
        health_status['checks']['database'] = 'healthy'
    except Exception as e:
        db.session.rollback()
        health_status['checks']['database'] = f'unhealthy: {str(e)}'
        health_status['status'] = 'unhealthy'

    # Class model check
    if health_status['status'] == 'healthy':
        try:
            class_count = Class.live().count()
            health_status['checks']['classes'] = f'healthy ({class_count} classes)'
        except Exception as e:
            db.session.rollback()
            health_status['checks']['classes'] = f'unhealthy: {str(e)}'
            health_status['status'] = 'unhealthy'

    # Locks currently held or awaited
    health_status['checks']['locks'] = {
        'class': len(class_locks.active_keys()),
        'attendance': len(attendance_locks.active_keys())
    }

    return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

@bp.route('/health/simple')
def simple_health_check():
    """Simple health check for load balancers"""
    return jsonify({'status': 'ok'}), 200
