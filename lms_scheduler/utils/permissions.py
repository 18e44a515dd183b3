from functools import wraps
from flask_login import current_user
from lms_scheduler.services.error_service import AuthorizationError, UnauthorizedError, ValidationError

MANAGER_ROLES = ('admin', 'superadmin')


def require_role(*roles):
    """Decorator to check specific roles"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                raise UnauthorizedError()

            if current_user.role not in roles:
                raise AuthorizationError('Insufficient role permissions')

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def ensure_manager(actor):
    """Only admins with a center, or superadmins, manage classes"""
    if actor is None or actor.role not in MANAGER_ROLES:
        raise AuthorizationError('Only admins can manage classes')
    if actor.role == 'admin' and not actor.center_id:
        raise AuthorizationError('Admin account is not assigned to a center')


def resolve_center_id(actor, requested_center_id=None):
    """Center a new class belongs to; admins are pinned to their own"""
    ensure_manager(actor)
    if actor.role == 'superadmin':
        if not requested_center_id:
            raise ValidationError({'center_id': 'Center is required'})
        return requested_center_id
    if requested_center_id and requested_center_id != actor.center_id:
        raise AuthorizationError('Cannot manage classes of another center')
    return actor.center_id


def ensure_can_manage(actor, class_item):
    ensure_manager(actor)
    if actor.role == 'admin' and class_item.center_id != actor.center_id:
        raise AuthorizationError('Cannot manage classes of another center')


def can_view(actor, class_item):
    """Managers of the center, the tutor, roster students and their parents"""
    if actor is None:
        return False
    if actor.role == 'superadmin':
        return True
    if actor.role == 'admin':
        return class_item.center_id == actor.center_id
    if actor.role == 'tutor':
        return class_item.tutor_id == actor.id
    if actor.role == 'student':
        return class_item.has_student(actor.id)
    if actor.role == 'parent':
        from lms_scheduler.models.user import User
        student_ids = class_item.get_students()
        if not student_ids:
            return False
        return User.query.filter(User.id.in_(student_ids), User.parent_id == actor.id).count() > 0
    return False


def ensure_can_view(actor, class_item):
    if not can_view(actor, class_item):
        raise AuthorizationError('You do not have access to this class')
