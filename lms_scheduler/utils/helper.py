from flask import jsonify


def success_response(data=None, warnings=None, status_code=200):
    """Standard JSON envelope for successful API calls"""
    return jsonify({
        'success': True,
        'data': data,
        'warnings': warnings or []
    }), status_code


def pagination_meta(pagination):
    """
    Pagination block for list responses

    Args:
        pagination: Flask-SQLAlchemy Pagination object
    """
    return {
        'page': pagination.page,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'pages': pagination.pages,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }


def get_json_payload(request):
    """Request body as a dict; missing or non-object bodies become {}"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {}
    return data
