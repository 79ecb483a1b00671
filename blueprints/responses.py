from flask import jsonify, request


def payload() -> dict:
    """Request body as a dict, whether sent as JSON or as a form."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def text(data: dict, key: str) -> str:
    """Trimmed string field; anything that is not a string reads as empty."""
    value = data.get(key)
    if not isinstance(value, str):
        return ''
    return value.strip()


def failure_response(failure, **extra):
    return jsonify(failure.to_response(**extra)), failure.http_status


def error_response(message: str, status: int = 400, code: str = 'bad_request'):
    return jsonify({'error': {'code': code, 'message': message}}), status


def int_or_none(value):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValueError('Expected a whole number')
    return int(value)


def as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in {'1', 'true', 'yes', 'on'}
