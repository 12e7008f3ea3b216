"""
API decorators for uniform JSON error handling.

Usage:
    from .decorators import api_endpoint, require_json

    @app.route('/api/example', methods=['POST'])
    @api_endpoint
    @require_json('url')
    def api_example():
        data = request.get_json()
        ...
"""

from functools import wraps
from typing import Callable

from flask import jsonify, request
from pydantic import ValidationError

from ..exceptions import InvalidConfigError, InvalidRangeError, NotFoundError
from ..logger import logger


def _validation_message(exc: ValidationError) -> str:
    """First pydantic error as a short sentence."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    message = str(first.get("msg", "Invalid request"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {message}" if location else message


def api_endpoint(f: Callable) -> Callable:
    """
    Wrap an API endpoint with standardized error responses:
    - NotFoundError -> 404
    - InvalidConfigError, InvalidRangeError, ValidationError, ValueError -> 400
    - Exception -> 500
    """
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except NotFoundError as e:
            logger.warning(f"[{f.__name__}] {e}")
            return jsonify({"error": str(e)}), 404
        except ValidationError as e:
            message = _validation_message(e)
            logger.warning(f"[{f.__name__}] Validation error: {message}")
            return jsonify({"error": message}), 400
        except (InvalidConfigError, InvalidRangeError, ValueError) as e:
            logger.warning(f"[{f.__name__}] Validation error: {e}")
            return jsonify({"error": str(e) or "Invalid request"}), 400
        except Exception as e:
            logger.error(f"[{f.__name__}] Internal error: {e}", exc_info=True)
            return jsonify({"error": str(e) or "Internal server error"}), 500
    return wrapper


def require_json(*fields: str, allow_empty: bool = False) -> Callable:
    """
    Reject requests whose JSON body lacks any of ``fields``.

    Args:
        *fields: Required field names
        allow_empty: If False (default), blank strings count as missing
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def wrapper(*args, **kwargs):
            data = request.get_json(silent=True) or {}

            missing = []
            for field in fields:
                value = data.get(field)
                if value is None:
                    missing.append(field)
                elif not allow_empty and isinstance(value, str) and not value.strip():
                    missing.append(field)

            if missing:
                return jsonify({
                    "error": f"Missing required field(s): {', '.join(missing)}"
                }), 400

            return f(*args, **kwargs)
        return wrapper
    return decorator


__all__ = [
    'api_endpoint',
    'require_json',
]
