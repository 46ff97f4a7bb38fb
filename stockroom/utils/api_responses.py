from flask import jsonify, request
from typing import Any, Dict, Optional


class APIResponse:
    """Standardized API response handler"""

    @staticmethod
    def success(data: Any = None, message: str = "Success", status_code: int = 200, **extra):
        """Standard success response"""
        response_data = {
            'success': True,
            'message': message,
            'data': data
        }
        response_data.update(extra)
        return jsonify(response_data), status_code

    @staticmethod
    def error(message: str, errors: Optional[Dict] = None, status_code: int = 400, **extra):
        """Standard error response; `error` mirrors `message` for older clients."""
        response_data = {
            'success': False,
            'message': message,
            'error': message,
            'errors': errors or {}
        }
        response_data.update(extra)
        return jsonify(response_data), status_code

    @staticmethod
    def not_found(resource: str = "Resource"):
        return APIResponse.error(
            message=f"{resource} not found",
            status_code=404
        )

    @staticmethod
    def handle_request_content() -> Dict[str, Any]:
        """JSON body if present, else form fields, else an empty dict."""
        if request.is_json:
            payload = request.get_json(silent=True)
            return payload if isinstance(payload, dict) else {}
        elif request.form:
            return request.form.to_dict()
        else:
            return {}


__all__ = ['APIResponse']
