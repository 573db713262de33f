import hmac
import logging

from fastapi import Request

from .error_handlers import UnauthorizedError, get_error_message

logger = logging.getLogger(__name__)

# Fixed permissive header set returned by every batch function response.
FUNCTION_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def is_valid_function_credential(authorization: str | None, secret: str) -> bool:
    """
    Shared-secret check for batch entry points.

    An unset secret rejects everything, so a misconfigured deployment can never
    expose the batches.
    """
    if not secret or not authorization:
        return False
    if not authorization.startswith("Bearer "):
        return False
    presented = authorization[len("Bearer "):]
    return hmac.compare_digest(presented.encode("utf-8"), secret.encode("utf-8"))


def require_function_secret(request: Request) -> None:
    settings = request.app.state.settings
    if not is_valid_function_credential(request.headers.get("Authorization"), settings.function_secret):
        logger.error("Unauthorized function call to %s", request.url.path)
        raise UnauthorizedError(get_error_message("unauthorized"), headers=FUNCTION_CORS_HEADERS)
