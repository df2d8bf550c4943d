"""AWS Lambda handlers for aulasync.

persist_handler        – stores a fetched data collection (``event["data"]``)
keep_alive_handler     – pings the portal with the stored session token
manage_session_handler – API Gateway endpoint to read or replace the token

Lambda environment variables (see aulasync.config for the full list):
    AULA_SESSION_ID_TABLE          – DynamoDB table holding the session item
    POSTS_TABLE, THREADS_TABLE ... – destination tables for persist_handler
    API_URL                        – portal API base URL
    AULASESSION_AUTHENTICATE_TOKEN – shared secret for manage_session_handler
"""

import asyncio
import hmac
import json
from pathlib import Path
from typing import Any, Dict, Optional

import boto3

from aulasync.config import Settings, load_dotenv, load_settings
from aulasync.errors import LambdaError
from aulasync.gateway import ConditionalWriteGateway
from aulasync.log import get_logger, read_and_clear_error_buffer
from aulasync.persistence import BatchPersistenceEngine, is_transient
from aulasync.pipeline import keep_session_alive, run_persist_cycle
from aulasync.retry import RetryPolicy
from aulasync.session import SessionLifecycleManager, is_valid_session_id, session_id_error_message
from aulasync.utils import to_iso, utc_now

logger = get_logger(__name__)

AUTH_HEADER = "X-aulasession-authenticate"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": f"Content-Type,{AUTH_HEADER}",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}

# Local runs read credentials and table names from the project .env
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


def _token_matches(supplied: Optional[str], expected: Optional[str]) -> bool:
    if not expected or not isinstance(supplied, str):
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def _resource(settings: Settings):
    return boto3.resource("dynamodb", region_name=settings.region)


def _sessions(settings: Settings, resource) -> SessionLifecycleManager:
    return SessionLifecycleManager(resource.Table(settings.session_table), settings.session_ttl_seconds)


def _response(status_code: int, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    response = {"statusCode": status_code, "body": json.dumps(body, default=str)}
    if headers:
        response["headers"] = {"Content-Type": "application/json", **headers}
    return response


def _error_response(message: str, error: Exception, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    logger.error(
        message,
        extra={"context": {"error": str(error), "errorType": type(error).__name__}},
    )
    status_code = error.status_code if isinstance(error, LambdaError) else 500
    return _response(
        status_code,
        {"message": message, "error": str(error), "timestamp": to_iso(utc_now())},
        headers,
    )


def persist_handler(event, context, resource=None):
    """AWS Lambda entry point for persisting a fetched data collection.

    The upstream fetcher invokes this function with the collection in
    ``event["data"]``. Returns 200, 207 (partial) or 500 depending on how
    many records could be stored.
    """
    try:
        settings = load_settings()
        resource = resource or _resource(settings)

        engine = BatchPersistenceEngine(
            ConditionalWriteGateway(resource),
            retry=RetryPolicy(
                max_attempts=settings.retry.max_attempts,
                base_delay=settings.retry.base_delay,
                retry_on=is_transient,
            ),
            retention_months=settings.retention_months,
        )
        sessions = _sessions(settings, resource)

        data = event.get("data") or {}
        run = asyncio.run(run_persist_cycle(settings, engine, sessions, lambda since: data))
    except Exception as e:
        return _error_response("Error processing portal data", e)

    body = run.body()
    body["errorsLogged"] = len(read_and_clear_error_buffer())
    return _response(run.status.status_code, body)


def keep_alive_handler(event, context, resource=None):
    """AWS Lambda entry point for the scheduled session keep-alive."""
    try:
        settings = load_settings(require_tables=False)
        resource = resource or _resource(settings)
        keep_session_alive(settings, _sessions(settings, resource))
    except Exception as e:
        return _error_response("Error keeping session alive", e)

    return _response(200, {"message": "Successfully kept session alive", "timestamp": to_iso(utc_now())})


def manage_session_handler(event, context, resource=None):
    """API Gateway proxy handler.

    GET  returns the stored session record (token masked)
    POST ``{"sessionId": "..."}`` stores a new token and clears any failure
    """
    try:
        settings = load_settings(require_tables=False)
        headers = event.get("headers") or {}
        token = headers.get(AUTH_HEADER) or headers.get(AUTH_HEADER.lower())
        if not _token_matches(token, settings.auth_token):
            logger.warning("Missing or invalid authentication header")
            return _response(
                401,
                {"error": "Unauthorized", "message": f"Missing or invalid {AUTH_HEADER} header"},
                CORS_HEADERS,
            )

        sessions = _sessions(settings, resource or _resource(settings))
        method = event.get("httpMethod")

        if method == "GET":
            record = sessions.get_record()
            if record is None:
                return _response(404, {"error": "Not Found", "message": "No session found"}, CORS_HEADERS)
            item = record.to_item()
            item["sessionId"] = record.session_id[:4] + "..."
            item["state"] = sessions.state().value
            return _response(200, item, CORS_HEADERS)

        if method == "POST":
            try:
                payload = json.loads(event.get("body") or "{}")
            except json.JSONDecodeError:
                return _response(400, {"error": "Bad Request", "message": "Body must be JSON"}, CORS_HEADERS)
            session_id = payload.get("sessionId") if isinstance(payload, dict) else None
            if not is_valid_session_id(session_id):
                return _response(
                    400,
                    {"error": "Bad Request", "message": session_id_error_message(session_id)},
                    CORS_HEADERS,
                )
            if not sessions.set_token(session_id):
                return _response(500, {"error": "Internal Server Error", "message": "Session not stored"}, CORS_HEADERS)
            sessions.clear_failure()
            return _response(200, {"message": "Session updated", "state": sessions.state().value}, CORS_HEADERS)

        return _response(405, {"error": "Method Not Allowed", "message": f"Method {method} not allowed"}, CORS_HEADERS)
    except Exception as e:
        return _error_response("Error managing session", e, CORS_HEADERS)
