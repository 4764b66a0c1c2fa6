from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import time
import uuid
from typing import Callable
from lifeline.utils.logging_config import (
    get_logger,
    LogContext,
    log_api_access,
    log_performance_metric,
)

logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to handle request/response logging and context management
    """

    def __init__(self, app: FastAPI, log_requests: bool = True, log_responses: bool = True):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        client_ip = get_client_ip(request)
        # Optional, sent by hospital dashboards
        hospital_id = request.headers.get("x-hospital-id")

        with LogContext(req_id=request_id, hosp_id=hospital_id):
            start_time = time.time()

            if self.log_requests:
                logger.info(
                    f"Incoming request: {request.method} {request.url.path}",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "path": str(request.url.path),
                            "query_params": dict(request.query_params),
                            "client_ip": client_ip,
                            "action": "request_received",
                        }
                    },
                )

            try:
                response = await call_next(request)
            except Exception as e:
                response_time = time.time() - start_time
                logger.error(
                    f"Request failed: {request.method} {request.url.path}",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "path": str(request.url.path),
                            "error_type": type(e).__name__,
                            "error_message": str(e),
                            "response_time_seconds": round(response_time, 4),
                            "client_ip": client_ip,
                            "action": "request_failed",
                        }
                    },
                    exc_info=True,
                )
                raise

            status_code = response.status_code
            response_time = time.time() - start_time

            if self.log_responses:
                logger.info(
                    f"Request completed: {request.method} {request.url.path} - {status_code}",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "path": str(request.url.path),
                            "status_code": status_code,
                            "response_time_seconds": round(response_time, 4),
                            "client_ip": client_ip,
                            "action": "request_completed",
                        }
                    },
                )

            log_api_access(
                method=request.method,
                path=str(request.url.path),
                status_code=status_code,
                response_time=response_time,
                ip_address=client_ip,
            )

            if response_time > 1.0:
                log_performance_metric(
                    operation=f"{request.method} {request.url.path}",
                    duration_seconds=response_time,
                    additional_metrics={"status_code": status_code},
                )

            response.headers["X-Request-ID"] = request_id
            return response


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request"""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"
