import time
import os
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from ..core.logging import logger


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        request_id = os.urandom(8).hex()
        request.state.request_id = request_id

        # Log incoming request
        logger.request(
            operation="Incoming Request",
            request_id=request_id,
            method=request.method,
            url=str(request.url.path)
        )

        try:
            response = await call_next(request)
        except Exception as e:
            # Log unexpected exception
            logger.error(
                f"Unexpected error: {str(e)}",
                request_id=request_id,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
            )
            raise e

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Request-ID"] = request_id

        # HTTPException уже превращен в ответ внутри приложения, смотрим только на статус
        if response.status_code >= status.HTTP_400_BAD_REQUEST:
            logger.warning(
                f"Request failed with status {response.status_code}",
                request_id=request_id,
                status_code=response.status_code,
                method=request.method,
                url=str(request.url.path)
            )

        # For streams this is the time to first byte, not the full stream
        logger.response(
            operation="Outgoing Response",
            request_id=request_id,
            status_code=response.status_code,
            processing_time_ms=round(process_time * 1000)
        )

        return response
