from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.common.exceptions import LedgerError
from app.logger_config import logger


def register_error_handlers(app: FastAPI):
    @app.exception_handler(LedgerError)
    async def handle_ledger_error(request: Request, e: LedgerError):
        logger.info(f"{e.code} on {request.method} {request.url.path}: {e.message}")
        return JSONResponse(
            status_code=e.status_code,
            content={
                "success": False,
                "message": e.message,
                "error": e.code,
                "details": e.details,
                "status_code": e.status_code,
            },
        )

    @app.exception_handler(Exception)
    async def handle_exception(request: Request, e: Exception):
        # Log the exception with traceback
        logger.exception("Unhandled exception occurred")

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Internal Server Error",
                "status_code": 500,
            },
        )
