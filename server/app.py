from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from errors import AppError
from server.routes import create_router


def create_app(sessions, transcriber, capture=None) -> FastAPI:
    app = FastAPI(title="MeetScribe", version="0.1.0")

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    router = create_router(sessions, transcriber, capture)
    app.include_router(router, prefix="/api")

    return app
