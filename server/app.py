from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from server.routes import create_router


def create_app(controller, ledger, transcriber) -> FastAPI:
    app = FastAPI(title="MeetMate", version="0.1.0")

    # The browser extension calls from a chrome-extension:// origin
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"(chrome-extension://.*|http://(127\.0\.0\.1|localhost)(:\d+)?)",
        allow_methods=["*"],
        allow_headers=["*"],
    )

    router = create_router(controller, ledger, transcriber)
    app.include_router(router, prefix="/api")

    return app
