from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from loan_review.api.v1 import api_router
from loan_review.core.errors import register_exception_handlers
from loan_review.core.limiter import limiter
from loan_review.core.logging import configure_logging
from loan_review.core.response_envelope import register_response_envelope
from loan_review.core.settings import settings
from loan_review.events import register_event_handlers
from loan_review.middlewares.request_context import RequestContextMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Loan Review Workflow", version="0.1.0")
    register_exception_handlers(app)
    register_response_envelope(app)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
