from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from registrar.api.v1.academic_years.router import router as academic_years_router
from registrar.api.v1.audit.router import router as audit_router
from registrar.api.v1.historical_records.router import router as historical_records_router
from registrar.api.v1.sub_periods.router import router as sub_periods_router
from registrar.core.config import settings
from registrar.core.dispatch import get_dispatcher
from registrar.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Let queued audit entries and notifications finish before the process exits
    await get_dispatcher().drain()


def create_app() -> FastAPI:
    setup_logging(settings)
    app = FastAPI(title="Registrar", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(academic_years_router)
    app.include_router(sub_periods_router)
    app.include_router(historical_records_router)
    app.include_router(audit_router)

    return app


app = create_app()
