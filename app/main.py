from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.approvals.router import router as approvals_router
from app.api.v1.assignments.router import router as assignments_router
from app.api.v1.ledger.router import router as ledger_router
from app.api.v1.progress.router import router as progress_router
from app.api.v1.timetables.router import router as timetables_router
from app.api.v1.units.router import router as units_router
from app.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Teaching Progress Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(ledger_router)
    app.include_router(units_router)
    app.include_router(approvals_router)
    app.include_router(assignments_router)
    app.include_router(timetables_router)
    app.include_router(progress_router)

    return app


app = create_app()
