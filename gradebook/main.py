# gradebook/main.py
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gradebook.core.config import Settings
from gradebook.core.context import open_context
from gradebook.routers.v1 import health
from gradebook.routers.v1 import students
from gradebook.routers.v1 import assignments
from gradebook.routers.v1 import grades

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = await open_context(settings)
        app.state.store = store
        try:
            await store.subscriptions.start()
            yield
        finally:
            app.state.store = None
            await store.close()

    app = FastAPI(
        title="Gradebook Store Service",
        description="Accesso al document store di students, assignments e grades",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"], allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(students.router, prefix="/api/v1", tags=["students"])
    app.include_router(assignments.router, prefix="/api/v1", tags=["assignments"])
    app.include_router(grades.router, prefix="/api/v1", tags=["grades"])
    return app


app = create_app()
