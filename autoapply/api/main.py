import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from autoapply.api import routes_audit, routes_runs
from autoapply.core.config import get_settings
from autoapply.core.logging import setup_logging

settings = get_settings()
setup_logging(logging.INFO)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/healthz")
def healthz():
    return {"status": "ok", "service": settings.app_name}


app.include_router(routes_runs.router)
app.include_router(routes_audit.router)
