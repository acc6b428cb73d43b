from fastapi import FastAPI

from permit_leads.api.routes.pipeline import router as pipeline_router


app = FastAPI(title="permit_leads")


if app:
    assert pipeline_router is not None

    app.include_router(pipeline_router, prefix="/api")
