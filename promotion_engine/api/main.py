from fastapi import FastAPI

from promotion_engine.api.routes.ledger import router as ledger_router
from promotion_engine.api.routes.releases import router as releases_router
from promotion_engine.api.routes.runs import router as runs_router

app = FastAPI(title="Release Promotion Engine API")


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(runs_router)
app.include_router(ledger_router)
app.include_router(releases_router)
