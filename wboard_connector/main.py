"""
WBoard Connector: lets the WBoard monitoring console query this site and trigger
autologin / key rotation over HMAC-signed requests.
Port 8080 by default.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wboard_connector.api import login_router
from wboard_connector.api import router as api_router
from wboard_connector.audit import prune_audit_logs
from wboard_connector.config import PLUGIN_VERSION
from wboard_connector.database import SessionLocal, init_db
from wboard_connector.secret_store import get_secret_store
from wboard_connector.seed import bootstrap


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, ensure the secret key exists, seed user from env, prune old audit rows."""
    init_db()
    db = SessionLocal()
    try:
        bootstrap(db, get_secret_store())
        prune_audit_logs(db)
    finally:
        db.close()
    yield


app = FastAPI(title="WBoard Connector", version=PLUGIN_VERSION, lifespan=lifespan)
app.include_router(api_router, tags=["wboard"])
app.include_router(login_router, tags=["autologin"])


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "wboard_connector"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "wboard_connector.main:app",
        host="127.0.0.1",
        port=8080,
        reload=True,
    )
