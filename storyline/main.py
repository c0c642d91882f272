from fastapi import FastAPI
import logging

from storyline.api.routes import router
from storyline.content.startup import load_engine_for_app

app = FastAPI(title="storyline", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@app.on_event("startup")
async def _startup() -> None:
    app.state.engine = load_engine_for_app()


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "storyline", "version": "0.1.0"}
