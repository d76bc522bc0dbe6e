"""FastAPI application exposing the listening history sync over HTTP."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from history_sync.config import SyncConfig, load_config
from history_sync.errors import SyncError
from history_sync.sync_service import SyncService
from history_sync.utils.logger import get_logger


logger = get_logger()

# Global state
config: SyncConfig = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global config
    config = load_config()
    logger.info(f"Serving listening history sync for {config.github_repo or config.local_history_dir}")
    yield


app = FastAPI(
    title="Spotify Listening History Sync",
    description="Mirror recently played Spotify tracks into daily Markdown logs",
    lifespan=lifespan
)


@app.get("/sync")
def run_sync():
    """Run one sync. Declared sync so FastAPI runs it in the worker thread pool."""
    try:
        report = SyncService(config).run()
    except SyncError as e:
        raise HTTPException(status_code=500, detail=f"Sync failed: {e}")
    return report.to_dict()


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Spotify Sync is running!"


@app.get("/ping", response_class=PlainTextResponse)
async def ping():
    return "OK"


@app.get("/callback", response_class=PlainTextResponse)
async def spotify_auth_callback(code: str = None, error: str = None):
    """Show the authorization code Spotify redirects back with during setup."""
    if error:
        raise HTTPException(status_code=400, detail=f"Spotify authorization failed: {error}")
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")

    logger.info(f"Authorization code: {code}")
    return f"Authorization code received: {code}"
