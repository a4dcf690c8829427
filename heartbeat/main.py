import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

from config import MonitorConfig, load_config
from errors import ConfigurationError
from monitor_manager import MonitorManager
from routers import trace

# Setup Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("RconHeartbeat")


def create_manager(config: MonitorConfig) -> MonitorManager:
    logging.getLogger().setLevel(config.log_level)
    return MonitorManager(config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    load_dotenv()
    try:
        config = load_config()
    except ConfigurationError as e:
        # Nothing to monitor without a valid configuration
        logger.critical(f"Startup aborted: {e}")
        raise

    manager = create_manager(config)
    app.state.manager = manager
    monitor_task = asyncio.create_task(manager.run_loop())

    yield

    # Shutdown
    logger.info("RCON Heartbeat Monitor Stopping...")
    manager.stop()
    await monitor_task


app = FastAPI(title="RCON Heartbeat Monitor", lifespan=lifespan)
app.include_router(trace.router)


def _manager() -> MonitorManager:
    manager = getattr(app.state, "manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Monitor not started")
    return manager


@app.get("/")
def read_root():
    return {"status": "online", "service": "rcon-heartbeat"}


@app.get("/status")
def get_monitor_status():
    return _manager().get_status()


@app.get("/history")
async def get_history(limit: int = 50):
    manager = _manager()
    return {"enabled": manager.storage.enabled, "entries": await manager.storage.read_recent(limit)}


def run():
    """Console entry point: serve the status API and run the monitor loop."""
    load_dotenv()
    try:
        config = load_config()
    except ConfigurationError as e:
        logger.critical(f"Startup aborted: {e}")
        raise SystemExit(2)
    uvicorn.run(app, host=config.status_host, port=config.status_port)


if __name__ == "__main__":
    run()
