import logging
from contextlib import asynccontextmanager

import httpx
from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that read env vars

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from starlette.exceptions import HTTPException as StarletteHTTPException  # noqa: E402

from busesuy.config import load_settings  # noqa: E402

logger = logging.getLogger("busesuy")
logging.basicConfig(level=logging.INFO)

settings = load_settings()

# Global state populated during startup
app_state: dict = {"settings": settings}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared HTTP client, STM credentials and the live-session manager."""
    from busesuy.credentials import CredentialPool
    from busesuy.eta import EtaEstimator
    from busesuy.live_tracker import LiveArrivalTracker
    from busesuy.polling import LiveSessionManager
    from busesuy.stm_client import StmClient

    # Shared httpx client for connection pooling across all API calls
    http_client = httpx.AsyncClient(
        timeout=settings.http_timeout,
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
    )
    app_state["http_client"] = http_client

    credentials = CredentialPool.from_credentials(
        settings.stm_credentials,
        token_url=settings.stm_token_url,
        http_client=http_client,
        timeout=settings.http_timeout,
    )
    logger.info(f"STM credential pool: {len(credentials.caches)} client(s)")

    stm = StmClient(credentials, http_client=http_client, base_url=settings.stm_api_base_url, timeout=settings.http_timeout)
    eta = EtaEstimator(settings.google_maps_api_key, http_client=http_client)
    tracker = LiveArrivalTracker(stm, eta)

    stm_available = await stm.check_connection()
    if stm_available:
        logger.info("STM API reachable, live arrivals enabled")
    else:
        logger.warning("STM API not reachable, live sessions will stay idle until /stm/status succeeds")

    app_state.update(
        credentials=credentials,
        stm=stm,
        eta=eta,
        tracker=tracker,
        stm_available=stm_available,
        live_sessions=LiveSessionManager(tracker.run_pass, interval=settings.poll_interval, api_available=stm_available),
    )

    yield

    logger.info("Shutting down...")
    await app_state["live_sessions"].shutdown()
    await http_client.aclose()
    logger.info("Shared HTTP client closed")


app = FastAPI(title="BusesUY API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # Error bodies are {"error": detail}
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


from busesuy.routes import router  # noqa: E402

app.include_router(router, prefix="/api")
