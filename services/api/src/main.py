from contextlib import asynccontextmanager
from pathlib import Path

import conf
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from jobs.expiry import ExpirySweeper
from marketplace.engine import ReservationEngine
from marketplace.errors import MarketplaceError
from marketplace.listings import ListingService
from marketplace.memory_store import InMemoryMarketStore
from marketplace.store import MarketStore
from routes.base import router
from routes.errors import marketplace_error_handler
from utils import auth, log
from utils.clock import SystemClock

log.init(conf.get_log_level(), conf.get_environment())
logger = log.get_logger(__name__)


def _build_store(backend: str) -> MarketStore:
    if backend == "memory":
        logger.warning("Using the in-memory store; data is lost on restart")
        return InMemoryMarketStore()

    from marketplace.couchbase_store import CouchbaseMarketStore

    return CouchbaseMarketStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Check database connection
    store = _build_store(conf.get_store_backend())
    await store.connect()

    app.state.auth_client = auth.AuthClient(conf.get_auth_config())

    clock = SystemClock()
    sweep_conf = conf.get_expiry_sweep_conf()
    app.state.store = store
    app.state.listing_service = ListingService(store, clock)
    app.state.reservation_engine = ReservationEngine(store, clock)
    app.state.expiry_sweeper = ExpirySweeper(
        store,
        clock,
        sweep_conf.tzinfo,
        hour=sweep_conf.hour,
        minute=sweep_conf.minute,
    )

    if sweep_conf.enabled:
        await app.state.expiry_sweeper.start()
    else:
        logger.warning("Expiry sweep is disabled (set EXPIRY_SWEEP_ENABLED to enable)")

    yield

    app.state.expiry_sweeper.stop()


app = FastAPI(
    title="Campus Surplus Market API",
    version="0.1.0",
    docs_url="/docs",
    lifespan=lifespan,
    debug=conf.get_http_expose_errors(),
)

app.include_router(router)
app.add_exception_handler(MarketplaceError, marketplace_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if not conf.validate():
    raise ValueError("Invalid configuration.")

http_conf = conf.get_http_conf()
logger.info(f"Starting API on port {http_conf.port}")

logger.debug("--- Registered Routes ---")
for route in app.routes:
    methods_set = getattr(route, "methods", None)
    methods = ", ".join(methods_set) if methods_set else "Any"
    path = getattr(route, "path", "<unknown>")
    logger.debug(f"{path} [{methods}]")
logger.debug("-------------------------")

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=http_conf.host,
        port=http_conf.port,
        reload=http_conf.autoreload,
        log_level="info",
        reload_dirs=[str(Path(__file__).parent), "/models", "/clients"],
        log_config=None,
    )
