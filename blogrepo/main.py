import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from blogrepo.cache import build_author_cache
from blogrepo.config import settings
from blogrepo.error_handlers import register_error_handlers
from blogrepo.middleware import RequestDiagnosticsMiddleware
from blogrepo.routers import authors, categories, metrics, posts, slugs, tags

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.state.author_cache = build_author_cache()
    await app.state.author_cache.connect()
    logger.info("Author cache ready (%s)", type(app.state.author_cache.backend).__name__)
    yield
    # Shutdown
    await app.state.author_cache.disconnect()

app = FastAPI(
    title="Blog Content Repository",
    description="Authors, categories, tags and posts with filtered, paginated queries",
    version="1.0.0",
    lifespan=lifespan,
)

register_error_handlers(app)

# Middleware
app.add_middleware(RequestDiagnosticsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(posts.router)
app.include_router(authors.router)
app.include_router(categories.router)
app.include_router(tags.router)
app.include_router(slugs.router)
app.include_router(metrics.router)

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
