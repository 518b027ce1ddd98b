"""Recipeflow API - recipe execution with human review.

Serves recipes, company standards and executions:
- Recipes (ordered AI / scraping / script / http / transform steps)
- Company standards (brand voice, platform, image guidance)
- Executions (run, pause for review, approve / reject / retry / cancel)
- Outputs gallery and a workflow assistant that drafts recipes
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recipeflow import __version__
from recipeflow.api.routes import assistant, executions, executors, outputs, recipes, standards
from recipeflow.db import init_db
from recipeflow.executor.engine import get_workflow_engine
from recipeflow.recipes.templates import get_template_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SEED_TEMPLATES = os.environ.get("RECIPEFLOW_SEED_TEMPLATES", "true").lower() not in ("0", "false", "no")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Initializing database...")
    init_db()

    if SEED_TEMPLATES:
        logger.info("Seeding template recipes...")
        seeded = get_template_registry().seed()
        logger.info(f"Seeded {seeded} template recipes")

    engine = get_workflow_engine()
    logger.info(f"Registered executors: {', '.join(engine.registry.types())}")

    resumed = engine.recover()
    if resumed:
        logger.info(f"Resumed {resumed} interrupted executions")

    logger.info("Recipeflow API ready")
    yield
    logger.info("Shutting down Recipeflow API")


# Create FastAPI app
app = FastAPI(
    title="Recipeflow API",
    description="""
## Recipe Execution Service

Runs multi-step content recipes against LLM providers and a review-scraping
API, pausing for human review between steps.

### Key Endpoints

- `GET /v1/recipes` - List recipes (yours plus templates)
- `POST /v1/executions` - Start a run
- `GET /v1/executions/{id}/status` - Poll a run
- `POST /v1/executions/{id}/steps/{step_id}/approve` - Approve a step
- `GET /v1/standards` - Company standards injected into prompts
- `GET /v1/outputs` - Step outputs grouped by kind
- `POST /v1/assistant/generate` - Draft a recipe from a description
""",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers with /v1 prefix
app.include_router(recipes.router, prefix="/v1")
app.include_router(standards.router, prefix="/v1")
app.include_router(executions.router, prefix="/v1")
app.include_router(executors.router, prefix="/v1")
app.include_router(outputs.router, prefix="/v1")
app.include_router(assistant.router, prefix="/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Recipeflow API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "recipes": "/v1/recipes",
            "standards": "/v1/standards",
            "executions": "/v1/executions",
            "executors": "/v1/executors",
            "outputs": "/v1/outputs",
            "assistant": "/v1/assistant",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    engine = get_workflow_engine()
    return {
        "status": "healthy",
        "version": __version__,
        "executors": engine.registry.types(),
        "templates": get_template_registry().count(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "recipeflow.api.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=True,
    )
