"""
aiworker operations API.

Operator surface only: health, provider credential status, selector dry-run
and per-provider connectivity checks. Generation traffic goes through the
worker contexts, never through here.
"""

from fastapi import FastAPI
from dotenv import find_dotenv, load_dotenv

from .routes import providers
from aiworker.utils.logging_config import configure_logging

# Load local .env so provider keys are visible to the status checks.
load_dotenv(find_dotenv(usecwd=True), override=False)
configure_logging()

app = FastAPI(
    title="aiworker ops API",
    description="Provider status and selection diagnostics for the AI worker",
    version="0.1.0",
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "version": "0.1.0"}


app.include_router(providers.router, prefix="/api", tags=["Providers"])
