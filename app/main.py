import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import nodes
from app.config import settings
from app.services.registry import registry

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await registry.aclose()


app = FastAPI(title="Pilot Worknode API", lifespan=lifespan)

app.include_router(nodes.router)
