from contextlib import asynccontextmanager
import uvicorn
from fastapi import FastAPI
from publish_cache.api.routes import router as api_router
from publish_cache.config import HOST, PORT, SCHEDULER_ENABLED
from publish_cache.db import Base, engine
from publish_cache.models import SERVICE_TABLES
from publish_cache.scheduler import shutdown_scheduler, start_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    # metadata and job tables up front; the row table is provisioned on first rebuild
    Base.metadata.create_all(bind=engine, tables=SERVICE_TABLES)
    start_scheduler(schedule_rebuilds=SCHEDULER_ENABLED)
    yield
    shutdown_scheduler()


app = FastAPI(title="publish-cache", lifespan=lifespan)
app.include_router(api_router)


def run():
    uvicorn.run("publish_cache.main:app", host=HOST, port=PORT)


if __name__ == "__main__":
    run()
