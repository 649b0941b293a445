"""
Example FastAPI service with request metrics.

Demonstrates:
- Wiring the aggregator and observer from TALLY_* settings
- Draining pending metric updates on shutdown

Run with: uvicorn examples.service:app --port 8001
Then:     tally show total
"""

import asyncio
import random
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from tally import Aggregator, ObserverConfig, RequestObserver, instrument
from tally.config import get_settings
from tally.logging import configure_logging

configure_logging()

settings = get_settings()
aggregator = Aggregator.from_settings(settings)
observer = RequestObserver(aggregator, ObserverConfig.from_settings(settings))


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await observer.drain()
    await aggregator.store.close()


app = FastAPI(lifespan=lifespan)
instrument(app, observer)


@app.get("/users/{user_id}")
async def get_user(user_id: int) -> dict:
    await asyncio.sleep(random.uniform(0.001, 0.05))
    if user_id > 1000:
        raise HTTPException(status_code=404, detail="User not found")
    return {"id": user_id}


@app.post("/orders", status_code=201)
async def create_order() -> dict:
    return {"status": "created"}
