from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from evsubsidy import __version__
from evsubsidy.api import health, scrape, snapshots

app = FastAPI(
    title="EV Subsidy Tracker",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(snapshots.router, prefix="/api/snapshots", tags=["snapshots"])
app.include_router(scrape.router, prefix="/api", tags=["scrape"])
