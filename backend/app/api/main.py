from fastapi import FastAPI
from .routes import scrape

app = FastAPI(title="Rental Listings Crawler API", version="0.1.0")

app.include_router(scrape.router, prefix="/scrape", tags=["scrape"])
