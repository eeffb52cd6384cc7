# api/main.py
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import admin_refresh
from api.routes import leaderboards, matches, players
from app.meta import router as meta

app = FastAPI(
    title="CWF.LOL API",
    version="0.3.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health Check
@app.get("/")
def root():
    return {"status": "ok", "service": "CWF.LOL API"}


app.include_router(leaderboards.router)
app.include_router(players.router)
app.include_router(matches.router)
app.include_router(meta.router)
app.include_router(admin_refresh.router)
