from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from observer.app.api.routes.observer import router as observer_router
from observer.app.config import cors_origins


app = FastAPI(title="Proactive Insight Observer", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(observer_router)
