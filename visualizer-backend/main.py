"""
Floor-Plan Visualizer: FastAPI entry point.
Sets up logging, CORS and the projects router.
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS
from routers.projects import router as projects_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

app = FastAPI(
    title="Floor-Plan Visualizer",
    description="Turns uploaded 2D floor plans into isometric and room-wise 3D renders."
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(projects_router)


@app.get("/health")
def health():
    return {"status": "ok"}
