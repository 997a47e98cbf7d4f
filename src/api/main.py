"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routers import gate, query, schema

app = FastAPI(
    title="MedGraph Query Engine",
    version="0.1.0",
    description="Natural-language questions answered with self-repairing AQL over a medical graph",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(query.router, prefix="/query", tags=["Query"])
app.include_router(gate.router, prefix="/detect-intent", tags=["Gate"])
app.include_router(schema.router, tags=["Schema"])


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    from src.core.config import get_settings

    uvicorn.run("src.api.main:app", host="0.0.0.0", port=get_settings().api_port)
