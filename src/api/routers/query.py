"""POST /query -- main engine endpoint."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from src.api.deps import get_execute, get_generate
from src.engine.gate import detect_intent
from src.engine.refinement import Execute
from src.engine.service import answer
from src.engine.synthesizer import Generate
from src.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class QueryRequest(BaseModel):
    query: str = Field("", max_length=1000, description="Natural-language question about the medical data")
    use_gate: bool = Field(True, description="Run the greeting/off-topic gate first")
    use_patterns: bool = Field(True, description="Allow ready-made queries for well-known question shapes")


class AttemptItem(BaseModel):
    index: int
    query: str
    source: str
    outcome: str
    shape: str | None = None
    is_valid: bool = Field(..., alias="isValid")
    reason: str = ""
    elapsed_ms: int = Field(0, alias="elapsedMs")
    broadened: bool = False


class QueryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thought: str
    action: str
    query: str
    result: list[Any]
    conclusion: str
    attempts: int
    attempt_history: list[str] = Field(..., alias="attemptHistory")
    attempt_details: list[AttemptItem] = Field(default_factory=list, alias="attemptDetails")
    intent: dict | None = None
    explanation: str = ""
    is_valid: bool = Field(False, alias="isValid")
    degraded: bool = False
    broadened: bool = False
    latency_ms: int = Field(0, alias="latencyMs")


@router.post("", response_model=QueryResponse)
def query_endpoint(
    req: QueryRequest,
    generate: Generate = Depends(get_generate),
    execute: Execute = Depends(get_execute),
):
    """Gate -> classify -> refine -> conclude."""
    if not req.query.strip():
        raise HTTPException(status_code=400, detail="Query is required")

    if req.use_gate:
        decision = detect_intent(req.query, generate=generate)
        if not decision.should_process:
            return QueryResponse(
                thought=f"This appears to be a {decision.intent.value} query.",
                action="respond_to_user",
                query="",
                result=[],
                conclusion=decision.message,
                attempts=0,
                attempt_history=[],
            )

    result = answer(req.query, generate=generate, execute=execute, use_patterns=req.use_patterns)
    if result.error == "invalid_input":
        raise HTTPException(status_code=400, detail=result.conclusion)

    return QueryResponse(
        thought=result.thought,
        action=result.action,
        query=result.final_query,
        result=result.rows,
        conclusion=result.conclusion,
        attempts=result.attempt_count,
        attempt_history=result.attempt_history,
        attempt_details=[AttemptItem(**a.to_dict()) for a in result.attempts],
        intent=result.intent.model_dump(mode="json") if result.intent else None,
        explanation=result.explanation,
        is_valid=result.is_valid,
        degraded=result.degraded,
        broadened=result.broadened,
        latency_ms=result.latency_ms,
    )
