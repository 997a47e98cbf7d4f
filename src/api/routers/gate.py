"""POST /detect-intent -- greeting / off-topic gate in front of the engine."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.api.deps import get_generate
from src.engine.gate import detect_intent
from src.engine.synthesizer import Generate

router = APIRouter()


class GateRequest(BaseModel):
    query: str = Field("", max_length=1000, description="Raw chat message")


class GateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intent: str
    confidence: float
    message: str
    should_process: bool = Field(..., alias="shouldProcessQuery")


@router.post("", response_model=GateResponse)
def detect_intent_endpoint(req: GateRequest, generate: Generate = Depends(get_generate)):
    """Classify a message as greeting, medical_query or off_topic."""
    decision = detect_intent(req.query, generate=generate)
    body = GateResponse(
        intent=decision.intent.value,
        confidence=decision.confidence,
        message=decision.message,
        should_process=decision.should_process,
    )
    if not req.query.strip():
        return JSONResponse(status_code=400, content=body.model_dump(by_alias=True))
    return body
