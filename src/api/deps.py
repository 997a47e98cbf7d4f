"""Injectable collaborators for the routers (overridden in tests)."""
from __future__ import annotations

from src.db.executor import execute_aql
from src.engine.llm_client import call_llm
from src.engine.refinement import Execute
from src.engine.synthesizer import Generate


def get_generate() -> Generate:
    return call_llm


def get_execute() -> Execute:
    return execute_aql
