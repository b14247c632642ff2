# ─────────────────────────────────────────────────────────────────────────────
# POST /generate/{model} — submit a job and wait for its result (THIN)
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import APIRouter, Depends

from dispatcher.dependencies import get_orchestrator
from dispatcher.schemas import GenerateRequest, GenerateResponse
from dispatcher.services.dispatch import DispatchOrchestrator

router = APIRouter()


@router.post("/generate/{model}", response_model=GenerateResponse)
async def generate(
    model: str,
    body: GenerateRequest | None = None,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
) -> GenerateResponse:
    """Queue a generation job for ``model`` and return the worker's result.

    The body is optional; every field left out keeps the model default.
    Errors are exceptions mapped by the registered handlers:
    400 unknown model, 503 backlog full, 500 anything else.
    """
    return await orchestrator.generate(model, body)
