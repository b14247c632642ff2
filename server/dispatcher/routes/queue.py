# ─────────────────────────────────────────────────────────────────────────────
# GET /queue/{model} — current backlog of one model, as plain text
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from dispatcher.dependencies import get_orchestrator
from dispatcher.services.dispatch import DispatchOrchestrator

router = APIRouter()


@router.get("/queue/{model}", response_class=PlainTextResponse)
async def queue_depth(
    model: str,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
) -> PlainTextResponse:
    """Active + delayed + waiting jobs for ``model``. 400 if the model is unknown."""
    depth = await orchestrator.queue_depth(model)
    return PlainTextResponse(str(depth))
