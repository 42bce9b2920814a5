"""Operational endpoints: metrics exposition and rate-limit state."""

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from services.api.src.safesnap.container import Container
from services.api.src.safesnap.domains.safety.schemas import Caller
from services.api.src.safesnap.routes.deps import get_container, manager_caller

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics", response_class=PlainTextResponse)
def metrics(container: Container = Depends(get_container)) -> str:
    return container.metrics.render_prometheus()


@router.get("/rate-limits")
def rate_limits(
    _: Caller = Depends(manager_caller),
    container: Container = Depends(get_container),
) -> dict:
    return {
        "limiter": container.rate_limiter.stats(),
        "openai": container.llm.service_status(),
    }
