"""Builds the service object graph once at startup."""

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from services.api.src.safesnap.adapters.blob_store import BlobStore, LocalBlobStore
from services.api.src.safesnap.adapters.openai_llm import GenerativeRcaClient
from services.api.src.safesnap.adapters.vision import VisionAnalysisClient
from services.api.src.safesnap.config import Settings, settings as default_settings
from services.api.src.safesnap.core.dispatch import build_dispatcher
from services.api.src.safesnap.core.enrichment import ImageEnrichmentPipeline
from services.api.src.safesnap.core.incidents import IncidentService
from services.api.src.safesnap.core.metrics import MetricsSink
from services.api.src.safesnap.core.rate_limit import RateLimiter
from services.api.src.safesnap.core.workflow import RcaSuggestionWorkflow
from services.api.src.safesnap.db.engine import get_engine


@dataclass
class Container:
    settings: Settings
    engine: Engine
    metrics: MetricsSink
    rate_limiter: RateLimiter
    dispatcher: object
    blob_store: BlobStore
    vision: VisionAnalysisClient
    llm: GenerativeRcaClient
    enrichment: ImageEnrichmentPipeline
    workflow: RcaSuggestionWorkflow
    incidents: IncidentService


def build_container(
    cfg: Settings | None = None,
    engine: Engine | None = None,
    *,
    dispatcher=None,
    blob_store: BlobStore | None = None,
    vision: VisionAnalysisClient | None = None,
    llm: GenerativeRcaClient | None = None,
    rate_limiter: RateLimiter | None = None,
    metrics: MetricsSink | None = None,
) -> Container:
    """Wire every service from settings. Any piece can be passed in for tests."""
    cfg = cfg or default_settings
    engine = engine or get_engine()
    metrics = metrics or MetricsSink()
    rate_limiter = rate_limiter or RateLimiter()
    dispatcher = dispatcher or build_dispatcher(cfg.worker_pool_size, cfg.worker_queue_capacity)

    blob_store = blob_store or LocalBlobStore(
        root=cfg.blob_root,
        public_base_url=cfg.blob_public_base_url,
        signing_secret=cfg.blob_signing_secret,
        upload_expiry_s=cfg.blob_upload_expiry_s,
        download_expiry_s=cfg.blob_download_expiry_s,
        metrics=metrics,
    )
    vision = vision or VisionAnalysisClient(
        api_key=cfg.vision_api_key,
        endpoint=cfg.vision_endpoint,
        enabled=cfg.vision_enabled,
        mock_mode=cfg.vision_mock_mode,
        timeout_s=cfg.vision_timeout_s,
        metrics=metrics,
    )
    llm = llm or GenerativeRcaClient(
        rate_limiter=rate_limiter,
        metrics=metrics,
        api_key=cfg.openai_api_key,
        model=cfg.openai_model,
        base_url=cfg.openai_base_url,
        max_tokens=cfg.openai_max_tokens,
        temperature=cfg.openai_temperature,
        timeout_s=cfg.openai_timeout_s,
        enabled=cfg.openai_enabled,
        mock_mode=cfg.openai_mock_mode,
        requests_per_minute=cfg.openai_requests_per_minute,
        tokens_per_minute=cfg.openai_tokens_per_minute,
        user_requests_per_minute=cfg.openai_user_requests_per_minute,
    )

    enrichment = ImageEnrichmentPipeline(engine, blob_store, vision, metrics)
    workflow = RcaSuggestionWorkflow(engine, llm, metrics)
    incidents = IncidentService(engine, dispatcher, enrichment, workflow, metrics)

    return Container(
        settings=cfg,
        engine=engine,
        metrics=metrics,
        rate_limiter=rate_limiter,
        dispatcher=dispatcher,
        blob_store=blob_store,
        vision=vision,
        llm=llm,
        enrichment=enrichment,
        workflow=workflow,
        incidents=incidents,
    )
