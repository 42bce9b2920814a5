"""Image enrichment pipeline.

Per image URL of an incident: reuse existing analysis → download → vision
→ persist one terminal ImageAnalysis row. Images are processed one after
another and independently; a failure on one URL is recorded as a FAILURE
row and the loop moves on. Nothing here raises to the caller, so a
background job running it always completes.
"""

import logging
import time
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from services.api.src.safesnap.adapters.blob_store import BlobStore
from services.api.src.safesnap.adapters.vision import VisionAnalysisClient
from services.api.src.safesnap.core.metrics import MetricsSink
from services.api.src.safesnap.db.repository import ImageAnalysisRepository

logger = logging.getLogger(__name__)

DOWNLOAD_FAILED = "Failed to download"


@dataclass(frozen=True)
class EnrichmentStats:
    total: int
    success: int
    failure: int
    success_rate: float


class ImageEnrichmentPipeline:
    def __init__(
        self,
        engine: Engine,
        blob_store: BlobStore,
        vision: VisionAnalysisClient,
        metrics: MetricsSink | None = None,
    ):
        self.analyses = ImageAnalysisRepository(engine)
        self.blob_store = blob_store
        self.vision = vision
        self.metrics = metrics

    def process_incident_images(self, incident_id: str, image_urls: list[str]) -> list[dict]:
        """Analyze every URL. Returns one terminal row per distinct URL."""
        logger.info(
            "enrichment_started",
            extra={"incident_id": incident_id, "images": len(image_urls)},
        )
        rows = [self.process_single_image(incident_id, url) for url in dict.fromkeys(image_urls)]
        ok = sum(1 for r in rows if r["processed"])
        logger.info(
            "enrichment_finished",
            extra={"incident_id": incident_id, "success": ok, "failure": len(rows) - ok},
        )
        return rows

    def process_single_image(self, incident_id: str, image_url: str) -> dict:
        existing = self.analyses.get(incident_id, image_url)
        if existing is not None:
            logger.info(
                "image_already_analyzed",
                extra={"incident_id": incident_id, "image_url": image_url},
            )
            return existing

        t0 = time.monotonic()
        try:
            row = self._analyze(incident_id, image_url)
        except Exception as exc:
            logger.error(
                "image_processing_failed",
                extra={"incident_id": incident_id, "image_url": image_url, "error": str(exc)},
            )
            row = self.analyses.create(
                incident_id, image_url, processed=False,
                error_message=f"Processing error: {exc}",
            )
        finally:
            if self.metrics:
                self.metrics.record_duration(
                    "image.processing.duration", (time.monotonic() - t0) * 1000
                )
        return row

    def _analyze(self, incident_id: str, image_url: str) -> dict:
        image_bytes = self.blob_store.download_bytes(image_url)
        if not image_bytes:
            logger.warning(
                "image_download_empty",
                extra={"incident_id": incident_id, "image_url": image_url},
            )
            return self.analyses.create(
                incident_id, image_url, processed=False, error_message=DOWNLOAD_FAILED,
            )

        result = self.vision.analyze(image_bytes)
        if not result.success:
            return self.analyses.create(
                incident_id, image_url, processed=False,
                error_message=result.error_message or "Vision analysis failed",
            )

        row = self.analyses.create(
            incident_id,
            image_url,
            processed=True,
            tags=", ".join(result.safety_tags),
            all_labels=", ".join(f"{desc} ({score:.2f})" for desc, score in result.all_labels),
            text_detected=result.text or None,
            confidence_score=result.confidence,
        )
        logger.info(
            "image_processed",
            extra={
                "incident_id": incident_id,
                "image_url": image_url,
                "tags": len(result.safety_tags),
            },
        )
        return row

    def reprocess_failed_analyses(self) -> int:
        """Replace every FAILURE row by re-running it. Returns the number retried."""
        failed = self.analyses.list_failed()
        for row in failed:
            self.analyses.delete(row["id"])
            self.process_single_image(row["incident_id"], row["image_url"])
        logger.info("enrichment_reprocessed", extra={"count": len(failed)})
        return len(failed)

    def incident_analyses(self, incident_id: str) -> list[dict]:
        return self.analyses.list_by_incident(incident_id)

    def stats(self) -> EnrichmentStats:
        total, success = self.analyses.counts()
        return EnrichmentStats(
            total=total,
            success=success,
            failure=total - success,
            success_rate=(success / total * 100) if total else 0.0,
        )
