# promotion_engine/run_api.py
"""Serve the promotion API (manual trigger + approval signals)."""

import logging

import uvicorn

from promotion_engine.config.settings import PromotionSettings


def main() -> None:
    settings = PromotionSettings()

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)

    logger.info("=" * 80)
    logger.info("🚀 PROMOTION ENGINE API")
    logger.info("=" * 80)
    logger.info(f"Listening on {settings.api_host}:{settings.api_port}")
    logger.info(f"Foundation family: {'dual' if settings.dual_foundation else 'single'}")

    # Single worker: runs and pending approvals live in this process
    uvicorn.run(
        "promotion_engine.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
