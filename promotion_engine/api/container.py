#promotion_engine/api/container.py
from functools import lru_cache

from promotion_engine.approval.gate import ApprovalGate
from promotion_engine.container import Container, build_container
from promotion_engine.core.ledger import VersionLedger
from promotion_engine.orchestrator.pipeline_runner import PipelineRunner
from promotion_engine.orchestrator.promotion_service import PromotionService


# Singleton, built on first request
@lru_cache(maxsize=1)
def get_container() -> Container:
    return build_container()


def get_promotion_service() -> PromotionService:
    return get_container().service


def get_runner() -> PipelineRunner:
    return get_container().runner


def get_gate() -> ApprovalGate:
    return get_container().gate


def get_ledger() -> VersionLedger:
    return get_container().ledger
