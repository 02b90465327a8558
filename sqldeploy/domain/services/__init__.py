"""Domain services: loading, planning, enhancement, classification, orchestration."""

from sqldeploy.domain.services.descriptor_loader import DescriptorFeedLoader
from sqldeploy.domain.services.idempotency_enhancer import IdempotencyEnhancer, enhance_plan
from sqldeploy.domain.services.plan_builder import DeploymentPlanBuilder
from sqldeploy.domain.services.risk_classifier import RiskClassifier, TableMetadata, classify
from sqldeploy.domain.services.script_loader import LoadedScript, ScriptRepositoryLoader

__all__ = [
    "DescriptorFeedLoader",
    "IdempotencyEnhancer",
    "enhance_plan",
    "DeploymentPlanBuilder",
    "RiskClassifier",
    "TableMetadata",
    "classify",
    "LoadedScript",
    "ScriptRepositoryLoader",
]
