"""Stagehand push-to-deploy toolkit."""

from .pipeline import DeployPipeline, PipelineRun
from .plan import PlanLoader
from .runner import TaskRunner

__all__ = ["DeployPipeline", "PipelineRun", "PlanLoader", "TaskRunner"]
