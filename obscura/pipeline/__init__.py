"""Case-creation pipeline: generation steps, derived metadata, orchestration."""

from .orchestrator import CaseOrchestrator

__all__ = ["CaseOrchestrator"]
