from .orchestrator import IrisPipeline, PipelineResult, RunState, export_report, run_pipeline
from .questionnaire import Questionnaire

__all__ = [
    "IrisPipeline",
    "PipelineResult",
    "Questionnaire",
    "RunState",
    "export_report",
    "run_pipeline",
]
