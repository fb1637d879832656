from .dsl import checkout, job, sh, matrix, pipeline, wf, on_push, on_pull_request, on_release
from .runner import dispatch, run_job, run_pipeline, load_workflow
from .model import Job, Step, Pipeline, Trigger, TriggerEvent, Status
from .pipelines import ci_pipeline, release_pipeline, default_pipelines

__all__ = [
    "checkout", "job", "sh", "matrix", "pipeline", "wf", "on_push", "on_pull_request", "on_release",
    "dispatch", "run_job", "run_pipeline", "load_workflow",
    "Job", "Step", "Pipeline", "Trigger", "TriggerEvent", "Status",
    "ci_pipeline", "release_pipeline", "default_pipelines",
]
