from .loader import load_pipeline, loads_pipeline, parse_pipeline
from .runner import run_pipeline, JobScheduler
from .executor import StepExecutor
from .model import Event, Pipeline, Job, Command, ActionRef, TriggerSpec, Status
from .cache import CacheManager, FileCacheBackend, MemoryCacheBackend

__all__ = [
    "load_pipeline", "loads_pipeline", "parse_pipeline", "run_pipeline", "JobScheduler",
    "StepExecutor", "Event", "Pipeline", "Job", "Command", "ActionRef", "TriggerSpec",
    "Status", "CacheManager", "FileCacheBackend", "MemoryCacheBackend",
]
