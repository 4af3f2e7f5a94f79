from .download import DownloadPipeline, PipelineResult
from .pool import WorkerPool

__all__ = ["DownloadPipeline", "PipelineResult", "WorkerPool"]
