"""Analysis job manager — background scan with progress tracking."""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum

import sentry_sdk

from analysis.engine import ToneAnalyzer
from imaging.loader import load_image

logger = logging.getLogger(__name__)


class AnalysisStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class AnalysisJob:
    """Tracks state of a background analysis."""

    source_path: str = ""
    status: AnalysisStatus = AnalysisStatus.IDLE
    progress: float = 0.0
    note: str = ""
    width: int = 0
    height: int = 0
    source_width: int = 0
    source_height: int = 0
    error: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _done: threading.Event = field(default_factory=threading.Event)
    _thread: threading.Thread | None = field(default=None, repr=False)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the job leaves RUNNING. Returns False on timeout."""
        return self._done.wait(timeout)

    def report(self, fraction: float, note: str):
        with self._lock:
            # Progress never moves backwards
            self.progress = max(self.progress, fraction)
            self.note = note


class AnalysisManager:
    """Runs image analyses on a worker thread. One job at a time.

    Jobs always run to completion; there is no cancel. The analyzer is only
    touched by the worker while a job runs, so callers read results after
    the job is COMPLETE.
    """

    def __init__(self, analyzer: ToneAnalyzer | None = None):
        self.analyzer = analyzer or ToneAnalyzer()
        self._job: AnalysisJob | None = None

    @property
    def job(self) -> AnalysisJob | None:
        return self._job

    @property
    def busy(self) -> bool:
        return self._job is not None and self._job.status == AnalysisStatus.RUNNING

    def start(self, path: str) -> AnalysisJob:
        """Decode ``path`` and scan it in the background.

        Raises:
            RuntimeError: If an analysis is already running.
        """
        if self.busy:
            raise RuntimeError("Analysis already in progress")

        job = AnalysisJob(source_path=path)
        self._job = job

        thread = threading.Thread(target=self._run, args=(job, path), daemon=True)
        job._thread = thread
        job.status = AnalysisStatus.RUNNING
        job.note = "Decoding file…"
        thread.start()
        return job

    def _run(self, job: AnalysisJob, path: str):
        try:
            image = load_image(path)
            with job._lock:
                job.width = image.width
                job.height = image.height
                job.source_width = image.source_width
                job.source_height = image.source_height

            self.analyzer.scan(image.pixels, image.width, image.height, job.report)

            with job._lock:
                job.progress = 1.0
                job.status = AnalysisStatus.COMPLETE
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Analysis failed")
            with job._lock:
                job.status = AnalysisStatus.ERROR
                job.error = f"Analysis failed: {type(e).__name__}"
        finally:
            job._done.set()

    def get_status(self) -> dict:
        """Return serializable status dict."""
        if self._job is None:
            return {
                "status": AnalysisStatus.IDLE.value,
                "progress": 0.0,
                "note": "",
            }
        with self._job._lock:
            return {
                "status": self._job.status.value,
                "progress": round(self._job.progress, 4),
                "note": self._job.note,
                "path": self._job.source_path,
                "width": self._job.width,
                "height": self._job.height,
                "source_width": self._job.source_width,
                "source_height": self._job.source_height,
                "error": self._job.error,
            }
