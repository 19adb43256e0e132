from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Final, Iterable, Optional, Sequence

from .config import TerrainConfig
from .decoder import TilePayload
from .heightmap import Heightmap
from .provider import CancellationToken, build_heightmap
from .tile_address import TileCoordinate

logger = logging.getLogger(__name__)

HEIGHTMAP_JOB_STATUSES: Final[frozenset[str]] = frozenset({"success", "failed", "cancelled"})


@dataclass(frozen=True)
class HeightmapJob:
    coord: TileCoordinate
    payload: TilePayload

    def key(self) -> str:
        return f"{self.coord.level}/{self.coord.x}/{self.coord.y}"


@dataclass(frozen=True)
class HeightmapJobResult:
    job: HeightmapJob
    status: str
    heightmap: Optional[Heightmap] = None
    error: Optional[str] = None
    duration_s: float = 0.0

    def __post_init__(self) -> None:
        if self.status not in HEIGHTMAP_JOB_STATUSES:
            raise ValueError(f"Unknown job status: {self.status!r}")


@dataclass(frozen=True)
class HeightmapBatchSummary:
    total_jobs: int
    succeeded: int
    failed: int
    cancelled: int
    duration_s: float
    results: Sequence[HeightmapJobResult]

    def to_dict(self) -> dict[str, object]:
        return {
            "total_jobs": self.total_jobs,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "duration_s": self.duration_s,
            "failures": [
                {"tile": result.job.key(), "error": result.error}
                for result in self.results
                if result.status == "failed"
            ],
        }


class HeightmapBatchBuilder:
    """Build many independent heightmaps concurrently.

    A failing job is recorded in its result and never affects other jobs.
    """

    def __init__(
        self,
        config: TerrainConfig,
        *,
        max_workers: int = 4,
        progress_log_every: int = 1,
        executor: Optional[Executor] = None,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if progress_log_every <= 0:
            raise ValueError("progress_log_every must be > 0")

        self._config = config
        self._max_workers = int(max_workers)
        self._progress_log_every = int(progress_log_every)
        self._executor = executor

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def process(
        self, job: HeightmapJob, *, cancel: Optional[CancellationToken] = None
    ) -> HeightmapJobResult:
        t0 = time.perf_counter()
        try:
            heightmap = build_heightmap(job.coord, job.payload, self._config, cancel=cancel)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "heightmap_job_failed",
                extra={"tile": job.key(), "error": str(exc)},
            )
            return HeightmapJobResult(
                job=job,
                status="failed",
                error=str(exc),
                duration_s=time.perf_counter() - t0,
            )

        status = "cancelled" if heightmap is None else "success"
        return HeightmapJobResult(
            job=job,
            status=status,
            heightmap=heightmap,
            duration_s=time.perf_counter() - t0,
        )

    def run(
        self,
        jobs: Iterable[HeightmapJob],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> HeightmapBatchSummary:
        jobs_list = list(jobs)
        total = len(jobs_list)
        if total == 0:
            return HeightmapBatchSummary(
                total_jobs=0,
                succeeded=0,
                failed=0,
                cancelled=0,
                duration_s=0.0,
                results=[],
            )

        t0 = time.perf_counter()
        logger.info(
            "heightmap_batch_started",
            extra={"total_jobs": total, "max_workers": self._max_workers},
        )

        succeeded = 0
        failed = 0
        cancelled = 0
        completed = 0
        results: list[HeightmapJobResult] = []

        owns_executor = self._executor is None
        executor = self._executor or ThreadPoolExecutor(max_workers=self._max_workers)

        try:
            futures: dict[Future[HeightmapJobResult], HeightmapJob] = {
                executor.submit(self.process, job, cancel=cancel): job for job in jobs_list
            }
            for future in as_completed(futures):
                result = future.result()
                results.append(result)
                completed += 1
                if result.status == "success":
                    succeeded += 1
                elif result.status == "cancelled":
                    cancelled += 1
                else:
                    failed += 1

                if completed == total or completed % self._progress_log_every == 0:
                    logger.info(
                        "heightmap_batch_progress",
                        extra={
                            "completed": completed,
                            "total_jobs": total,
                            "succeeded": succeeded,
                            "failed": failed,
                            "cancelled": cancelled,
                        },
                    )
        finally:
            if owns_executor:
                executor.shutdown(wait=True)

        duration_s = time.perf_counter() - t0
        logger.info(
            "heightmap_batch_finished",
            extra={
                "total_jobs": total,
                "succeeded": succeeded,
                "failed": failed,
                "cancelled": cancelled,
                "duration_s": duration_s,
            },
        )

        return HeightmapBatchSummary(
            total_jobs=total,
            succeeded=succeeded,
            failed=failed,
            cancelled=cancelled,
            duration_s=duration_s,
            results=results,
        )
