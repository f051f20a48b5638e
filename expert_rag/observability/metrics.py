import json
import logging
import os
import threading
from typing import List, Optional

from expert_rag.config import METRICS_PATH

logger = logging.getLogger(__name__)

_lock = threading.Lock()

# Latency history is capped so a long-running process stays bounded
_MAX_LATENCIES = 10000


class MetricsTracker:

    def __init__(self, path: Optional[str] = None):

        self._path = path or None

        self._metrics = self._empty()

        self._load()

    @staticmethod
    def _empty() -> dict:

        return {

            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,

            "total_latency": 0.0,
            "avg_latency": 0.0,

            # latency history (needed for percentiles)
            "latencies": [],

            "documents_ingested": 0,
            "chunks_ingested": 0,
            "ingest_failures": 0,

            "retrievals": 0,
            "retrievals_degraded": 0,

        }

    def _load(self):

        if not self._path or not os.path.exists(self._path):
            return

        try:

            with open(self._path, "r") as f:
                data = json.load(f)

            merged = self._empty()
            merged.update(data)
            self._metrics = merged

        except (OSError, json.JSONDecodeError) as e:

            logger.warning(
                "Metrics file unreadable, starting fresh",
                extra={"path": self._path, "error": str(e)},
            )

    def _save(self):

        if not self._path:
            return

        directory = os.path.dirname(self._path)

        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(self._path, "w") as f:
            json.dump(self._metrics, f, indent=2)

    def record_success(self, latency: float):

        with _lock:

            self._metrics["total_requests"] += 1

            self._metrics["successful_requests"] += 1

            self._metrics["total_latency"] += latency

            self._metrics["avg_latency"] = (
                self._metrics["total_latency"]
                / self._metrics["total_requests"]
            )

            latencies = self._metrics["latencies"]
            latencies.append(latency)
            del latencies[:-_MAX_LATENCIES]

            self._save()

    def record_failure(self):

        with _lock:

            self._metrics["total_requests"] += 1

            self._metrics["failed_requests"] += 1

            self._save()

    def record_ingest(self, chunks: int, success: bool = True):

        with _lock:

            if success:
                self._metrics["documents_ingested"] += 1
                self._metrics["chunks_ingested"] += chunks
            else:
                self._metrics["ingest_failures"] += 1

            self._save()

    def record_retrieval(self, degraded: bool = False):

        with _lock:

            self._metrics["retrievals"] += 1

            if degraded:
                self._metrics["retrievals_degraded"] += 1

            self._save()

    def get_metrics(self):

        return dict(self._metrics)

    def get_latency_percentile(self, percentile: float) -> float:

        latencies: List[float] = self._metrics.get("latencies", [])

        if not latencies:
            return 0.0

        sorted_latencies = sorted(latencies)

        index = int(len(sorted_latencies) * percentile / 100)

        index = min(index, len(sorted_latencies) - 1)

        return sorted_latencies[index]

    def reset(self):

        with _lock:
            self._metrics = self._empty()


metrics_tracker = MetricsTracker(METRICS_PATH)
