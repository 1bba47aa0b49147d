"""
Prometheus metrics for the file cleanup system.

Tracks per-target deletions, deletion errors, pass durations and the size of
each target's index.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, start_http_server

from .file_index import FileIndex
from .retention_models import CleanupOperation


class RetentionMetrics:
    """Metrics collected from enforcement passes and index updates."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Args:
            registry: Optional Prometheus registry. A private registry is created if None.
        """
        self.registry = registry or CollectorRegistry()
        self.logger = logging.getLogger(__name__)

        self.files_deleted = Counter(
            'filecleanup_files_deleted_total',
            'Files deleted by enforcement passes',
            ['target', 'policy'],
            registry=self.registry
        )

        self.deletion_errors = Counter(
            'filecleanup_deletion_errors_total',
            'Files that could not be deleted',
            ['target', 'policy'],
            registry=self.registry
        )

        self.bytes_freed = Counter(
            'filecleanup_bytes_freed_total',
            'Bytes freed by enforcement passes',
            ['target', 'policy'],
            registry=self.registry
        )

        self.passes = Counter(
            'filecleanup_passes_total',
            'Enforcement passes by outcome',
            ['target', 'policy', 'status'],
            registry=self.registry
        )

        self.pass_duration = Histogram(
            'filecleanup_pass_duration_seconds',
            'Enforcement pass duration',
            ['target', 'policy'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0],
            registry=self.registry
        )

        self.tracked_files = Gauge(
            'filecleanup_tracked_files',
            'Files currently tracked per target',
            ['target'],
            registry=self.registry
        )

        self.tracked_bytes = Gauge(
            'filecleanup_tracked_bytes',
            'Aggregate size of tracked files per target',
            ['target'],
            registry=self.registry
        )

    def record_operation(self, operation: CleanupOperation):
        """Record the outcome of one enforcement pass."""
        labels = {'target': operation.target, 'policy': operation.policy.value}
        self.passes.labels(status=operation.status, **labels).inc()
        if operation.status == 'skipped':
            return

        self.files_deleted.labels(**labels).inc(operation.files_deleted)
        self.deletion_errors.labels(**labels).inc(operation.deletion_errors)
        self.bytes_freed.labels(**labels).inc(operation.storage_freed_bytes)
        self.pass_duration.labels(**labels).observe(operation.duration_seconds)

    def update_index(self, index: FileIndex):
        """Refresh the size gauges of one target."""
        self.tracked_files.labels(target=index.root).set(len(index))
        self.tracked_bytes.labels(target=index.root).set(index.total_size_bytes())

    def serve(self, port: int):
        """Expose the registry over HTTP."""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Metrics endpoint listening on port {port}")

    def generate(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)
