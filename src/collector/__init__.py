"""
Fleet log collector.

Discovers a fleet of log-producing endpoints, runs one Pod per endpoint that
streams its append-only batches, and forwards every record to an ingestion
sink with at-least-once delivery and crash-safe per-batch offsets.

Modules:
    models        - Endpoint and batch descriptors
    directory     - Endpoint discovery (status service or static file)
    fleet         - FleetSupervisor: Pod set reconciliation
    pod           - Per-endpoint discovery and batch scheduling
    streamer      - Resumable batch streaming
    framing       - Line framing and record envelopes
    delivery      - Sink client with retry queue
    progress      - Contiguous-offset ledger per batch
    offset_store  - Durable offset files
    stats         - Periodic stats line and gauges
    health        - Health probes and stats endpoint
    metrics       - Prometheus metrics
"""

from collector.fleet import FleetSupervisor
from collector.models import BatchDescriptor, Endpoint
from collector.pod import Pod, PodLifecycle

__version__ = "0.1.0"

__all__ = [
    "BatchDescriptor",
    "Endpoint",
    "FleetSupervisor",
    "Pod",
    "PodLifecycle",
]
