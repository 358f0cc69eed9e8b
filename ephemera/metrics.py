from __future__ import annotations
"""
Per-app Prometheus registry. Built once in create_app() and handed to handlers
through app.state; counters are safe to bump from any request.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)


class Metrics:
    content_type = CONTENT_TYPE_LATEST

    def __init__(self) -> None:
        self.registry = CollectorRegistry()
        ProcessCollector(registry=self.registry)
        PlatformCollector(registry=self.registry)
        GCCollector(registry=self.registry)

        self.uploads = Counter(
            "ephemera_uploads",
            "Upload requests by outcome.",
            ["outcome"],
            registry=self.registry,
        )
        self.upload_bytes = Counter(
            "ephemera_upload_bytes",
            "Bytes committed to blob storage.",
            registry=self.registry,
        )
        self.lookups = Counter(
            "ephemera_entry_lookups",
            "Entry lookups by result.",
            ["result"],
            registry=self.registry,
        )
        self.scrapes = Counter(
            "ephemera_metric_handler_requests",
            "Scrapes of the metrics endpoint by HTTP status code.",
            ["code"],
            registry=self.registry,
        )

    def exposition(self) -> bytes:
        return generate_latest(self.registry)
