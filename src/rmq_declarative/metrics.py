"""Prometheus metrics for producers and consumers.

Collectors are registered once on the default registry and labelled by the
configured producer or consumer name.
"""

from prometheus_client import Counter, Gauge, Histogram

CONSUMER_DELIVERIES = Counter(
    "rmq_consumer_deliveries",
    "Deliveries received by the consumer",
    ["consumer"],
)
CONSUMER_OUTCOMES = Counter(
    "rmq_consumer_outcomes",
    "Resolved deliveries by outcome",
    ["consumer", "outcome"],
)
CONSUMER_TIMEOUTS = Counter(
    "rmq_consumer_timeouts",
    "Deliveries whose processing exceeded the process timeout",
    ["consumer"],
)
CONSUMER_FAULTS = Counter(
    "rmq_consumer_faults",
    "Deliveries whose processing function raised",
    ["consumer"],
)
CONSUMER_IN_FLIGHT = Gauge(
    "rmq_consumer_in_flight",
    "Deliveries currently being processed",
    ["consumer"],
)
CONSUMER_PROCESS_SECONDS = Histogram(
    "rmq_consumer_process_seconds",
    "Time from delivery to resolution",
    ["consumer"],
)

PRODUCER_SENT = Counter(
    "rmq_producer_sent",
    "Messages published by the producer",
    ["producer"],
)
PRODUCER_FAILED = Counter(
    "rmq_producer_failed",
    "Messages the producer failed to publish",
    ["producer"],
)
