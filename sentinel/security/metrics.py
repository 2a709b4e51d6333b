# 📈 Prometheus metrics for the gate, limiter and recorders

from prometheus_client import Counter, Histogram

gate_decisions = Counter(
    "sentinel_gate_decisions_total",
    "Requests processed by the request gate",
    ["decision"],
)

gate_latency = Histogram(
    "sentinel_gate_seconds",
    "Time spent in the request gate before the handler runs",
)

rate_limited_requests = Counter(
    "sentinel_rate_limited_total",
    "Requests rejected by the rate limiter",
    ["bucket"],
)

threats_recorded = Counter(
    "sentinel_threats_recorded_total",
    "Threat records written",
    ["kind"],
)

visits_recorded = Counter(
    "sentinel_visits_recorded_total",
    "Visit records written",
)

store_write_failures = Counter(
    "sentinel_store_write_failures_total",
    "Visit or threat writes that failed and were dropped",
    ["collection"],
)

request_latency = Histogram(
    "sentinel_request_seconds",
    "End-to-end request time including the gate and the handler",
    ["method", "status"],
)
