"""Prometheus Metrics Configuration"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

# Series are exported as agent_scheduler_<name>
NAMESPACE = "agent_scheduler"

registry = CollectorRegistry()

# HTTP API

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status'],
    namespace=NAMESPACE,
    registry=registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    namespace=NAMESPACE,
    registry=registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0)
)

# Scheduler

schedules_registered = Gauge(
    'schedules_registered',
    'Number of schedules with a live timer in the engine',
    namespace=NAMESPACE,
    registry=registry
)

schedule_executions_total = Counter(
    'schedule_executions_total',
    'Total scheduled agent executions by outcome',
    ['agent_type', 'status'],
    namespace=NAMESPACE,
    registry=registry
)

schedule_execution_duration_seconds = Histogram(
    'schedule_execution_duration_seconds',
    'Scheduled agent execution duration in seconds',
    ['agent_type'],
    namespace=NAMESPACE,
    registry=registry,
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0)
)

schedule_executions_in_progress = Gauge(
    'schedule_executions_in_progress',
    'Number of scheduled executions currently running',
    namespace=NAMESPACE,
    registry=registry
)

schedule_executions_skipped_total = Counter(
    'schedule_executions_skipped_total',
    'Execution attempts skipped before starting',
    ['reason'],
    namespace=NAMESPACE,
    registry=registry
)

schedules_auto_disabled_total = Counter(
    'schedules_auto_disabled_total',
    'Schedules disabled by the failure circuit breaker',
    namespace=NAMESPACE,
    registry=registry
)

execution_cleanup_deleted_total = Counter(
    'execution_cleanup_deleted_total',
    'Execution records removed by the retention sweep',
    namespace=NAMESPACE,
    registry=registry
)

# Event stream

websocket_connections_active = Gauge(
    'websocket_connections_active',
    'Number of active WebSocket connections',
    namespace=NAMESPACE,
    registry=registry
)

websocket_messages_total = Counter(
    'websocket_messages_total',
    'Total WebSocket messages',
    ['direction'],  # 'sent' or 'received'
    namespace=NAMESPACE,
    registry=registry
)


def get_metrics() -> bytes:
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST


class MetricsCollector:
    """Helper class for collecting and updating metrics"""

    @staticmethod
    def record_http_request(method: str, endpoint: str, status: int, duration: float):
        """Record HTTP request metrics"""
        http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def update_registered_schedules(count: int):
        """Update the registered timer count"""
        schedules_registered.set(count)

    @staticmethod
    def record_execution(agent_type: str, status: str, duration: float = None):
        """Record a terminal scheduled execution"""
        schedule_executions_total.labels(agent_type=agent_type, status=status).inc()
        if duration is not None:
            schedule_execution_duration_seconds.labels(agent_type=agent_type).observe(duration)

    @staticmethod
    def update_executions_in_progress(count: int):
        """Update the in-flight execution count"""
        schedule_executions_in_progress.set(count)

    @staticmethod
    def record_execution_skipped(reason: str):
        """Record an execution attempt that never started"""
        schedule_executions_skipped_total.labels(reason=reason).inc()

    @staticmethod
    def record_auto_disable():
        """Record a circuit breaker trip"""
        schedules_auto_disabled_total.inc()

    @staticmethod
    def record_cleanup(deleted_count: int):
        """Record execution rows removed by retention"""
        if deleted_count > 0:
            execution_cleanup_deleted_total.inc(deleted_count)

    @staticmethod
    def update_websocket_connections(count: int):
        """Update active WebSocket connections count"""
        websocket_connections_active.set(count)

    @staticmethod
    def record_websocket_message(direction: str):
        """Record WebSocket message"""
        websocket_messages_total.labels(direction=direction).inc()
