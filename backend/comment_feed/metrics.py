"""
Metrics for the comment feed.

Thread-safe counters plus a Prometheus exposition renderer.
No external dependencies required.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any


@dataclass
class BroadcastMetrics:
    """Metrics for broadcast operations."""
    total: int = 0
    empty: int = 0
    delivered: int = 0
    target_gone: int = 0
    delivery_errors: int = 0
    timeouts: int = 0
    cleaned_up: int = 0
    cleanup_failed: int = 0


@dataclass
class MembershipMetrics:
    """Metrics for membership changes."""
    joins: int = 0
    leaves: int = 0
    switches: int = 0
    partial_switch_failures: int = 0


@dataclass
class TriggerMetrics:
    """Metrics for inbound trigger handling."""
    handled: int = 0
    malformed: int = 0
    store_errors: int = 0
    config_errors: int = 0


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Usage:
        metrics = MetricsCollector()
        metrics.increment("broadcast", "total")
        stats = metrics.get_snapshot()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._groups: dict[str, Any] = {
            "broadcast": BroadcastMetrics(),
            "membership": MembershipMetrics(),
            "trigger": TriggerMetrics(),
        }

    def increment(self, group: str, name: str, amount: int = 1) -> None:
        with self._lock:
            target = self._groups[group]
            setattr(target, name, getattr(target, name) + amount)

    def get_snapshot(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {group: asdict(values) for group, values in self._groups.items()}

    def reset(self) -> None:
        with self._lock:
            self._groups = {
                "broadcast": BroadcastMetrics(),
                "membership": MembershipMetrics(),
                "trigger": TriggerMetrics(),
            }


# =============================================================================
# Prometheus exposition
# =============================================================================


class MetricType(str, Enum):
    """Prometheus metric types."""

    COUNTER = "counter"
    GAUGE = "gauge"


@dataclass
class MetricDefinition:
    """Definition of a metric for Prometheus output."""

    name: str
    help_text: str
    metric_type: MetricType
    source: tuple[str, str]


METRIC_DEFINITIONS: list[MetricDefinition] = [
    MetricDefinition(
        name="commentfeed_broadcasts_total",
        help_text="Total number of broadcast dispatches",
        metric_type=MetricType.COUNTER,
        source=("broadcast", "total"),
    ),
    MetricDefinition(
        name="commentfeed_broadcasts_empty_total",
        help_text="Broadcasts to channels without members",
        metric_type=MetricType.COUNTER,
        source=("broadcast", "empty"),
    ),
    MetricDefinition(
        name="commentfeed_deliveries_delivered_total",
        help_text="Push sends accepted by the gateway",
        metric_type=MetricType.COUNTER,
        source=("broadcast", "delivered"),
    ),
    MetricDefinition(
        name="commentfeed_deliveries_target_gone_total",
        help_text="Push sends to targets that no longer exist",
        metric_type=MetricType.COUNTER,
        source=("broadcast", "target_gone"),
    ),
    MetricDefinition(
        name="commentfeed_deliveries_error_total",
        help_text="Push sends that failed transiently",
        metric_type=MetricType.COUNTER,
        source=("broadcast", "delivery_errors"),
    ),
    MetricDefinition(
        name="commentfeed_deliveries_timeout_total",
        help_text="Push sends abandoned when the broadcast budget expired",
        metric_type=MetricType.COUNTER,
        source=("broadcast", "timeouts"),
    ),
    MetricDefinition(
        name="commentfeed_stale_entries_cleaned_total",
        help_text="Registry entries removed after a gone target",
        metric_type=MetricType.COUNTER,
        source=("broadcast", "cleaned_up"),
    ),
    MetricDefinition(
        name="commentfeed_stale_cleanup_failed_total",
        help_text="Registry cleanups that failed after a gone target",
        metric_type=MetricType.COUNTER,
        source=("broadcast", "cleanup_failed"),
    ),
    MetricDefinition(
        name="commentfeed_joins_total",
        help_text="Connections joined to a channel",
        metric_type=MetricType.COUNTER,
        source=("membership", "joins"),
    ),
    MetricDefinition(
        name="commentfeed_leaves_total",
        help_text="Connections that left their channel",
        metric_type=MetricType.COUNTER,
        source=("membership", "leaves"),
    ),
    MetricDefinition(
        name="commentfeed_switches_total",
        help_text="Completed channel switches",
        metric_type=MetricType.COUNTER,
        source=("membership", "switches"),
    ),
    MetricDefinition(
        name="commentfeed_partial_switch_failures_total",
        help_text="Switches that left a connection unregistered",
        metric_type=MetricType.COUNTER,
        source=("membership", "partial_switch_failures"),
    ),
    MetricDefinition(
        name="commentfeed_triggers_handled_total",
        help_text="Trigger invocations that completed",
        metric_type=MetricType.COUNTER,
        source=("trigger", "handled"),
    ),
    MetricDefinition(
        name="commentfeed_triggers_malformed_total",
        help_text="Trigger invocations rejected as malformed",
        metric_type=MetricType.COUNTER,
        source=("trigger", "malformed"),
    ),
    MetricDefinition(
        name="commentfeed_store_errors_total",
        help_text="Trigger invocations failed by the connection store",
        metric_type=MetricType.COUNTER,
        source=("trigger", "store_errors"),
    ),
    MetricDefinition(
        name="commentfeed_config_errors_total",
        help_text="Trigger invocations failed by missing configuration",
        metric_type=MetricType.COUNTER,
        source=("trigger", "config_errors"),
    ),
]


def format_metric(definition: MetricDefinition, value: float) -> str:
    """Format a single metric in Prometheus exposition format."""
    return "\n".join([
        f"# HELP {definition.name} {definition.help_text}",
        f"# TYPE {definition.name} {definition.metric_type.value}",
        f"{definition.name} {value}",
    ])


def generate_prometheus_metrics(metrics: MetricsCollector) -> str:
    """Render every known metric, one block per definition."""
    snapshot = metrics.get_snapshot()
    blocks = []
    for definition in METRIC_DEFINITIONS:
        group, name = definition.source
        blocks.append(format_metric(definition, snapshot[group][name]))
    return "\n".join(blocks) + "\n"
