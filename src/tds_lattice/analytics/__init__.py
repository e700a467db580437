"""Numerical instrumentation fed once per simulation step."""

from .advanced_analytics import AdvancedAnalytics, StatsPanelData
from .drift_monitor import DriftMonitor
from .metrics_collector import (
    EventThresholds,
    EventType,
    MetricEvent,
    MetricsCollector,
    MetricSummary,
    TrendAnalysis,
)
from .mode_amplitude import ModeAmplitudeTracker
from .online_statistics import OnlineStatistics, StatisticsSnapshot
from .photon_window import PhotonWindowResult, PhotonWindowTest
from .simulation_log import LogEntry, SimulationLog

__all__ = [
    "AdvancedAnalytics",
    "StatsPanelData",
    "DriftMonitor",
    "EventThresholds",
    "EventType",
    "MetricEvent",
    "MetricsCollector",
    "MetricSummary",
    "TrendAnalysis",
    "ModeAmplitudeTracker",
    "OnlineStatistics",
    "StatisticsSnapshot",
    "PhotonWindowResult",
    "PhotonWindowTest",
    "LogEntry",
    "SimulationLog",
]
