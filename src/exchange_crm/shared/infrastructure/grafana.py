"""
Grafana OTLP Metrics Exporter
==============================

Pushes gauge metrics to Grafana Cloud via OTLP/HTTP (JSON encoding).

Used for SLA monitor tick metrics:
- sla_tick_candidates: Requests evaluated in the tick
- sla_tick_became_overdue: Requests flagged overdue in the tick
- sla_tick_approaching: Approaching-deadline warnings emitted
- sla_tick_failures: Requests whose reconcile failed
- sla_tick_latency_ms: Tick duration in milliseconds
"""

import base64
import time
from typing import Dict, List, Optional, Tuple, Union

import httpx

from exchange_crm.config import settings
from exchange_crm.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Number = Union[int, float]

# name -> (value, unit, description)
GaugeSet = Dict[str, Tuple[Number, str, str]]


class GrafanaOTLPExporter:
    """
    Export gauges to Grafana Cloud via OTLP HTTP endpoint.

    Uses OpenTelemetry Protocol (OTLP) format for metrics. Disabled
    (every export returns False) unless host, api key and instance id
    are all configured.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        timeout_seconds: float = 30.0
    ):
        """
        Initialize Grafana OTLP exporter.

        Args:
            host: Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-eu-west-2.grafana.net)
            api_key: Grafana API key
            instance_id: Instance ID for authentication
        """
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._timeout = timeout_seconds
        self._enabled = bool(self._host and self._api_key and self._instance_id)

        if self._enabled:
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" not in self._host:
                self._url = f"{self._host.rstrip('/')}/otlp/v1/metrics"
            else:
                self._url = self._host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": self._host, "instance_id": self._instance_id}
            )
        else:
            logger.info(
                "Grafana OTLP exporter not configured - metrics will not be exported",
                extra={
                    "host_configured": bool(self._host),
                    "api_key_configured": bool(self._api_key),
                    "instance_id_configured": bool(self._instance_id)
                }
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def build_payload(
        self,
        gauges: GaugeSet,
        attributes: Optional[Dict[str, str]] = None,
        timestamp_ns: Optional[int] = None
    ) -> dict:
        """OTLP JSON payload with one data point per gauge."""
        timestamp_ns = timestamp_ns or int(time.time() * 1_000_000_000)

        metric_attributes = [
            {"key": "service", "value": {"stringValue": settings.app_name}},
        ]
        for key, value in (attributes or {}).items():
            metric_attributes.append({"key": key, "value": {"stringValue": str(value)}})

        metrics: List[dict] = []
        for name, (value, unit, description) in gauges.items():
            point = {"timeUnixNano": timestamp_ns, "attributes": metric_attributes}
            if isinstance(value, int):
                point["asInt"] = value
            else:
                point["asDouble"] = float(value)
            metrics.append({
                "name": name,
                "unit": unit,
                "description": description,
                "gauge": {"dataPoints": [point]}
            })

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": settings.app_name}},
                            {"key": "service.version", "value": {"stringValue": settings.app_version}},
                            {"key": "deployment.environment", "value": {"stringValue": settings.environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": metrics}]
                }
            ]
        }

    async def export_gauges(
        self,
        gauges: GaugeSet,
        attributes: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Push a set of gauges.

        Returns:
            True if export succeeded, False otherwise (never raises)
        """
        if not self._enabled:
            logger.debug("Grafana exporter not enabled - skipping metrics export")
            return False

        payload = self.build_payload(gauges, attributes)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(
                "Error exporting metrics to Grafana",
                extra={"error": str(e)}
            )
            return False

        if response.status_code in (200, 202):
            logger.debug(
                "Metrics exported to Grafana",
                extra={"metrics_count": len(gauges), "status_code": response.status_code}
            )
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url
            }
        )
        return False


# Global exporter instance
_grafana_exporter: Optional[GrafanaOTLPExporter] = None


def get_grafana_exporter() -> GrafanaOTLPExporter:
    """Get or create global Grafana exporter instance."""
    global _grafana_exporter
    if _grafana_exporter is None:
        _grafana_exporter = GrafanaOTLPExporter()
    return _grafana_exporter
