from __future__ import annotations

import html
from datetime import datetime
from typing import Optional

from ..models import STATUS_DOWN, Incident, Service, SEVERITY_CRITICAL
from .channels import AlertMessage


_STATUS_COLORS = {"DOWN": "#dc2626", "DEGRADED": "#f59e0b"}


def status_label(status: str) -> str:
    return "DOWN" if status == STATUS_DOWN else "DEGRADED"


def _fmt_number(value: float) -> str:
    value = float(value or 0)
    return str(int(value)) if value.is_integer() else f"{value:.1f}"


def _fields(
    service: Service,
    status: str,
    latency_ms: float,
    cpu_percent: float,
    memory_mb: float,
    now: datetime,
    incident: Optional[Incident],
) -> list[tuple[str, str]]:
    rows = [
        ("Service", service.name),
        ("Status", status.upper()),
        ("Latency", f"{_fmt_number(latency_ms)}ms"),
        ("CPU", f"{_fmt_number(cpu_percent)}%"),
        ("Memory", f"{_fmt_number(memory_mb)}MB"),
        ("Time", now.isoformat(timespec="seconds")),
    ]
    if incident is not None:
        rows.append(("Incident Started", incident.started_at.isoformat(timespec="seconds")))
        rows.append(("Severity", incident.severity or SEVERITY_CRITICAL))
    return rows


def render_alert(
    service: Service,
    status: str,
    *,
    latency_ms: float,
    cpu_percent: float,
    memory_mb: float,
    now: datetime,
    incident: Optional[Incident] = None,
) -> AlertMessage:
    """Render subject, plain text and HTML for one status alert."""
    label = status_label(status)
    rows = _fields(service, status, latency_ms, cpu_percent, memory_mb, now, incident)

    lines = [f"🚨 Service {label}", ""]
    lines.extend(f"{name}: {value}" for name, value in rows)
    lines.append(f"URL: {service.url}")
    text = "\n".join(lines).strip()

    color = _STATUS_COLORS[label]
    table = "\n".join(
        f'<tr><td style="padding: 8px;"><strong>{html.escape(name)}:</strong></td>'
        f'<td style="padding: 8px;">{html.escape(value)}</td></tr>'
        for name, value in rows
    )
    url = html.escape(service.url)
    body = (
        '<!DOCTYPE html><html><head><meta charset="utf-8"></head>'
        '<body style="font-family: Arial, sans-serif; color: #333;">'
        f'<div style="background: {color}; color: white; padding: 20px; text-align: center;">'
        f"<h1>Service Alert: {label}</h1></div>"
        f"<h2>{html.escape(service.name)}</h2>"
        f'<table style="width: 100%; border-collapse: collapse;">{table}</table>'
        f'<p><strong>Service URL:</strong> <a href="{url}">{url}</a></p>'
        "<p><strong>Action Required:</strong> Please investigate the service health issue.</p>"
        '<p style="color: #6b7280; font-size: 12px;">Automated alert from the Sentinel health monitor.</p>'
        "</body></html>"
    )

    return AlertMessage(subject=f"🚨 Alert: {service.name} is {label}", text=text, html=body)
