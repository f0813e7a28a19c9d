"""Email bodies for new-alert notifications."""

from dataclasses import dataclass
from datetime import datetime
from html import escape

from nephrawn.config import settings
from nephrawn.models import AlertSeverity

SEVERITY_COLORS = {
    AlertSeverity.CRITICAL: "#dc2626",
    AlertSeverity.WARNING: "#d97706",
    AlertSeverity.INFO: "#2563eb",
}

SEVERITY_LABELS = {
    AlertSeverity.CRITICAL: "Critical Alert",
    AlertSeverity.WARNING: "Warning Alert",
    AlertSeverity.INFO: "Information",
}


@dataclass(frozen=True)
class AlertEmailData:
    clinician_name: str
    patient_name: str
    patient_id: int
    alert_id: int
    severity: AlertSeverity
    rule_name: str
    triggered_at: datetime
    summary_text: str | None = None


def _dashboard_url(data: AlertEmailData) -> str:
    return f"{settings.clinician_dashboard_url.rstrip('/')}/patients/{data.patient_id}"


def _format_time(value: datetime) -> str:
    return value.strftime("%b %d, %Y %H:%M %Z").strip()


def render_subject(data: AlertEmailData) -> str:
    prefix = "[CRITICAL] " if data.severity == AlertSeverity.CRITICAL else ""
    return f"{prefix}{data.rule_name} - {data.patient_name}"


def render_text(data: AlertEmailData) -> str:
    lines = [
        SEVERITY_LABELS[data.severity],
        "",
        f"Hello {data.clinician_name},",
        "",
        "A new alert has been triggered for your patient:",
        "",
        f"Patient: {data.patient_name}",
        f"Alert Type: {data.rule_name}",
    ]
    if data.summary_text:
        lines.append(f"Details: {data.summary_text}")
    lines += [
        f"Time: {_format_time(data.triggered_at)}",
        "",
        f"View Patient Dashboard: {_dashboard_url(data)}",
        "",
        "---",
        "You can manage your notification preferences in your account settings.",
        "Nephrawn - CKD Patient Management Platform",
    ]
    return "\n".join(lines)


def render_html(data: AlertEmailData) -> str:
    color = SEVERITY_COLORS[data.severity]
    label = SEVERITY_LABELS[data.severity]
    patient = escape(data.patient_name)
    details = ""
    if data.summary_text:
        details = (
            '<tr><td style="padding: 4px 0; color: #6b7280;">Details</td>'
            f'<td style="padding: 4px 0;">{escape(data.summary_text)}</td></tr>'
        )

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{label} - {patient}</title>
</head>
<body style="margin: 0; padding: 24px; font-family: Arial, sans-serif; background-color: #f3f4f6;">
  <table role="presentation" width="100%" style="max-width: 600px; margin: 0 auto; background-color: #ffffff; border-radius: 8px;">
    <tr>
      <td style="background-color: {color}; color: #ffffff; padding: 16px 24px; font-size: 18px; font-weight: 600;">{label}</td>
    </tr>
    <tr>
      <td style="padding: 24px;">
        <p>Hello {escape(data.clinician_name)},</p>
        <p>A new alert has been triggered for your patient:</p>
        <table role="presentation" width="100%">
          <tr><td style="padding: 4px 0; color: #6b7280;">Patient</td><td style="padding: 4px 0;">{patient}</td></tr>
          <tr><td style="padding: 4px 0; color: #6b7280;">Alert Type</td><td style="padding: 4px 0;">{escape(data.rule_name)}</td></tr>
          {details}
          <tr><td style="padding: 4px 0; color: #6b7280;">Time</td><td style="padding: 4px 0;">{_format_time(data.triggered_at)}</td></tr>
        </table>
        <p style="margin-top: 24px;">
          <a href="{escape(_dashboard_url(data))}" style="display: inline-block; padding: 12px 24px; background-color: {color}; color: #ffffff; text-decoration: none; border-radius: 6px;">View Patient Dashboard</a>
        </p>
      </td>
    </tr>
    <tr>
      <td style="padding: 16px 24px; color: #9ca3af; font-size: 12px; text-align: center;">
        You can manage your notification preferences in your account settings.<br>
        Nephrawn - CKD Patient Management Platform
      </td>
    </tr>
  </table>
</body>
</html>
"""
