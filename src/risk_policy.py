"""
Risk alert policy for contact risk scores.
Shared between the API service layer and the dashboard.
"""

import html
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import yaml

DEFAULT_CONTACT_NAME = "Cliente"


@dataclass
class RiskThresholds:
    """Configurable thresholds for alert creation."""
    alert: int = 70      # score at or above this → an alert is raised
    critical: int = 80   # score at or above this → high_risk instead of stage_stagnation


def load_thresholds(path: str) -> RiskThresholds:
    """Read alert thresholds from the ``alerts`` section of a YAML config."""
    with open(path) as f:
        config = yaml.safe_load(f) or {}
    alerts = config.get("alerts", {})
    defaults = RiskThresholds()
    return RiskThresholds(
        alert=int(alerts.get("alert_threshold", defaults.alert)),
        critical=int(alerts.get("critical_threshold", defaults.critical)),
    )


def classify_alert(
    risk_score: int,
    thresholds: RiskThresholds = RiskThresholds()
) -> Optional[str]:
    """
    Pick the alert type for a freshly computed risk score.

    - below ``alert``          → None (no alert)
    - ``alert`` .. critical-1  → "stage_stagnation"
    - ``critical`` and above   → "high_risk"

    Args:
        risk_score: 0-100 risk score
        thresholds: Configurable threshold values

    Returns:
        Alert type string, or None when no alert should be raised
    """
    if risk_score < thresholds.alert:
        return None
    elif risk_score >= thresholds.critical:
        return "high_risk"
    else:
        return "stage_stagnation"


def render_alert_message(
    contact_name: str,
    risk_score: int,
    thresholds: RiskThresholds = RiskThresholds()
) -> str:
    if risk_score >= thresholds.critical:
        return f"{contact_name} tiene un riesgo crítico ({risk_score}%) de abandonar el proceso"
    return f"{contact_name} muestra señales de desinterés ({risk_score}% de riesgo)"


def priority_level(risk_score: int) -> Dict[str, str]:
    """Alert panel priority badge for an alert's score snapshot."""
    if risk_score >= 80:
        return {"level": "CRÍTICO", "variant": "destructive"}
    elif risk_score >= 60:
        return {"level": "ALTO", "variant": "destructive"}
    elif risk_score >= 40:
        return {"level": "MEDIO", "variant": "secondary"}
    else:
        return {"level": "BAJO", "variant": "outline"}


# Risk distribution bands, highest first
RISK_BANDS = {
    "critical": {"label": "Riesgo Crítico (85-100%)", "min": 85, "color": "#dc2626"},
    "high": {"label": "Riesgo Alto (70-84%)", "min": 70, "color": "#ea580c"},
    "medium": {"label": "Riesgo Medio (40-69%)", "min": 40, "color": "#d97706"},
    "low": {"label": "Riesgo Bajo (0-39%)", "min": 0, "color": "#16a34a"},
}
BAND_ORDER = ["critical", "high", "medium", "low"]


def risk_band(risk_score: int) -> str:
    for band in BAND_ORDER:
        if risk_score >= RISK_BANDS[band]["min"]:
            return band
    return "low"


def risk_distribution(scores: Iterable[int]) -> Dict[str, int]:
    """Count scores per band; every band is present even when empty."""
    counts = {band: 0 for band in BAND_ORDER}
    for score in scores:
        counts[risk_band(score)] += 1
    return counts


def matches_risk_filter(risk_score: int, risk_filter: str) -> bool:
    """Client list filter: "high-risk", "medium-risk", "low-risk" or "all"."""
    if risk_filter == "high-risk":
        return risk_score >= 70
    if risk_filter == "medium-risk":
        return 40 <= risk_score < 70
    if risk_filter == "low-risk":
        return risk_score < 40
    return True


def engagement_level(engagement_score: int) -> str:
    if engagement_score >= 80:
        return "Excelente"
    elif engagement_score >= 60:
        return "Bueno"
    elif engagement_score >= 40:
        return "Regular"
    else:
        return "Bajo"


# Quick recovery actions offered next to a high-risk contact
QUICK_ACTIONS: List[Dict[str, str]] = [
    {
        "action_type": "priority_call",
        "label": "Llamar",
        "description": "Llamada prioritaria por alto riesgo",
    },
    {
        "action_type": "follow_up_email",
        "label": "Email",
        "description": "Email personalizado de seguimiento",
    },
    {
        "action_type": "discount_offer",
        "label": "Oferta",
        "description": "Oferta especial por riesgo crítico de abandono",
    },
]


def alert_headline_html(contact_name: str, alert_message: str, color: str) -> str:
    """Alert panel headline; contact data is escaped before it reaches HTML."""
    return (
        f"<span style='color:{html.escape(color, quote=True)}; font-weight:bold'>"
        f"{html.escape(contact_name)}</span> — {html.escape(alert_message)}"
    )
