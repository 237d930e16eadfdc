"""Engagement summary over stored risk metrics."""

from typing import Dict, Iterable, List, Mapping

import pandas as pd

from risk_policy import engagement_level

HIGH_ENGAGEMENT = 70
LOW_ENGAGEMENT = 40


def engagement_frame(rows: Iterable[Mapping]) -> pd.DataFrame:
    """
    Flatten metric views into one row per contact.

    Each input row is a dict shaped like a joined ``client_risk_metrics``
    record (``contacts`` holds the contact projection).
    """
    records: List[Dict] = []
    for row in rows:
        contact = row.get("contacts") or {}
        records.append({
            "contact_id": row["contact_id"],
            "contact_name": contact.get("full_name") or "Cliente",
            "sales_stage": contact.get("sales_stage"),
            "engagement_score": int(row.get("engagement_score") or 0),
            "interaction_frequency": float(row.get("interaction_frequency") or 0.0),
            "last_contact_days": int(row.get("last_contact_days") or 0),
            "risk_score": int(row.get("risk_score") or 0),
        })
    df = pd.DataFrame(records, columns=[
        "contact_id", "contact_name", "sales_stage", "engagement_score",
        "interaction_frequency", "last_contact_days", "risk_score",
    ])
    df["engagement_level"] = [engagement_level(s) for s in df["engagement_score"]]
    return df


def engagement_records(df: pd.DataFrame) -> List[Dict]:
    """Frame rows as plain dicts, with missing values (NaN/NA) as None."""
    return df.astype(object).where(df.notna(), None).to_dict(orient="records")


def summarize_engagement(df: pd.DataFrame) -> Dict[str, int]:
    total = len(df)
    if total == 0:
        return {"total": 0, "average": 0, "high": 0, "low": 0, "high_pct": 0}

    high = int((df["engagement_score"] >= HIGH_ENGAGEMENT).sum())
    low = int((df["engagement_score"] < LOW_ENGAGEMENT).sum())
    return {
        "total": total,
        "average": int(df["engagement_score"].mean() + 0.5),
        "high": high,
        "low": low,
        "high_pct": int(high / total * 100 + 0.5),
    }
