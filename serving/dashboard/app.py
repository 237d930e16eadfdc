"""Proptor — Risk Detection Dashboard."""

import html
import os
from datetime import datetime

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import requests
import streamlit as st

from risk_policy import (
    BAND_ORDER,
    RISK_BANDS,
    alert_headline_html,
    matches_risk_filter,
    priority_level,
    risk_distribution,
)
from sales_stages import stage_display_name, stage_recommendations

API_BASE_URL = os.getenv("API_BASE_URL", "http://risk-api-service:8000")
API_TOKEN = os.getenv("API_TOKEN", "")
ALERT_COLORS = {
    "high_risk": "#DC3545",
    "stage_stagnation": "#FD7E14",
    "low_engagement": "#FFC107",
    "price_objection": "#6F42C1",
}

st.set_page_config(
    page_title="Proptor — Detección de Riesgo",
    page_icon="🏠",
    layout="wide",
    initial_sidebar_state="expanded",
)


def _api_headers() -> dict:
    """Auth headers identifying the agent to the API."""
    headers = {}
    if API_TOKEN:
        headers["Authorization"] = f"Bearer {API_TOKEN}"
    return headers


def _get(path: str, **params):
    try:
        resp = requests.get(f"{API_BASE_URL}{path}", params=params, headers=_api_headers(), timeout=10)
        return resp.json() if resp.status_code == 200 else None
    except Exception:
        return None


def _post(path: str, payload=None, timeout: int = 10) -> dict:
    try:
        resp = requests.post(
            f"{API_BASE_URL}{path}", json=payload, headers=_api_headers(), timeout=timeout
        )
        if resp.status_code == 200:
            return resp.json()
        return {"error": resp.text}
    except Exception as e:
        return {"error": str(e)}


def show_notifications(result: dict):
    if "error" in result:
        st.error(f"API Error: {result['error']}")
        return
    for note in result.get("notifications", []):
        if note["variant"] == "destructive":
            st.error(f"**{note['title']}** — {note['description']}")
        else:
            st.success(f"**{note['title']}** — {note['description']}")


@st.cache_data(ttl=60)
def get_api_health():
    try:
        resp = requests.get(f"{API_BASE_URL}/ready", timeout=5)
        return resp.json() if resp.status_code == 200 else {"status": "unavailable"}
    except Exception:
        return {"status": "unreachable"}


@st.cache_data(ttl=30)
def load_metrics() -> pd.DataFrame:
    rows = _get("/risk/metrics") or []
    records = []
    for row in rows:
        contact = row.get("contacts") or {}
        records.append({
            "contact_id": row["contact_id"],
            "full_name": contact.get("full_name", "Cliente"),
            "sales_stage": contact.get("sales_stage"),
            "risk_score": row["risk_score"],
            "engagement_score": row.get("engagement_score") or 0,
            "last_contact_days": row.get("last_contact_days") or 0,
            "risk_factors": row.get("risk_factors", []),
            "recommendations": row.get("recommendations", []),
            "last_calculated": row.get("last_calculated"),
        })
    return pd.DataFrame(records)


st.title("Proptor — Detección de Riesgo de Clientes")
st.caption(f"Última actualización: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

with st.sidebar:
    st.header("Controles")

    api_status = get_api_health()
    status_color = "green" if api_status.get("status") == "ready" else "red"
    st.markdown(f"**API Status:** :{status_color}[{api_status.get('status', 'unknown')}]")

    status = _get("/risk/status") or {}
    if status.get("calculating"):
        st.info("Análisis de riesgo en curso…")

    st.divider()
    page = st.radio(
        "Navegar",
        ["Alertas", "Clientes en Riesgo", "Engagement", "Embudo de Ventas"],
    )

df = load_metrics()

if page == "Alertas":
    alerts = _get("/risk/alerts") or []

    if not alerts:
        st.success("¡Todo bajo control! No hay alertas de riesgo activas en este momento")
    else:
        st.subheader(f"Alertas de Riesgo Automáticas ({len(alerts)})")
        catalogue = (_get("/recovery-actions/catalogue") or {}).get("actions", [])

        for alert in alerts:
            priority = priority_level(alert["risk_score"])
            name = (alert.get("contacts") or {}).get("full_name", "Cliente")
            color = ALERT_COLORS.get(alert["alert_type"], "#6C757D")

            with st.container(border=True):
                head_col, badge_col = st.columns([4, 1])
                head_col.markdown(
                    alert_headline_html(name, alert["alert_message"], color),
                    unsafe_allow_html=True,
                )
                badge_col.markdown(f"**{priority['level']}** · {alert['risk_score']}%")

                btn_cols = st.columns(len(catalogue) + 2)
                if not alert.get("is_read") and btn_cols[0].button("Marcar leída", key=f"read-{alert['id']}"):
                    show_notifications(_post(f"/risk/alerts/{alert['id']}/read"))
                if btn_cols[1].button("Resolver", key=f"resolve-{alert['id']}"):
                    show_notifications(_post(f"/risk/alerts/{alert['id']}/resolve"))
                for i, action in enumerate(catalogue):
                    if btn_cols[i + 2].button(action["label"], key=f"{action['action_type']}-{alert['id']}"):
                        show_notifications(_post("/recovery-actions", {
                            "contact_id": alert["contact_id"],
                            "action_type": action["action_type"],
                            "description": action["description"],
                        }))

elif page == "Clientes en Riesgo":
    st.subheader("Análisis de Riesgo por Cliente")

    contacts = _get("/contacts") or []
    if st.button("Ejecutar análisis de riesgo", type="primary", disabled=not contacts):
        with st.spinner("Analizando clientes..."):
            result = _post(
                "/risk/calculate",
                {
                    "contact_ids": [c["id"] for c in contacts],
                    "contact_names": {c["id"]: c["full_name"] for c in contacts},
                },
                timeout=600,
            )
        show_notifications(result)
        load_metrics.clear()

    if df.empty:
        st.warning("Ejecuta el análisis de riesgo para generar métricas")
        st.stop()

    distribution = risk_distribution(df["risk_score"])
    cols = st.columns(len(BAND_ORDER))
    for col, band in zip(cols, BAND_ORDER):
        col.metric(RISK_BANDS[band]["label"], distribution[band])

    fig_donut = go.Figure(data=[go.Pie(
        labels=[RISK_BANDS[b]["label"] for b in BAND_ORDER],
        values=[distribution[b] for b in BAND_ORDER],
        hole=0.5,
        marker_colors=[RISK_BANDS[b]["color"] for b in BAND_ORDER],
        textinfo="label+percent+value",
    )])
    fig_donut.update_layout(height=350)
    st.plotly_chart(fig_donut, use_container_width=True)

    filter_col, sort_col = st.columns(2)
    with filter_col:
        risk_filter = st.selectbox("Filtro", ["all", "high-risk", "medium-risk", "low-risk"])
    with sort_col:
        sort_order = st.selectbox("Orden", ["risk-desc", "risk-asc", "contact-desc", "contact-asc"])

    filtered = df[df["risk_score"].apply(lambda s: matches_risk_filter(s, risk_filter))]
    sort_col_name = "risk_score" if sort_order.startswith("risk") else "last_contact_days"
    filtered = filtered.sort_values(by=sort_col_name, ascending=sort_order.endswith("asc"))

    st.markdown(f"**Mostrando {len(filtered):,} de {len(df):,} clientes**")
    for _, client in filtered.iterrows():
        with st.expander(f"{client['full_name']} — {client['risk_score']}% · "
                         f"{stage_display_name(client['sales_stage'] or 'sin_etapa')}"):
            st.markdown("**Factores de riesgo**")
            for factor in client["risk_factors"] or ["Sin factores registrados"]:
                st.markdown(f"- {factor}")
            st.markdown("**Recomendaciones**")
            recs = list(client["recommendations"]) + stage_recommendations(
                client["sales_stage"] or "", client["risk_score"], 0, client["last_contact_days"]
            )
            for rec in recs:
                st.markdown(f"- {rec}")

    csv = filtered.drop(columns=["risk_factors", "recommendations"]).to_csv(index=False)
    st.download_button("Descargar lista (CSV)", csv, "clientes_en_riesgo.csv", "text/csv")

elif page == "Engagement":
    data = _get("/engagement")
    if not data or data["total"] == 0:
        st.warning("Ejecuta el análisis de riesgo para generar métricas")
        st.stop()

    col1, col2, col3 = st.columns(3)
    col1.metric("Engagement promedio", f"{data['average']}%")
    col2.metric("Alto engagement", data["high"], delta=f"{data['high_pct']}% del total")
    col3.metric("Bajo engagement", data["low"], delta="Requieren atención inmediata", delta_color="inverse")

    st.divider()
    st.subheader("Análisis de Engagement por Cliente")
    eng_df = pd.DataFrame(data["contacts"])
    eng_df["etapa"] = eng_df["sales_stage"].fillna("").apply(
        lambda s: stage_display_name(s) if s else "Sin etapa"
    )
    fig_bar = px.bar(
        eng_df.sort_values("engagement_score"),
        x="engagement_score", y="contact_name", color="engagement_level",
        orientation="h",
        labels={"engagement_score": "Engagement (%)", "contact_name": "Cliente"},
    )
    fig_bar.update_layout(height=max(300, 30 * len(eng_df)))
    st.plotly_chart(fig_bar, use_container_width=True)
    st.dataframe(
        eng_df[["contact_name", "engagement_level", "engagement_score",
                "interaction_frequency", "last_contact_days", "etapa"]],
        use_container_width=True,
    )

elif page == "Embudo de Ventas":
    data = _get("/funnel")
    if not data:
        st.warning("No se pudo cargar el embudo de ventas.")
        st.stop()

    st.subheader(f"Embudo de Ventas ({data['total']} contactos)")
    stages = pd.DataFrame(data["stages"])
    non_empty = stages[stages["count"] > 0]
    if not non_empty.empty:
        fig_pie = go.Figure(data=[go.Pie(
            labels=non_empty["name"],
            values=non_empty["count"],
            marker_colors=non_empty["color"],
        )])
        fig_pie.update_layout(height=400)
        st.plotly_chart(fig_pie, use_container_width=True)

    for _, stage in stages.iterrows():
        pct = f" · {stage['percentage']:.1f}%" if data["total"] > 0 else ""
        st.markdown(
            f"<span style='color:{html.escape(stage['color'], quote=True)}'>●</span> "
            f"**{html.escape(stage['name'])}** — {stage['count']} contactos{pct}",
            unsafe_allow_html=True,
        )
