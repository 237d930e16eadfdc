"""
Sales funnel stages for Proptor contacts.

Stage ids are stored on ``contacts.sales_stage``; display names and
recommendations are the Spanish product copy shown to agents.
"""

from typing import Dict, List, Mapping

SALES_STAGES = [
    {"id": "contacto_inicial_recibido", "name": "Contacto inicial recibido", "color": "#3B82F6", "order": 1},
    {"id": "primer_contacto_activo", "name": "Primer contacto activo", "color": "#6366F1", "order": 2},
    {"id": "llenado_ficha", "name": "Llenado de ficha", "color": "#8B5CF6", "order": 3},
    {"id": "seguimiento_inicial", "name": "Seguimiento inicial", "color": "#A855F7", "order": 4},
    {"id": "agendamiento_visitas", "name": "Agendamiento de visitas", "color": "#EC4899", "order": 5},
    {"id": "presentacion_personalizada", "name": "Presentación personalizada", "color": "#F59E0B", "order": 6},
    {"id": "negociacion", "name": "Negociación", "color": "#F97316", "order": 7},
    {"id": "cierre_firma_contrato", "name": "Cierre / Firma de contrato", "color": "#10B981", "order": 8},
    {"id": "postventa_fidelizacion", "name": "Postventa y fidelización", "color": "#059669", "order": 9},
    {"id": "no_compra", "name": "No Compra", "color": "#EF4444", "order": 10},
]
STAGE_NAMES = {stage["id"]: stage["name"] for stage in SALES_STAGES}


def stage_display_name(stage: str) -> str:
    return STAGE_NAMES.get(stage, stage.replace("_", " "))


def stage_recommendations(
    stage: str,
    risk_score: int,
    days_in_stage: int,
    last_contact_days: int,
) -> List[str]:
    """
    Next-step recommendations for a contact in a given sales stage.

    Stage-specific advice depends on the risk score (and, for the
    form-filling stage, on how long the contact has been stuck). A
    contact-recency warning is prepended when the agent has been silent
    for more than a week.
    """
    recs: List[str] = []

    if stage == "contacto_inicial_recibido":
        if risk_score >= 70:
            recs += ["Contactar en las próximas 2 horas - cliente reciente",
                     "Enviar mensaje de bienvenida personalizado"]
        else:
            recs += ["Realizar primera llamada dentro de 24h",
                     "Enviar información básica de la empresa"]
    elif stage == "primer_contacto_activo":
        if risk_score >= 70:
            recs += ["Agendar cita presencial urgente",
                     "Ofrecer incentivo por respuesta rápida"]
        else:
            recs += ["Programar segunda llamada de seguimiento",
                     "Enviar catálogo de propiedades relevantes"]
    elif stage == "llenado_ficha":
        if days_in_stage > 7:
            recs += ["Simplificar proceso de llenado de ficha",
                     "Ofrecer completar ficha por teléfono"]
        recs.append("Recordar importancia de la ficha para mejores recomendaciones")
    elif stage == "seguimiento_inicial":
        if risk_score >= 60:
            recs += ["Intensificar seguimiento - llamadas diarias",
                     "Proporcionar testimonios de clientes satisfechos"]
        else:
            recs += ["Mantener contacto cada 2-3 días",
                     "Compartir novedades del mercado"]
    elif stage == "agendamiento_visitas":
        if risk_score >= 70:
            recs += ["Ofrecer múltiples horarios flexibles",
                     "Considerar visita virtual como alternativa",
                     "Asignar agente senior para la visita"]
        else:
            recs += ["Confirmar visita 24h antes",
                     "Preparar información específica de la propiedad"]
    elif stage == "presentacion_personalizada":
        if risk_score >= 60:
            recs += ["Focalizarse en beneficios específicos del cliente",
                     "Ofrecer condiciones especiales de financiamiento",
                     "Incluir comparativas con otras opciones"]
        else:
            recs += ["Preparar presentación detallada",
                     "Incluir proyecciones de valorización"]
    elif stage == "negociacion":
        if risk_score >= 80:
            recs += ["Escalar a gerente de ventas",
                     "Ofrecer descuento por cierre inmediato",
                     "Flexibilizar condiciones de pago"]
        elif risk_score >= 60:
            recs += ["Acelerar proceso de aprobación",
                     "Ofrecer beneficios adicionales"]
        else:
            recs += ["Mantener negociación activa",
                     "Documentar todos los acuerdos"]
    elif stage == "cierre_firma_contrato":
        if risk_score >= 70:
            recs += ["Contacto diario hasta firma",
                     "Asistir con trámites pendientes",
                     "Ofrecer firma en ubicación conveniente"]
        else:
            recs += ["Confirmar fecha de firma",
                     "Preparar documentación completa"]
    elif stage == "postventa_fidelizacion":
        recs += ["Programar seguimiento post-entrega",
                 "Solicitar referidos y testimonios",
                 "Mantener contacto para futuras oportunidades"]
    else:
        recs += ["Establecer contacto regular",
                 "Definir siguiente paso en el proceso"]

    if last_contact_days > 14:
        recs.insert(0, "URGENTE: Reestablecer contacto - más de 2 semanas sin comunicación")
    elif last_contact_days > 7:
        recs.insert(0, "Prioritario: Contactar esta semana")

    return recs


def funnel_breakdown(stage_counts: Mapping[str, int]) -> List[Dict]:
    """
    Complete funnel: every known stage in order, with its count and share.

    Counts for stage ids outside the catalogue are ignored. Percentages are
    rounded to one decimal and are 0.0 when the funnel is empty.
    """
    rows = [
        {
            "stage": stage["id"],
            "name": stage["name"],
            "color": stage["color"],
            "order": stage["order"],
            "count": int(stage_counts.get(stage["id"], 0)),
        }
        for stage in sorted(SALES_STAGES, key=lambda s: s["order"])
    ]
    total = sum(row["count"] for row in rows)
    for row in rows:
        row["percentage"] = round(row["count"] / total * 100, 1) if total > 0 else 0.0
    return rows
