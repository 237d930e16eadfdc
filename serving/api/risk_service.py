"""
Risk detection workflow: score contacts, store the latest metrics, raise
alerts and log recovery actions for one authenticated agent.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from models import (
    BulkRunSummary,
    ContactSummary,
    RecoveryActionRequest,
    RiskAlertView,
    RiskMetricView,
    RiskResult,
    UserSession,
)
from notifications import NotificationChannel
from pacing import RequestPacer
from risk_policy import (
    DEFAULT_CONTACT_NAME,
    RiskThresholds,
    classify_alert,
    render_alert_message,
)

logger = logging.getLogger("proptor-risk")

RISK_FUNCTION = "calculate_client_risk_score"
METRICS_TABLE = "client_risk_metrics"
ALERTS_TABLE = "risk_alerts"
ACTIONS_TABLE = "recovery_actions"
CONTACTS_TABLE = "contacts"

METRIC_COLUMNS = "*, contacts!inner(id, full_name, email, phone, sales_stage)"
ALERT_COLUMNS = "*, contacts!inner(id, full_name)"
CONTACT_COLUMNS = "id, full_name, email, phone, sales_stage"

ModelT = TypeVar("ModelT", bound=BaseModel)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class RiskDetectionService:
    """
    Risk workflow bound to one ``UserSession``.

    Every platform call is awaited in turn; nothing here fans out. Methods
    that talk to the platform contain their own failures and report them as
    ``False`` / ``None`` / ``[]`` so the bulk runner can skip a contact and
    keep going.
    """

    def __init__(
        self,
        platform,
        session: UserSession,
        notifier: Optional[NotificationChannel] = None,
        pacer: Optional[RequestPacer] = None,
        thresholds: RiskThresholds = RiskThresholds(),
    ):
        self.platform = platform
        self.session = session
        self.notifier = notifier or NotificationChannel()
        self.pacer = pacer or RequestPacer()
        self.thresholds = thresholds
        self.calculating = False

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id

    async def calculate_risk_score(self, contact_id: str) -> Optional[RiskResult]:
        """Invoke the platform's scoring procedure; None means no usable result."""
        if not self.user_id:
            return None

        try:
            rows = await self.platform.rpc(
                RISK_FUNCTION, {"contact_uuid": contact_id, "user_uuid": self.user_id}
            )
            if not rows:
                return None
            return RiskResult.model_validate(rows[0])
        except Exception as e:
            logger.error(f"risk_score_failed contact_id={contact_id} error={e}")
            return None

    async def update_risk_metrics(self, contact_id: str, result: RiskResult) -> bool:
        if not self.user_id:
            return False

        row = {
            "user_id": self.user_id,
            "contact_id": contact_id,
            "risk_score": result.risk_score,
            "last_contact_days": result.last_contact_days,
            "interaction_frequency": result.interaction_frequency,
            "engagement_score": result.engagement_score,
            "risk_factors": list(result.risk_factors),
            "recommendations": list(result.recommendations),
            "last_calculated": _utcnow(),
        }
        try:
            await self.platform.upsert(METRICS_TABLE, row, on_conflict=("user_id", "contact_id"))
            return True
        except Exception as e:
            logger.error(f"risk_metrics_upsert_failed contact_id={contact_id} error={e}")
            return False

    async def create_risk_alert(self, contact_id: str, contact_name: str, risk_score: int) -> bool:
        if not self.user_id:
            return False
        alert_type = classify_alert(risk_score, self.thresholds)
        if alert_type is None:
            return False

        row = {
            "user_id": self.user_id,
            "contact_id": contact_id,
            "alert_type": alert_type,
            "alert_message": render_alert_message(contact_name, risk_score, self.thresholds),
            "risk_score": risk_score,
        }
        try:
            await self.platform.insert(ALERTS_TABLE, row)
            return True
        except Exception as e:
            logger.error(f"risk_alert_insert_failed contact_id={contact_id} error={e}")
            return False

    async def apply_recovery_action(self, action: RecoveryActionRequest) -> bool:
        if not self.user_id:
            return False

        row = {
            "user_id": self.user_id,
            "contact_id": action.contact_id,
            "action_type": action.action_type,
            "action_description": action.description,
            "outcome": action.outcome or "pending",
        }
        try:
            await self.platform.insert(ACTIONS_TABLE, row)
        except Exception as e:
            logger.error(
                f"recovery_action_failed contact_id={action.contact_id} "
                f"action_type={action.action_type} error={e}"
            )
            self.notifier.notify(
                "Error", "Error al registrar la acción de recuperación", variant="destructive"
            )
            return False

        self.notifier.notify("Acción registrada", action.description)
        return True

    async def calculate_risk_for_all_contacts(
        self,
        contact_ids: Sequence[str],
        contact_names: Mapping[str, str],
    ) -> BulkRunSummary:
        """
        Score every contact in order, storing metrics and raising alerts.

        A contact whose score or upsert fails is skipped. Anything raised
        outside those per-contact calls aborts the pass; the summary then
        has ``completed=False`` and the counts reached so far.
        """
        if not self.user_id:
            return BulkRunSummary(completed=False)

        self.calculating = True
        analyzed = 0
        alerts_created = 0

        try:
            for contact_id in contact_ids:
                result = await self.calculate_risk_score(contact_id)

                if result is not None:
                    if await self.update_risk_metrics(contact_id, result):
                        analyzed += 1

                        contact_name = contact_names.get(contact_id) or DEFAULT_CONTACT_NAME
                        if await self.create_risk_alert(contact_id, contact_name, result.risk_score):
                            alerts_created += 1

                await self.pacer.wait()

            logger.info(
                f"bulk_risk_complete user_id={self.user_id} "
                f"contacts={len(contact_ids)} analyzed={analyzed} alerts={alerts_created}"
            )
            self.notifier.notify(
                "Análisis completado",
                f"Se analizaron {analyzed} clientes. {alerts_created} alertas creadas.",
            )
            return BulkRunSummary(completed=True, analyzed=analyzed, alerts_created=alerts_created)
        except Exception:
            logger.exception(
                f"bulk_risk_failed user_id={self.user_id} analyzed={analyzed} alerts={alerts_created}"
            )
            self.notifier.notify(
                "Error", "Error durante el análisis masivo de riesgos", variant="destructive"
            )
            return BulkRunSummary(completed=False, analyzed=analyzed, alerts_created=alerts_created)
        finally:
            self.calculating = False

    def _validate_rows(self, model: Type[ModelT], rows: List[Dict[str, Any]], table: str) -> List[ModelT]:
        """Validate rows one at a time; a malformed row is logged and skipped."""
        valid: List[ModelT] = []
        for row in rows:
            try:
                valid.append(model.model_validate(row))
            except ValidationError as e:
                logger.warning(
                    f"row_skipped table={table} id={row.get('id')} "
                    f"errors={e.error_count()} detail={e.errors()[0]['msg']}"
                )
        return valid

    async def get_risk_metrics(self) -> List[RiskMetricView]:
        if not self.user_id:
            return []

        try:
            rows = await self.platform.select(
                METRICS_TABLE,
                columns=METRIC_COLUMNS,
                filters={"user_id": self.user_id},
                order=("risk_score", True),
            )
        except Exception as e:
            logger.error(f"risk_metrics_fetch_failed user_id={self.user_id} error={e}")
            return []
        return self._validate_rows(RiskMetricView, rows, METRICS_TABLE)

    async def get_risk_alerts(self, include_resolved: bool = False) -> List[RiskAlertView]:
        if not self.user_id:
            return []

        filters: Dict[str, Any] = {"user_id": self.user_id}
        if not include_resolved:
            filters["is_resolved"] = False
        try:
            rows = await self.platform.select(
                ALERTS_TABLE,
                columns=ALERT_COLUMNS,
                filters=filters,
                order=("created_at", True),
            )
        except Exception as e:
            logger.error(f"risk_alerts_fetch_failed user_id={self.user_id} error={e}")
            return []
        return self._validate_rows(RiskAlertView, rows, ALERTS_TABLE)

    async def mark_alert_read(self, alert_id: str) -> bool:
        """Flag an alert as read; False when no alert of this user has that id."""
        if not self.user_id:
            return False

        try:
            rows = await self.platform.update(
                ALERTS_TABLE, {"is_read": True}, filters={"id": alert_id, "user_id": self.user_id}
            )
        except Exception as e:
            logger.error(f"alert_mark_read_failed alert_id={alert_id} error={e}")
            return False
        if not rows:
            logger.warning(f"alert_not_found alert_id={alert_id} user_id={self.user_id}")
            return False
        return True

    async def resolve_alert(self, alert_id: str) -> bool:
        if not self.user_id:
            return False

        try:
            rows = await self.platform.update(
                ALERTS_TABLE,
                {"is_resolved": True, "resolved_at": _utcnow()},
                filters={"id": alert_id, "user_id": self.user_id},
            )
        except Exception as e:
            logger.error(f"alert_resolve_failed alert_id={alert_id} error={e}")
            return False
        if not rows:
            logger.warning(f"alert_not_found alert_id={alert_id} user_id={self.user_id}")
            return False

        self.notifier.notify("Alerta resuelta", "La alerta ha sido marcada como resuelta")
        return True

    async def get_contacts(self) -> List[ContactSummary]:
        """The agent's contacts, newest first."""
        if not self.user_id:
            return []

        try:
            rows = await self.platform.select(
                CONTACTS_TABLE,
                columns=CONTACT_COLUMNS,
                filters={"user_id": self.user_id},
                order=("created_at", True),
            )
        except Exception as e:
            logger.error(f"contacts_fetch_failed user_id={self.user_id} error={e}")
            return []
        return self._validate_rows(ContactSummary, rows, CONTACTS_TABLE)

    async def get_stage_counts(self) -> Dict[str, int]:
        """Contacts per sales stage, for the funnel chart."""
        counts: Dict[str, int] = {}
        for contact in await self.get_contacts():
            if contact.sales_stage:
                counts[contact.sales_stage] = counts.get(contact.sales_stage, 0) + 1
        return counts
