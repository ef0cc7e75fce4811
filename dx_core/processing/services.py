# dx_core/processing/services.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Sequence
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from dx_core.alerts.escalation import EscalationService
from dx_core.alerts.models import AlertSeverity, AlertType
from dx_core.alerts.services import AlertService
from dx_core.audit.services import AuditService
from dx_core.catalog.types import DiagnosticTest, ThresholdDirection
from dx_core.common.context import ActorContext
from dx_core.common.errors import (
    InvalidOrderRequest,
    InvalidTestCode,
    InvalidTransition,
    ProcessingAborted,
    SpecimenRejected,
)
from dx_core.common.repository import ScopedRepository
from dx_core.integrations.loading import load_strategy
from dx_core.orders.models import DiagnosticOrder, OrderStatus
from dx_core.orders.services import advance_order
from dx_core.processing.checks import (
    CORRELATION_INCONSISTENT,
    ControlMeasurement,
    CorrelationRule,
    Scorer,
    delta_check,
    evaluate_control,
    outstanding_qc_failures,
)
from dx_core.processing.classification import classify, parse_numeric
from dx_core.processing.instruments import InstrumentAdapter
from dx_core.processing.models import (
    CalibrationStatus,
    Instrument,
    ProcessingRecord,
    ProcessingStatus,
    ProcessingStep,
    QCAction,
    QCStatus,
    QualityControlResult,
    StepStatus,
)
from dx_core.results import selectors as result_selectors
from dx_core.results.models import CRITICAL_FLAGS, DiagnosticResult, ResultFlag, ResultStatus
from dx_core.specimens.models import Specimen, SpecimenStatus
from dx_core.specimens.services import advance_specimen

logger = logging.getLogger(__name__)

POLICY_TOLERATE = "tolerate"
POLICY_ABORT = "abort"

PROCESSABLE_SPECIMEN_STATUSES = frozenset(
    {SpecimenStatus.IN_TRANSIT, SpecimenStatus.RECEIVED, SpecimenStatus.PROCESSING, SpecimenStatus.COMPLETED}
)
PROCESSABLE_ORDER_STATUSES = frozenset({OrderStatus.IN_PROGRESS, OrderStatus.COMPLETED, OrderStatus.RESULTED})
RELEASED_STATUSES = frozenset({ResultStatus.FINAL, ResultStatus.CORRECTED, ResultStatus.AMENDED})


def step_failure_policy() -> str:
    policy = getattr(settings, "DX_PROCESSING_STEP_FAILURE_POLICY", POLICY_TOLERATE)
    if policy not in (POLICY_TOLERATE, POLICY_ABORT):
        raise ValueError(f"DX_PROCESSING_STEP_FAILURE_POLICY must be 'tolerate' or 'abort', got {policy!r}")
    return policy


class ProcessingService:
    """
    Processing Engine: steps -> measurement -> classification -> checks -> result.

    Lock order: order -> specimen -> result (-> escalation inside detect).
    An aborted run is committed before ProcessingAborted is raised so the
    step log survives.
    """

    def __init__(
        self,
        *,
        escalation: EscalationService | None = None,
        correlation: CorrelationRule | None = None,
        scorer: Scorer | None = None,
        orders: ScopedRepository[DiagnosticOrder] | None = None,
        specimens: ScopedRepository[Specimen] | None = None,
        policy: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.clock = clock or timezone.now
        self.escalation = escalation or EscalationService(clock=self.clock)
        self.correlation = correlation or load_strategy(
            "DX_CORRELATION_RULE", "dx_core.processing.checks.ConcordanceCorrelationRule"
        )
        self.scorer = scorer or load_strategy("DX_CONFIDENCE_SCORER", "dx_core.processing.checks.StepConfidenceScorer")
        self.orders = orders or ScopedRepository(DiagnosticOrder, label="Order")
        self.specimens = specimens or ScopedRepository(Specimen, label="Specimen")
        self.records = ScopedRepository(ProcessingRecord, label="Processing record")
        self.policy = policy or step_failure_policy()

    def process(
        self,
        ctx: ActorContext,
        *,
        specimen_id: UUID,
        adapter: InstrumentAdapter,
        test_code: str | None = None,
    ) -> ProcessingRecord:
        with transaction.atomic():
            record, failed_step = self._process(ctx, specimen_id=specimen_id, adapter=adapter, test_code=test_code)
        if failed_step is not None:
            raise ProcessingAborted(
                f"Step {failed_step!r} failed; run aborted.",
                details={"record_id": str(record.id), "step": failed_step},
            )
        return record

    @transaction.atomic
    def document_quality_control(
        self,
        ctx: ActorContext,
        *,
        record_id: UUID,
        controls: Sequence[ControlMeasurement],
    ) -> ProcessingRecord:
        """
        Appends control results to a run. Out-of-range levels raise a QUALITY
        alert and, on a completed run, lower its confidence.
        """
        if not controls:
            raise InvalidOrderRequest("Provide at least one control result.", details={"field": "controls"})

        record = self.records.get_for_update(ctx, record_id)
        now = self.clock()
        default_tolerance = float(getattr(settings, "DX_QC_TOLERANCE_PERCENT", 10.0))
        sequence = record.quality_controls.count()

        failed: list[QualityControlResult] = []
        for control in controls:
            tolerance = control.tolerance_percent if control.tolerance_percent is not None else default_tolerance
            evaluation = evaluate_control(control.expected_value, control.actual_value, tolerance)
            action = control.action or evaluation["action"]
            if action == QCAction.ACCEPT and not evaluation["within_range"]:
                raise InvalidOrderRequest(
                    f"{control.control_level} control is out of range and cannot be accepted.",
                    details={"control_level": control.control_level, "deviation_percent": evaluation["deviation_percent"]},
                )

            sequence += 1
            qc = QualityControlResult.objects.create(
                tenant_id=ctx.tenant_id,
                facility_id=ctx.facility_id,
                record=record,
                sequence=sequence,
                control_level=control.control_level,
                expected_value=control.expected_value,
                actual_value=control.actual_value,
                tolerance_percent=tolerance,
                deviation_percent=evaluation["deviation_percent"],
                within_range=evaluation["within_range"],
                action=action,
                comments=(control.comments or "").strip(),
                performed_by=ctx.actor_id,
                performed_at=now,
            )
            if not qc.within_range:
                failed.append(qc)

        failures = outstanding_qc_failures(record.quality_controls.order_by("sequence"))
        record.qc_status = QCStatus.FAIL if failures else QCStatus.PASS
        update_fields = ["qc_status"]
        if record.status == ProcessingStatus.COMPLETED:
            statuses = list(record.steps.order_by("sequence").values_list("status", flat=True))
            record.confidence = self.scorer.score(statuses, record.calibration_status, qc_failures=failures)
            update_fields.append("confidence")
        self.records.put(record, update_fields=update_fields)

        if failed:
            self._raise_qc_alert(ctx, record, failed, now)
            logger.warning("processing run %s: %d control(s) out of range", record.id, len(failed))

        AuditService.log(
            ctx=ctx,
            event_code="processing.quality_control",
            entity=record,
            metadata={
                "levels": [c.control_level for c in controls],
                "qc_status": record.qc_status,
                "confidence": record.confidence,
            },
        )
        return record

    def _raise_qc_alert(
        self,
        ctx: ActorContext,
        record: ProcessingRecord,
        failed: list[QualityControlResult],
        now: datetime,
    ) -> None:
        order = self.orders.get(ctx, record.order_id)
        investigate = any(qc.action == QCAction.INVESTIGATE for qc in failed)
        AlertService.raise_alert(
            ctx,
            alert_type=AlertType.QUALITY,
            order_id=order.id,
            patient_id=order.patient_id,
            detected_at=now,
            severity=AlertSeverity.HIGH if investigate else AlertSeverity.MEDIUM,
            test_code=record.test_code,
            result_id=record.result_id,
            message=(
                f"{record.test_code} QC out of range on run {record.id}: "
                + ", ".join(f"{qc.control_level} {qc.actual_value} (expected {qc.expected_value})" for qc in failed)
                + "."
            ),
            meta={"record_id": str(record.id), "sequences": [qc.sequence for qc in failed]},
        )

    # ----------------------------
    # internals
    # ----------------------------
    def _process(
        self,
        ctx: ActorContext,
        *,
        specimen_id: UUID,
        adapter: InstrumentAdapter,
        test_code: str | None,
    ) -> tuple[ProcessingRecord, str | None]:
        order_id = self.specimens.get(ctx, specimen_id).order_id
        order = self.orders.get_for_update(ctx, order_id)
        specimen = self.specimens.get_for_update(ctx, specimen_id)

        if specimen.status == SpecimenStatus.REJECTED or not (specimen.quality or {}).get("acceptable"):
            raise SpecimenRejected(
                details={"specimen_id": str(specimen.id), "reason": specimen.rejection_reason},
            )
        if specimen.status not in PROCESSABLE_SPECIMEN_STATUSES:
            raise InvalidTransition(
                f"Specimen {specimen.label} is {specimen.status}; it must be received or in transit.",
                details={"specimen_id": str(specimen.id), "status": specimen.status},
            )
        if order.status not in PROCESSABLE_ORDER_STATUSES:
            raise InvalidTransition(
                f"Cannot process specimens for a {order.status} order.",
                details={"order_id": str(order.id), "status": order.status},
            )

        test = self._test_for(order, specimen, test_code)
        now = self.clock()
        is_repeat = specimen.status in (SpecimenStatus.PROCESSING, SpecimenStatus.COMPLETED)
        if specimen.status != SpecimenStatus.COMPLETED:
            advance_specimen(ctx, specimen, SpecimenStatus.PROCESSING)

        instrument: Instrument | None = getattr(adapter, "instrument", None)
        calibration = adapter.calibration_status(now)
        record = ProcessingRecord.objects.create(
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            specimen_id=specimen.id,
            order_id=order.id,
            test_code=test.code,
            instrument=instrument,
            instrument_code=instrument.code if instrument else "",
            technician_id=ctx.actor_id,
            methodology=test.methodology,
            calibration_status=calibration,
            step_failure_policy=self.policy,
            is_repeat=is_repeat,
            started_at=now,
        )
        if calibration != CalibrationStatus.CURRENT:
            logger.warning("processing %s on instrument %s with %s calibration", test.code, record.instrument_code, calibration)

        statuses, failed_step = self._run_steps(ctx, record, test, adapter)
        if failed_step is not None and self.policy == POLICY_ABORT:
            record.status = ProcessingStatus.ABORTED
            record.completed_at = self.clock()
            record.confidence = 0.0
            record.save(update_fields=["status", "completed_at", "confidence", "updated_at"])
            AuditService.log(ctx=ctx, event_code="processing.aborted", entity=record, metadata={"step": failed_step})
            logger.error("processing run %s aborted at step %s", record.id, failed_step)
            return record, failed_step

        result = self._record_result(ctx, order, specimen, test, adapter.measure(test))

        record.status = ProcessingStatus.COMPLETED
        record.completed_at = self.clock()
        record.confidence = self.scorer.score(statuses, calibration)
        record.result_id = result.id
        record.save(update_fields=["status", "completed_at", "confidence", "result_id", "updated_at"])

        advance_specimen(ctx, specimen, SpecimenStatus.COMPLETED)
        self._complete_order_if_resulted(ctx, order)

        AuditService.log(
            ctx=ctx,
            event_code="processing.completed",
            entity=record,
            metadata={"result_id": str(result.id), "flag": result.flag, "confidence": record.confidence},
        )
        return record, None

    @staticmethod
    def _test_for(order: DiagnosticOrder, specimen: Specimen, test_code: str | None) -> DiagnosticTest:
        codes = specimen.test_codes or []
        code = (test_code or (codes[0] if codes else "")).strip().upper()
        if code not in codes:
            raise InvalidTestCode(f"{code!r} is not bound to specimen {specimen.label}.", details={"code": code})
        row = order.tests.filter(test_code=code).first()
        if row is None:
            raise InvalidTestCode(f"{code!r} is not on this order.", details={"code": code})
        return row.catalog_entry()

    def _run_steps(
        self,
        ctx: ActorContext,
        record: ProcessingRecord,
        test: DiagnosticTest,
        adapter: InstrumentAdapter,
    ) -> tuple[list[str], str | None]:
        statuses: list[str] = []
        first_failure: str | None = None

        for sequence, name in enumerate(test.processing_steps, start=1):
            started = self.clock()
            outcome = adapter.run_step(test, name)
            ProcessingStep.objects.create(
                tenant_id=ctx.tenant_id,
                facility_id=ctx.facility_id,
                record=record,
                sequence=sequence,
                name=name,
                status=outcome.status,
                started_at=started,
                ended_at=self.clock(),
                detail=outcome.detail,
            )
            statuses.append(outcome.status)

            if outcome.status == StepStatus.FAILED:
                logger.warning("processing run %s step %s failed: %s", record.id, name, outcome.detail)
                if first_failure is None:
                    first_failure = name
                if self.policy == POLICY_ABORT:
                    break
        return statuses, first_failure

    def _record_result(
        self,
        ctx: ActorContext,
        order: DiagnosticOrder,
        specimen: Specimen,
        test: DiagnosticTest,
        value: str,
    ) -> DiagnosticResult:
        now = self.clock()
        numeric = parse_numeric(value)
        flag = classify(value, test.reference_range)
        critical = flag in CRITICAL_FLAGS

        result = (
            DiagnosticResult.objects.select_for_update()
            .filter(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, order_id=order.id, test_code=test.code)
            .first()
        )
        previous_status = result.status if result else None
        if result is None:
            result = DiagnosticResult(
                tenant_id=ctx.tenant_id,
                facility_id=ctx.facility_id,
                order_id=order.id,
                patient_id=order.patient_id,
                test_code=test.code,
            )

        result.specimen_id = specimen.id
        result.value = value
        result.numeric_value = numeric
        result.unit = test.reference_range.unit
        result.reference_range = {
            "lower": test.reference_range.lower,
            "upper": test.reference_range.upper,
            "unit": test.reference_range.unit,
            "text": test.reference_range.text,
        }
        result.flag = flag
        result.is_critical = critical
        if critical and result.critical_detected_at is None:
            result.critical_detected_at = now
        if previous_status in RELEASED_STATUSES:
            result.status = ResultStatus.CORRECTED
        elif previous_status is None:
            result.status = ResultStatus.PRELIMINARY
        result.reported_by = ctx.actor_id
        result.reported_at = now

        previous = result_selectors.previous_result(
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            patient_id=order.patient_id,
            test_code=test.code,
            exclude_order_id=order.id,
        )
        result.delta_check = delta_check(numeric, previous, test.delta_threshold_percent)

        related = dict(
            DiagnosticResult.objects.filter(
                tenant_id=ctx.tenant_id,
                facility_id=ctx.facility_id,
                order_id=order.id,
                test_code__in=list(test.related_tests),
            ).values_list("test_code", "flag")
        )
        result.correlation_check = self.correlation.check(test, flag, related)
        result.save()

        AuditService.log(
            ctx=ctx,
            event_code="result.corrected" if result.status == ResultStatus.CORRECTED else "result.reported",
            entity=result,
            metadata={"test_code": test.code, "value": value, "flag": flag},
        )
        self._raise_check_alerts(ctx, result, now)
        self._recheck_related(ctx, order, result, now)

        if critical:
            threshold = test.threshold_for(
                ThresholdDirection.LOW if flag == ResultFlag.CRITICAL_LOW else ThresholdDirection.HIGH
            )
            self.escalation.detect(
                ctx,
                result=result,
                protocol=threshold.protocol if threshold else None,
                clinician_id=order.ordering_clinician_id,
                action_required=threshold.action_required if threshold else "",
                timeframe_minutes=threshold.timeframe_minutes if threshold else None,
            )
        return result

    @staticmethod
    def _raise_check_alerts(ctx: ActorContext, result: DiagnosticResult, now: datetime) -> None:
        delta = result.delta_check or {}
        if delta.get("flagged"):
            AlertService.raise_alert(
                ctx,
                alert_type=AlertType.DELTA_CHECK,
                order_id=result.order_id,
                patient_id=result.patient_id,
                detected_at=now,
                severity=AlertSeverity.MEDIUM,
                test_code=result.test_code,
                value=result.value,
                result_id=result.id,
                message=(
                    f"{result.test_code} changed {delta['percent_change']}% from {delta['previous_value']} "
                    f"(threshold {delta['threshold_percent']}%)."
                ),
                meta=delta,
            )

        ProcessingService._raise_correlation_alert(ctx, result, now)

    @staticmethod
    def _raise_correlation_alert(ctx: ActorContext, result: DiagnosticResult, now: datetime) -> None:
        correlation = result.correlation_check or {}
        if correlation.get("status") == CORRELATION_INCONSISTENT:
            AlertService.raise_alert(
                ctx,
                alert_type=AlertType.CORRELATION,
                order_id=result.order_id,
                patient_id=result.patient_id,
                detected_at=now,
                severity=AlertSeverity.LOW,
                test_code=result.test_code,
                value=result.value,
                result_id=result.id,
                message=(
                    f"{result.test_code} ({result.flag}) is inconsistent with "
                    f"{', '.join(correlation.get('conflicts') or [])}."
                ),
                meta=correlation,
            )

    def _recheck_related(self, ctx: ActorContext, order: DiagnosticOrder, result: DiagnosticResult, now: datetime) -> None:
        """
        Results already on the order that list this test as related are
        re-correlated against its new flag.
        """
        siblings = list(
            DiagnosticResult.objects.select_for_update()
            .filter(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, order_id=order.id)
            .exclude(id=result.id)
            .order_by("test_code")
        )
        flags = {r.test_code: r.flag for r in siblings}
        flags[result.test_code] = result.flag

        for sibling in siblings:
            row = order.tests.filter(test_code=sibling.test_code).first()
            if row is None:
                continue
            test = row.catalog_entry()
            if result.test_code not in test.related_tests:
                continue

            check = self.correlation.check(test, sibling.flag, flags)
            if check == sibling.correlation_check:
                continue
            sibling.correlation_check = check
            sibling.save(update_fields=["correlation_check", "updated_at"])
            self._raise_correlation_alert(ctx, sibling, now)

    @staticmethod
    def _complete_order_if_resulted(ctx: ActorContext, order: DiagnosticOrder) -> None:
        if order.status != OrderStatus.IN_PROGRESS:
            return
        ordered = set(order.tests.values_list("test_code", flat=True))
        resulted = set(
            DiagnosticResult.objects.filter(
                tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, order_id=order.id
            ).values_list("test_code", flat=True)
        )
        if ordered and ordered <= resulted:
            advance_order(ctx, order, OrderStatus.COMPLETED)


class InstrumentService:
    instruments = ScopedRepository(Instrument, label="Instrument")

    @staticmethod
    @transaction.atomic
    def register(ctx: ActorContext, *, code: str, name: str, analyzer_type: str = "", calibration_interval_days: int = 30) -> Instrument:
        instrument, created = Instrument.objects.get_or_create(
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            code=code,
            defaults={"name": name, "analyzer_type": analyzer_type, "calibration_interval_days": calibration_interval_days},
        )
        if created:
            AuditService.log(ctx=ctx, event_code="instrument.registered", entity=instrument)
        return instrument

    @classmethod
    @transaction.atomic
    def record_calibration(cls, ctx: ActorContext, *, instrument_id: UUID, calibrated_at: datetime | None = None) -> Instrument:
        instrument = cls.instruments.get_for_update(ctx, instrument_id)
        instrument.calibrated_at = calibrated_at or timezone.now()
        cls.instruments.put(instrument, update_fields=["calibrated_at"])
        AuditService.log(
            ctx=ctx,
            event_code="instrument.calibrated",
            entity=instrument,
            metadata={"calibrated_at": instrument.calibrated_at.isoformat()},
        )
        return instrument
