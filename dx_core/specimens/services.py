# dx_core/specimens/services.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Mapping, Sequence
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from dx_core.alerts.models import AlertSeverity, AlertType
from dx_core.alerts.services import AlertService
from dx_core.audit.services import AuditService
from dx_core.catalog.types import DiagnosticTest
from dx_core.common.context import ActorContext
from dx_core.common.errors import (
    IdentityMismatch,
    InvalidTestCode,
    InvalidTransition,
    LabelMismatch,
    TransportAlreadyArranged,
)
from dx_core.common.repository import ScopedRepository
from dx_core.integrations.loading import load_strategy
from dx_core.integrations.patients import PatientContext, PatientRecordStore
from dx_core.orders.models import DiagnosticOrder, OrderStatus
from dx_core.orders.services import advance_order
from dx_core.specimens.models import Specimen, SpecimenCollection, SpecimenStatus
from dx_core.specimens.quality import QualityAssessor, SpecimenObservation

logger = logging.getLogger(__name__)

COLLECTABLE_ORDER_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.SCHEDULED, OrderStatus.IN_PROGRESS})

# Forward-only specimen lifecycle; REJECTED is reachable from any non-terminal status.
SPECIMEN_FLOW = (
    SpecimenStatus.COLLECTED,
    SpecimenStatus.IN_TRANSIT,
    SpecimenStatus.RECEIVED,
    SpecimenStatus.PROCESSING,
    SpecimenStatus.COMPLETED,
)
TERMINAL_SPECIMEN_STATUSES = frozenset({SpecimenStatus.COMPLETED, SpecimenStatus.REJECTED})


def specimen_label(order_id: UUID, test_code: str, sequence: int) -> str:
    return f"DX-{order_id.hex[:8].upper()}-{test_code}-{sequence:02d}"


def label_matches(specimen: Specimen) -> bool:
    """
    Accession label must carry the order prefix and the bound test code.
    """
    prefix = f"DX-{UUID(str(specimen.order_id)).hex[:8].upper()}-"
    if not specimen.label.startswith(prefix):
        return False
    code = specimen.label[len(prefix):].rsplit("-", 1)[0]
    return code in (specimen.test_codes or [])


def advance_specimen(ctx: ActorContext, specimen: Specimen, target: str, **fields) -> Specimen:
    """
    Caller holds the specimen lock. Status never moves backwards and never leaves a terminal status.
    """
    if specimen.status == target:
        return specimen
    if specimen.status in TERMINAL_SPECIMEN_STATUSES:
        raise InvalidTransition(
            f"Specimen {specimen.label} is {specimen.status}.",
            details={"specimen_id": str(specimen.id), "status": specimen.status, "target": target},
        )
    if target != SpecimenStatus.REJECTED and SPECIMEN_FLOW.index(target) < SPECIMEN_FLOW.index(specimen.status):
        raise InvalidTransition(
            f"Specimen {specimen.label} cannot move from {specimen.status} to {target}.",
            details={"specimen_id": str(specimen.id), "status": specimen.status, "target": target},
        )

    previous = specimen.status
    specimen.status = target
    for name, value in fields.items():
        setattr(specimen, name, value)
    specimen.save(update_fields=["status", *fields.keys(), "updated_at"])
    AuditService.log(ctx=ctx, event_code=f"specimen.{target.lower()}", entity=specimen, metadata={"from": previous})
    return specimen


class SpecimenService:
    """
    Specimen Quality Gate.
    - review an order for collection readiness (read-only)
    - bedside preparation check (identity is fatal, preparation gaps are returned)
    - collection with quality assessment, transport, receipt, manual rejection
    """

    def __init__(
        self,
        *,
        patients: PatientRecordStore | None = None,
        assessor: QualityAssessor | None = None,
        orders: ScopedRepository[DiagnosticOrder] | None = None,
        collections: ScopedRepository[SpecimenCollection] | None = None,
        specimens: ScopedRepository[Specimen] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.patients = patients or load_strategy(
            "DX_PATIENT_RECORD_STORE", "dx_core.integrations.patients.LocalPatientRecordStore"
        )
        self.assessor = assessor or load_strategy(
            "DX_QUALITY_ASSESSOR", "dx_core.specimens.quality.AcceptanceCriteriaAssessor"
        )
        self.orders = orders or ScopedRepository(DiagnosticOrder, label="Order")
        self.collections = collections or ScopedRepository(SpecimenCollection, label="Specimen collection")
        self.specimens = specimens or ScopedRepository(Specimen, label="Specimen")
        self.clock = clock or timezone.now

    # ----------------------------
    # Review (side-effect free)
    # ----------------------------
    def review_for_collection(self, ctx: ActorContext, *, order_id: UUID) -> dict:
        order = self.orders.get(ctx, order_id)
        prep = order.preparation or {}
        issues: list[str] = []

        if not (order.clinical_indication or "").strip():
            issues.append("Clinical indication is missing.")
        if order.is_terminal:
            issues.append(f"Order is {order.status}.")
        if not self.patients.preparation_status(order.patient_id, prep):
            issues.append("Patient preparation has not been verified.")
        holds = prep.get("medication_holds") or []
        if holds and not self.patients.medication_holds_verified(order.patient_id, holds):
            issues.append("Medication holds have not been verified.")

        required: list[str] = []
        if prep.get("fasting_hours"):
            required.append(f"Fasting {prep['fasting_hours']} hours")
        required.extend(f"Hold {h['medication']}" for h in holds)
        required.extend(prep.get("dietary_restrictions") or [])
        required.extend(prep.get("activity_restrictions") or [])

        return {"complete": not issues, "issues": issues, "required_preparations": required}

    # ----------------------------
    # Bedside preparation
    # ----------------------------
    def prepare_patient(self, ctx: ActorContext, *, order_id: UUID, patient: PatientContext) -> dict:
        order = self.orders.get(ctx, order_id)
        self._verify_identity(order, patient)

        prep = order.preparation or {}
        outstanding: list[dict] = []

        window = prep.get("fasting_hours")
        if window:
            fasted = self.patients.hours_fasted(patient)
            if fasted is None or fasted < window:
                outstanding.append(
                    {
                        "preparation": "fasting",
                        "required_hours": window,
                        "hours_fasted": fasted,
                        "instruction": f"Patient must fast {window} hours before collection.",
                    }
                )

        for hold in prep.get("medication_holds") or []:
            if hold["medication"] not in patient.verified_medication_holds:
                outstanding.append(
                    {
                        "preparation": "medication_hold",
                        "medication": hold["medication"],
                        "instruction": f"Confirm {hold['medication']} held ({hold['hold_duration']}).",
                    }
                )

        for item in [*(prep.get("dietary_restrictions") or []), *(prep.get("activity_restrictions") or [])]:
            if item not in patient.completed_preparations:
                outstanding.append({"preparation": "instruction", "instruction": item})

        AuditService.log(
            ctx=ctx,
            event_code="specimen.patient_prepared",
            entity=order,
            metadata={"ready": not outstanding, "outstanding": len(outstanding)},
        )
        return {"ready": not outstanding, "preparations": outstanding}

    def _verify_identity(self, order: DiagnosticOrder, patient: PatientContext) -> None:
        if not self.patients.verify_identity(order.patient_id, patient):
            logger.warning("identity mismatch for order %s", order.id)
            raise IdentityMismatch(details={"order_id": str(order.id)})

    # ----------------------------
    # Collection
    # ----------------------------
    @transaction.atomic
    def collect_specimens(
        self,
        ctx: ActorContext,
        *,
        order_id: UUID,
        patient: PatientContext,
        collection_site: str = "",
        notes: str = "",
        observations: Mapping[str, SpecimenObservation] | None = None,
        test_codes: Sequence[str] | None = None,
    ) -> SpecimenCollection:
        """
        One specimen per requested test, assessed at creation. `test_codes` limits
        the collection to a subset (a redraw after rejection).
        """
        order = self.orders.get_for_update(ctx, order_id)
        if order.status not in COLLECTABLE_ORDER_STATUSES:
            raise InvalidTransition(
                f"Cannot collect specimens for a {order.status} order.",
                details={"order_id": str(order.id), "status": order.status},
            )
        self._verify_identity(order, patient)

        tests = self._requested_tests(ctx, order, test_codes)
        observations = {k.upper(): v for k, v in (observations or {}).items()}
        now = self.clock()

        collection = self.collections.create(
            ctx,
            order_id=order.id,
            patient_id=order.patient_id,
            collected_by=ctx.actor_id,
            collected_at=now,
            collection_site=collection_site,
            notes=notes,
            identity_verified=True,
        )

        existing = Specimen.objects.filter(order_id=order.id).count()
        for i, test in enumerate(tests, start=existing + 1):
            observation = observations.get(test.code) or SpecimenObservation.as_required(test)
            self._create_specimen(ctx, order, collection, test, observation, sequence=i, now=now)

        advance_order(ctx, order, OrderStatus.IN_PROGRESS)
        AuditService.log(
            ctx=ctx,
            event_code="specimen.collected",
            entity=collection,
            metadata={"order_id": str(order.id), "tests": [t.code for t in tests]},
        )
        return collection

    def _requested_tests(
        self, ctx: ActorContext, order: DiagnosticOrder, test_codes: Sequence[str] | None
    ) -> list[DiagnosticTest]:
        rows = {row.test_code: row for row in order.tests.all()}
        if test_codes is None:
            return [row.catalog_entry() for row in rows.values()]

        tests: list[DiagnosticTest] = []
        for code in test_codes:
            key = (code or "").strip().upper()
            row = rows.get(key)
            if row is None:
                raise InvalidTestCode(f"{code!r} is not on this order.", details={"code": code})
            live = Specimen.objects.filter(order_id=order.id).exclude(status=SpecimenStatus.REJECTED)
            if any(key in (s.test_codes or []) for s in live):
                raise InvalidTransition(
                    f"{key} already has an acceptable specimen; redraw is for rejected specimens only.",
                    details={"code": key},
                )
            tests.append(row.catalog_entry())
        return tests

    def _create_specimen(
        self,
        ctx: ActorContext,
        order: DiagnosticOrder,
        collection: SpecimenCollection,
        test: DiagnosticTest,
        observation: SpecimenObservation,
        *,
        sequence: int,
        now: datetime,
    ) -> Specimen:
        quality = self.assessor.assess(test, observation)
        acceptable = bool(quality.get("acceptable"))
        reasons = "; ".join(
            f"{i['issue']} ({i['severity']})" for i in quality.get("issues", []) if i["severity"] != "Minor"
        )

        specimen = self.specimens.create(
            ctx,
            collection=collection,
            order_id=order.id,
            patient_id=order.patient_id,
            label=specimen_label(order.id, test.code, sequence),
            test_codes=[test.code],
            specimen_type=test.specimen.specimen_type,
            container=test.specimen.container,
            volume_ml=Decimal(str(observation.volume_ml)),
            quality=quality,
            transport={
                "temperature": test.specimen.transport_temperature,
                "time_limit_minutes": test.specimen.transport_time_limit_minutes,
                "special_handling": list(test.specimen.special_handling),
            },
            status=SpecimenStatus.COLLECTED if acceptable else SpecimenStatus.REJECTED,
            rejection_reason="" if acceptable else reasons,
        )

        if not acceptable:
            logger.info("specimen %s rejected at collection: %s", specimen.label, reasons)
            AlertService.raise_alert(
                ctx,
                alert_type=AlertType.QUALITY,
                order_id=order.id,
                patient_id=order.patient_id,
                detected_at=now,
                severity=AlertSeverity.MEDIUM,
                test_code=test.code,
                message=f"Specimen {specimen.label} rejected: {reasons}. Redraw required.",
                meta={"specimen_id": str(specimen.id), "issues": quality.get("issues", [])},
            )
        return specimen

    # ----------------------------
    # Transport
    # ----------------------------
    @transaction.atomic
    def arrange_transport(self, ctx: ActorContext, *, collection_id: UUID) -> SpecimenCollection:
        collection = self.collections.get_for_update(ctx, collection_id)
        if collection.transport_arranged:
            raise TransportAlreadyArranged(details={"collection_id": str(collection.id)})

        specimens = list(collection.specimens.select_for_update().order_by("created_at"))
        mismatched = [s.label for s in specimens if s.status != SpecimenStatus.REJECTED and not label_matches(s)]
        if mismatched:
            raise LabelMismatch(details={"labels": mismatched})

        now = self.clock()
        for specimen in specimens:
            if specimen.status == SpecimenStatus.COLLECTED:
                advance_specimen(ctx, specimen, SpecimenStatus.IN_TRANSIT)

        collection.labels_verified = True
        collection.transport_arranged = True
        collection.transport_arranged_at = now
        collection.transport_arranged_by = ctx.actor_id
        self.collections.put(
            collection,
            update_fields=["labels_verified", "transport_arranged", "transport_arranged_at", "transport_arranged_by"],
        )
        AuditService.log(ctx=ctx, event_code="specimen.transport_arranged", entity=collection)
        return collection

    # ----------------------------
    # Receipt / manual rejection
    # ----------------------------
    @transaction.atomic
    def receive_specimen(self, ctx: ActorContext, *, specimen_id: UUID) -> Specimen:
        specimen = self.specimens.get_for_update(ctx, specimen_id)
        if specimen.status != SpecimenStatus.IN_TRANSIT:
            raise InvalidTransition(
                f"Only in-transit specimens can be received (status={specimen.status}).",
                details={"specimen_id": str(specimen.id)},
            )
        return advance_specimen(
            ctx,
            specimen,
            SpecimenStatus.RECEIVED,
            received_at=self.clock(),
            received_by=ctx.actor_id,
        )

    @transaction.atomic
    def reject_specimen(self, ctx: ActorContext, *, specimen_id: UUID, reason: str) -> Specimen:
        specimen = self.specimens.get_for_update(ctx, specimen_id)
        if specimen.status == SpecimenStatus.REJECTED:
            return specimen
        quality = dict(specimen.quality or {})
        quality["acceptable"] = False
        quality["integrity"] = "Compromised"
        quality["issues"] = [
            *(quality.get("issues") or []),
            {"issue": "ManualRejection", "severity": "Major", "impact": reason},
        ]
        specimen = advance_specimen(
            ctx,
            specimen,
            SpecimenStatus.REJECTED,
            rejection_reason=(reason or "").strip(),
            quality=quality,
        )
        AlertService.raise_alert(
            ctx,
            alert_type=AlertType.QUALITY,
            order_id=specimen.order_id,
            patient_id=specimen.patient_id,
            detected_at=self.clock(),
            severity=AlertSeverity.MEDIUM,
            test_code=(specimen.test_codes or [""])[0],
            message=f"Specimen {specimen.label} rejected: {reason}. Redraw required.",
            meta={"specimen_id": str(specimen.id)},
        )
        return specimen
