# dx_core/common/errors.py
"""
Domain error taxonomy for the diagnostics pipeline.

Services raise these; the API layer renders them through the shared error
envelope using `code` and `http_status`. Transient notification failures and
data-quality findings have no error class here; they are recorded, never raised.
"""
from __future__ import annotations

from typing import Any


class DiagnosticsError(Exception):
    code = "diagnostics_error"
    http_status = 400
    default_message = "Request failed."

    def __init__(self, message: str | None = None, *, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


# -----------------------------
# Authorization
# -----------------------------
class Unauthorized(DiagnosticsError):
    code = "unauthorized"
    http_status = 403
    default_message = "Only the ordering clinician may perform this action."


# -----------------------------
# Validation (caller-correctable)
# -----------------------------
class InvalidTestCode(DiagnosticsError):
    code = "invalid_test_code"
    http_status = 400
    default_message = "Unknown test code."


class DuplicateTestCode(DiagnosticsError):
    code = "duplicate_test_code"
    http_status = 400
    default_message = "A test may only be requested once per order."


class InvalidOrderRequest(DiagnosticsError):
    code = "invalid_order_request"
    http_status = 400


class AbnormalResultsPresent(DiagnosticsError):
    code = "abnormal_results_present"
    http_status = 409
    default_message = "Cannot acknowledge: abnormal results present."


class ResultsIncomplete(DiagnosticsError):
    code = "results_incomplete"
    http_status = 409
    default_message = "Not every ordered test has a result yet."


# -----------------------------
# Identity / safety (fatal to the current attempt)
# -----------------------------
class IdentityMismatch(DiagnosticsError):
    code = "identity_mismatch"
    http_status = 422
    default_message = "Patient identity verification failed."


class SpecimenRejected(DiagnosticsError):
    code = "specimen_rejected"
    http_status = 422
    default_message = "Specimen failed quality acceptance and cannot be processed."


class LabelMismatch(DiagnosticsError):
    code = "label_mismatch"
    http_status = 422
    default_message = "Specimen labels could not be verified; transport blocked."


class ProcessingAborted(DiagnosticsError):
    code = "processing_aborted"
    http_status = 422
    default_message = "Processing aborted after a failed step."


# -----------------------------
# State conflicts
# -----------------------------
class InvalidTransition(DiagnosticsError):
    code = "invalid_transition"
    http_status = 409
    default_message = "Transition not allowed from the current status."


class OrderLocked(DiagnosticsError):
    code = "order_locked"
    http_status = 409
    default_message = "Tests can only change while the order is pending."


class TransportAlreadyArranged(DiagnosticsError):
    code = "transport_already_arranged"
    http_status = 409
    default_message = "Transport was already arranged for this collection."


# -----------------------------
# Lookup
# -----------------------------
class RecordNotFound(DiagnosticsError):
    code = "not_found"
    http_status = 404
    default_message = "Record not found in this scope."
