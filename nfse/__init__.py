"""NFSe emission - eligibility, service-line selection and the emitter."""

from nfse.eligibility import ServiceLine, ServiceLineFilter, total_of
from nfse.emitter import (
    EmissionResult,
    EmitterConfig,
    InvoiceEmitter,
    SubmissionResult,
    generate_rps_number,
)

__all__ = [
    "ServiceLine",
    "ServiceLineFilter",
    "total_of",
    "InvoiceEmitter",
    "EmitterConfig",
    "EmissionResult",
    "SubmissionResult",
    "generate_rps_number",
]
