# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Certification and claim-mint workflow controllers."""

from certmint.workflow.certify import CertificationResult, CertificationWorkflow
from certmint.workflow.claim import ClaimResult, ClaimWorkflow, certification_payload
from certmint.workflow.submit import submit_production

__all__ = [
    "CertificationResult",
    "CertificationWorkflow",
    "ClaimResult",
    "ClaimWorkflow",
    "certification_payload",
    "submit_production",
]
