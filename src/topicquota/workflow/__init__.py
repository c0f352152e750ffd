"""License issuance, payment and usage workflows.

This package provides:
- LicenseWorkflow: resumable, step-indexed license issuance
- PaymentWorkflow: message and subscription purchases (event-sourced)
- UsageService: chat recording, project creation and license lookup
"""

from topicquota.workflow.license import LicenseStep, LicenseWorkflow, LicenseWorkflowState
from topicquota.workflow.payment import PaymentResult, PaymentWorkflow, PurchaseResult, UnsignedTransfer
from topicquota.workflow.usage import ChatResult, LicenseLookup, ProjectCreationResult, UsageService

__all__ = [
    "LicenseStep",
    "LicenseWorkflow",
    "LicenseWorkflowState",
    "PaymentResult",
    "PaymentWorkflow",
    "PurchaseResult",
    "UnsignedTransfer",
    "ChatResult",
    "LicenseLookup",
    "ProjectCreationResult",
    "UsageService",
]
