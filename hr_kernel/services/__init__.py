"""Services for the HR kernel (write side)."""

from hr_kernel.services.approver_resolution import (
    ApproverDirectory,
    ApproverResolver,
    DirectoryApproverResolver,
    StaticApproverResolver,
)
from hr_kernel.services.template_service import WorkflowTemplateService, validate_steps
from hr_kernel.services.workflow_service import CompletionHandler, WorkflowService

__all__ = [
    "ApproverDirectory",
    "ApproverResolver",
    "CompletionHandler",
    "DirectoryApproverResolver",
    "StaticApproverResolver",
    "WorkflowService",
    "WorkflowTemplateService",
    "validate_steps",
]
