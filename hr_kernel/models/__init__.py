"""ORM models for the HR kernel."""

from hr_kernel.models.workflow import (
    WorkflowInstanceModel,
    WorkflowSignatureModel,
    WorkflowStepActionModel,
    WorkflowStepModel,
    WorkflowTemplateModel,
)

__all__ = [
    "WorkflowInstanceModel",
    "WorkflowSignatureModel",
    "WorkflowStepActionModel",
    "WorkflowStepModel",
    "WorkflowTemplateModel",
]
