"""
n8n workflow templates, composition, injection and deployment.
"""

from floworx.workflows.activation import ensure_workflow_active
from floworx.workflows.compositor import (
    build_composite_template,
    calculate_compatibility,
    determine_composition_strategy,
)
from floworx.workflows.deployer import DeploymentError, deploy_workflow
from floworx.workflows.injector import (
    TemplateInjectionError,
    inject_credentials_into_nodes,
    inject_onboarding_data,
)
from floworx.workflows.n8n_client import N8nApiError, N8nClient

__all__ = [
    "DeploymentError",
    "N8nApiError",
    "N8nClient",
    "TemplateInjectionError",
    "build_composite_template",
    "calculate_compatibility",
    "deploy_workflow",
    "determine_composition_strategy",
    "ensure_workflow_active",
    "inject_credentials_into_nodes",
    "inject_onboarding_data",
]
