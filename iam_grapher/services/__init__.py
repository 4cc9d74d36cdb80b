from iam_grapher.services.dependency_service import DependencyService
from iam_grapher.services.generation_service import GenerationService
from iam_grapher.services.resource_service import ResourceService
from iam_grapher.services.scan_orchestrator import ScanOrchestrator
from iam_grapher.services.template_service import TemplateService
from iam_grapher.services.validation_service import ValidationService

__all__ = [
    "DependencyService",
    "GenerationService",
    "ResourceService",
    "ScanOrchestrator",
    "TemplateService",
    "ValidationService",
]
