"""Report templates."""

from reporting.templates.models import (
    FigureDefinition,
    LayoutDefinition,
    ResolvedTemplate,
    TaskTemplate,
    TemplateDefinition,
)
from reporting.templates.registry import TemplateRegistry

__all__ = [
    "FigureDefinition",
    "LayoutDefinition",
    "ResolvedTemplate",
    "TaskTemplate",
    "TemplateDefinition",
    "TemplateRegistry",
]
