"""Template registry: template name -> validated definition."""

import json
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from reporting.errors import ArgumentError
from reporting.templates.models import (
    LayoutDefinition,
    ResolvedTemplate,
    TaskTemplate,
    TemplateDefinition,
)

logger = structlog.get_logger(__name__)

BUNDLED_DIR = Path(__file__).parent / "definitions"


class TemplateRegistry:
    """Explicit mapping of template names to definitions.

    Definitions are validated when registered, so a broken template fails
    at startup instead of during a generation.
    """

    def __init__(self, templates: Optional[dict[str, TemplateDefinition]] = None):
        self._templates: dict[str, TemplateDefinition] = dict(templates or {})

    @classmethod
    def from_directory(cls, directory: Optional[Path] = None) -> "TemplateRegistry":
        """Load every ``*.json`` file of a directory, named after its stem.

        Raises:
            ArgumentError: If a file is not a valid template
        """
        directory = Path(directory) if directory else BUNDLED_DIR
        registry = cls()
        for path in sorted(directory.glob("*.json")):
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise ArgumentError(f'Template "{path.stem}" is not valid JSON: {e}') from e
            registry.register(path.stem, raw)

        logger.info(
            "templates_loaded",
            directory=str(directory),
            count=len(registry),
            names=registry.names,
        )
        return registry

    def register(self, name: str, definition: Any) -> TemplateDefinition:
        """Validate and register a template.

        Raises:
            ArgumentError: If the definition is not valid or the name is taken
        """
        if name in self._templates:
            raise ArgumentError(f'Template "{name}" is already registered')
        if not isinstance(definition, TemplateDefinition):
            try:
                definition = TemplateDefinition.model_validate(definition)
            except ValidationError as e:
                raise ArgumentError(f'Template "{name}" is not valid: {e}') from e
        self._templates[name] = definition
        return definition

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, name: str) -> bool:
        return name in self._templates

    @property
    def names(self) -> list[str]:
        return sorted(self._templates)

    def get(self, name: str) -> TemplateDefinition:
        """Get a copy of a template, safe to mutate.

        Raises:
            ArgumentError: If the template is unknown
        """
        template = self._templates.get(name)
        if template is None:
            raise ArgumentError(f'Template "{name}" not found')
        return template.model_copy(deep=True)

    def resolve(self, task_template: Any) -> ResolvedTemplate:
        """Merge a task's template property with the base it extends.

        Inserted layouts are spliced one after the other at their ``at``
        index, so later inserts see earlier ones.

        Raises:
            ArgumentError: If the task template is invalid or its base unknown
        """
        if isinstance(task_template, TaskTemplate):
            parsed = task_template
        else:
            try:
                parsed = TaskTemplate.model_validate(task_template)
            except ValidationError as e:
                raise ArgumentError(f"Task's template is not valid: {e}") from e

        base = self.get(parsed.extends)
        layouts = list(base.layouts)
        for insert in parsed.inserts:
            layout = LayoutDefinition.model_validate(insert.model_dump(exclude={"at"}))
            layouts.insert(insert.at, layout)

        return ResolvedTemplate(
            name=parsed.extends,
            layouts=layouts,
            fetch_options=base.fetch_options,
            task_fetch_options=parsed.fetch_options,
            render_options=base.render_options,
        )
