"""Template definitions: what a report is made of."""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FigureDefinition(BaseModel):
    """One figure of a layout.

    ``type`` is ``table``, ``md``, ``metric`` or a Vega-Lite mark
    (``bar``, ``arc``, ``line``, ...). ``data`` is either inline data or the
    key of the layout's fetched data to use; for ``md`` figures it is the
    markdown text.
    """

    model_config = ConfigDict(extra="forbid")

    type: str = Field(..., min_length=1)
    data: Optional[Union[str, list[Any]]] = None
    params: dict[str, Any] = Field(default_factory=dict)
    slots: Optional[list[int]] = Field(
        default=None, description="Slot indexes the figure spans"
    )


class LayoutDefinition(BaseModel):
    """A page of a report: its figures and how its data is fetched."""

    model_config = ConfigDict(extra="forbid")

    data: Optional[Any] = Field(
        default=None, description="Pre-supplied data, skips fetching"
    )
    fetcher: Literal["elastic", "none"] = "elastic"
    fetch_options: dict[str, Any] = Field(default_factory=dict)
    figures: list[FigureDefinition] = Field(..., min_length=1)


class InsertDefinition(LayoutDefinition):
    """A layout added by a task, spliced at index ``at``."""

    at: int = Field(..., ge=0)


class GridOptions(BaseModel):
    rows: int = Field(default=2, ge=1)
    cols: int = Field(default=2, ge=1)


class RenderOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    grid: GridOptions = Field(default_factory=GridOptions)
    orientation: Literal["landscape", "portrait"] = "landscape"


class TemplateDefinition(BaseModel):
    """A registered base template."""

    model_config = ConfigDict(extra="forbid")

    layouts: list[LayoutDefinition] = Field(..., min_length=1)
    fetch_options: dict[str, Any] = Field(default_factory=dict)
    renderer: Literal["vega-pdf"] = "vega-pdf"
    render_options: RenderOptions = Field(default_factory=RenderOptions)


class TaskTemplate(BaseModel):
    """The ``template`` property of a task."""

    model_config = ConfigDict(extra="forbid")

    extends: str = Field(..., min_length=1, description="Name of the base template")
    fetch_options: dict[str, Any] = Field(default_factory=dict)
    inserts: list[InsertDefinition] = Field(default_factory=list)

    @field_validator("extends")
    @classmethod
    def validate_extends(cls, v: str) -> str:
        if ".." in v or "/" in v or "\\" in v:
            raise ValueError("template name can't contain a path")
        return v


class ResolvedTemplate(BaseModel):
    """Base template merged with a task's overrides and inserts."""

    name: str
    layouts: list[LayoutDefinition]
    fetch_options: dict[str, Any] = Field(default_factory=dict)
    task_fetch_options: dict[str, Any] = Field(default_factory=dict)
    render_options: RenderOptions = Field(default_factory=RenderOptions)
