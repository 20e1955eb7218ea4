"""Blueprint data models (Pydantic V2).

A blueprint is a declarative integration procedure: variable declarations
plus an ordered list of flows, each an ordered list of typed steps.

Steps are deliberately permissive here. Per-type required fields are
checked by the step type registry (see ``flowsmith.steps``) so that all
problems can be reported together instead of failing on the first one.
"""
import re
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from flowsmith.config import DEFAULT_SCHEMA_VERSION

STEP_TYPES = ("info", "navigate", "input", "choice", "confirm", "show_commands", "ai_prompt")

# Context keys seeded from the blueprint itself rather than captured from the user.
RESERVED_KEYS = ("schema_version", "slugs", "auth", "variables")


def slugify(text: str) -> str:
    """Lowercase, hyphenated slug for ids and file names."""
    slug = text.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    return slug.strip("-")


def generate_unique_id(title: str, existing_ids: set[str]) -> str:
    """Slug of ``title`` with a numeric suffix if it collides. Records the result."""
    base = slugify(title) or "flow"
    slug = base
    counter = 1
    while slug in existing_ids:
        slug = f"{base}-{counter}"
        counter += 1
    existing_ids.add(slug)
    return slug


def scalar_to_str(value: Any) -> Any:
    """Text form of a number or boolean written where text is expected."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


class InputValidation(BaseModel):
    """Regex constraint on a captured value."""
    pattern: Optional[str] = None
    message: Optional[str] = None

    model_config = {"extra": "ignore"}


class StepInput(BaseModel):
    """One named field of a multi-input step."""
    name: str
    label: Optional[str] = None
    placeholder: Optional[str] = None
    default: Optional[str] = None
    sensitive: bool = False
    validation: Optional[InputValidation] = Field(default=None, alias="validate")

    model_config = {"extra": "ignore", "populate_by_name": True}

    @field_validator("label", "placeholder", "default", mode="before")
    @classmethod
    def coerce_scalars(cls, v):
        return scalar_to_str(v)


class Step(BaseModel):
    """A single typed unit of work within a flow.

    Only the fields shared by several step types are declared. Anything
    else in the document is kept as an extra field and can be read with
    ``get()``, so a step type registered later still sees its own fields.
    """
    id: Optional[str] = None
    type: str
    title: Optional[str] = None
    when: Optional[str] = None
    save_to: Optional[str] = None
    inputs: Optional[list[StepInput]] = None
    captures: Optional[list[str]] = None
    validation: Optional[InputValidation] = Field(default=None, alias="validate")

    # Type-specific fields
    markdown: Optional[str] = None
    url: Optional[str] = None
    instructions: Optional[list[str]] = None
    placeholder: Optional[str] = None
    default: Optional[str] = None
    options: Optional[list[Any]] = None
    message: Optional[str] = None
    commands: Optional[list[str]] = None
    prompt_template: Optional[str] = None
    provider: Optional[str] = None

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("captures", "instructions", "commands", mode="before")
    @classmethod
    def coerce_string_list(cls, v):
        """Accept a single string where a list of strings is expected."""
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("placeholder", "default", mode="before")
    @classmethod
    def coerce_scalars(cls, v):
        """Accept `default = 8080` as the text "8080"."""
        return scalar_to_str(v)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_")
        return v

    def get(self, field: str, default: Any = None) -> Any:
        """Read a declared or extra field by its document name."""
        if field == "validate":
            field = "validation"
        if field in type(self).model_fields:
            value = getattr(self, field)
            return default if value is None else value
        extra = self.model_extra or {}
        value = extra.get(field)
        return default if value is None else value

    def has(self, field: str) -> bool:
        return self.get(field) is not None

    def to_document(self) -> dict:
        """The step as it would appear in a blueprint document."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @property
    def label(self) -> str:
        return self.title or self.id or self.type

    def produced_variables(self) -> list[str]:
        """Names this step writes into the context, in declaration order."""
        if self.inputs:
            return [item.name for item in self.inputs]
        if self.save_to:
            return [self.save_to]
        return []


class Flow(BaseModel):
    """An ordered list of steps; the order is the execution order."""
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    steps: list[Step] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    def step_count(self) -> int:
        return len(self.steps)

    def get_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class VariableDeclaration(BaseModel):
    """Declared variable; doubles as the filter for persisted values."""
    name: str = ""
    description: Optional[str] = None
    source: Optional[str] = None
    required: bool = False
    sensitive: bool = False
    format: Optional[str] = None
    validation: Optional[str] = None

    model_config = {"extra": "ignore"}

    def accepts(self, value: Any) -> bool:
        """Check a stored value against the declared pattern.

        Only strings are checked. An uncompilable pattern accepts nothing.
        """
        if not self.validation or not isinstance(value, str):
            return True
        try:
            return re.search(self.validation, value) is not None
        except re.error:
            return False


class Overview(BaseModel):
    """Summary shown before a run starts."""
    enabled: bool = True
    title: Optional[str] = None
    description: Optional[str] = None
    estimated_time: Optional[str] = None
    steps: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class AgentConfig(BaseModel):
    """Hand-off settings for an external AI assistant."""
    prompt_template: Optional[str] = None

    model_config = {"extra": "ignore"}


class Blueprint(BaseModel):
    """A complete blueprint document.

    ``identity`` is the storage key for persisted variables and sessions,
    so it must come out the same every time the same document is loaded.
    """
    schema_version: str = DEFAULT_SCHEMA_VERSION
    smith: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    overview: Optional[Overview] = None
    variables: dict[str, VariableDeclaration] = Field(default_factory=dict)
    flows: list[Flow] = Field(default_factory=list)
    auth: Optional[dict[str, Any]] = None
    slugs: Optional[dict[str, Any]] = None
    agent: Optional[AgentConfig] = None

    model_config = {"extra": "ignore"}

    @field_validator("schema_version", mode="before")
    @classmethod
    def coerce_version(cls, v):
        if v is None:
            return DEFAULT_SCHEMA_VERSION
        return str(v)

    @model_validator(mode="after")
    def apply_defaults(self):
        """Name declared variables and fill in missing flow and step ids."""
        for name, declaration in self.variables.items():
            declaration.name = name

        fallback_title = (self.overview and self.overview.title) or self.name
        existing_ids = {flow.id for flow in self.flows if flow.id}
        for flow in self.flows:
            if not flow.id:
                flow.id = generate_unique_id(fallback_title or "main-flow", existing_ids)
            if not flow.title:
                flow.title = fallback_title or "Main Flow"
            for index, step in enumerate(flow.steps, start=1):
                if not step.id:
                    step.id = f"{flow.id}-step-{index}"
        return self

    @property
    def identity(self) -> str:
        if self.smith:
            return self.smith
        description = (self.overview and self.overview.description) or self.description
        if description:
            return re.sub(r"\s+", "-", description.strip()).lower()
        return "default"

    @property
    def display_name(self) -> str:
        return (self.overview and self.overview.title) or self.name or self.identity

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        for flow in self.flows:
            if flow.id == flow_id:
                return flow
        return None

    def flow_index(self, flow_id: str) -> Optional[int]:
        for index, flow in enumerate(self.flows):
            if flow.id == flow_id:
                return index
        return None

    def all_steps(self) -> list[Step]:
        return [step for flow in self.flows for step in flow.steps]

    def total_steps(self) -> int:
        return len(self.all_steps())

    def is_sensitive(self, name: str) -> bool:
        """Declared sensitive, or named like a credential."""
        declaration = self.variables.get(name)
        if declaration and declaration.sensitive:
            return True
        lowered = name.lower()
        return any(marker in lowered for marker in ("secret", "password", "token"))

    def initial_context(self) -> dict[str, Any]:
        """Context keys carried over from the blueprint itself."""
        context: dict[str, Any] = {"schema_version": self.schema_version}
        if self.slugs:
            context["slugs"] = self.slugs
        if self.auth:
            context["auth"] = self.auth
        if self.variables:
            context["variables"] = {
                name: declaration.model_dump(exclude_none=True)
                for name, declaration in self.variables.items()
            }
        return context
