"""Restriction template catalog.

Templates are externally managed configuration: the engine only reads them.
A template whose default duration is ``PERMANENT_DURATION`` forces a
permanent restriction whatever duration the caller asks for.
"""

from dataclasses import dataclass

from ..models import RestrictionScope

# Sentinel duration meaning "never ends". Distinct from None ("not set").
PERMANENT_DURATION = -1

# Longest finite duration a caller may ask for (ten years).
MAX_DURATION_HOURS = 24 * 365 * 10


@dataclass(frozen=True)
class RestrictionTemplate:
    """A named, pre-configured restriction policy."""

    id: str
    name: str
    description: str
    default_duration_hours: int
    default_scope: RestrictionScope = RestrictionScope.FULL
    fixed_duration: bool = False

    @property
    def is_permanent(self) -> bool:
        return self.default_duration_hours == PERMANENT_DURATION

    @property
    def forces_duration(self) -> bool:
        """Whether caller-supplied durations are ignored for this template."""
        return self.fixed_duration or self.is_permanent


DEFAULT_TEMPLATES: tuple[RestrictionTemplate, ...] = (
    RestrictionTemplate(
        id="tou_violation",
        name="Terms of Use Violation",
        description="General violation of our Terms of Use",
        default_duration_hours=72,
    ),
    RestrictionTemplate(
        id="inappropriate_content",
        name="Inappropriate Content",
        description="Profile contains inappropriate or explicit content",
        default_duration_hours=168,
    ),
    RestrictionTemplate(
        id="harassment",
        name="Harassment",
        description="Harassment or targeted attacks against users",
        default_duration_hours=336,
    ),
    RestrictionTemplate(
        id="impersonation",
        name="Impersonation",
        description="Impersonating another user or organization",
        default_duration_hours=720,
    ),
    RestrictionTemplate(
        id="spam",
        name="Spam",
        description="Excessive promotional content or spam",
        default_duration_hours=48,
        default_scope=RestrictionScope.PARTIAL,
    ),
    RestrictionTemplate(
        id="scam",
        name="Scam/Phishing",
        description="Profile contains scam links or phishing attempts",
        default_duration_hours=PERMANENT_DURATION,
    ),
    RestrictionTemplate(
        id="custom",
        name="Custom Reason",
        description="Specify a custom reason for the restriction",
        default_duration_hours=24,
    ),
)


class TemplateCatalog:
    """Read-only lookup over the configured restriction templates."""

    def __init__(self, templates: tuple[RestrictionTemplate, ...] = DEFAULT_TEMPLATES):
        self._templates = {t.id: t for t in templates}

    def list(self) -> list[RestrictionTemplate]:
        return list(self._templates.values())

    def get(self, template_id: str) -> RestrictionTemplate | None:
        return self._templates.get(template_id)
