"""Planning errors."""


class PlanningError(Exception):
    """Raised when a batch cannot be planned at all."""


class PlanningCancelled(PlanningError):
    """Raised when planning is cancelled before metadata collection finished."""


class TemplateError(Exception):
    """Base exception for template compilation and expansion."""


class TemplateSyntaxError(TemplateError):
    """Raised when a template cannot be parsed or uses unsupported syntax."""


class TemplateEvaluationError(TemplateError):
    """Raised when an embedded expression fails while being evaluated."""


class ProbeError(Exception):
    """Raised when metadata cannot be retrieved for a file."""
