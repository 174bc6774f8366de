from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import ValidationError

from intake.schemas.submission import LoanApplicationIn


@dataclass
class ValidationOutcome:
    payload: dict[str, Any] | None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.payload is not None


def _field_name(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc) or "__root__"


def validate_payload(raw: Mapping[str, Any]) -> ValidationOutcome:
    """Validate a form payload outside of a request, keyed by camelCase field."""
    try:
        model = LoanApplicationIn.model_validate(dict(raw))
    except ValidationError as exc:
        errors: dict[str, str] = {}
        for error in exc.errors():
            errors.setdefault(_field_name(error["loc"]), error["msg"])
        return ValidationOutcome(payload=None, errors=errors)
    return ValidationOutcome(payload=model.to_wire())
