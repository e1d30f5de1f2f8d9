from pydantic import BaseModel, ValidationError as PydanticValidationError
from typing import Any, Dict, List, Optional
import logging

from pollboard.schemas.poll import PollInput
from pollboard.utils.exceptions import PollInputError

logger = logging.getLogger(__name__)

# (field, pydantic error type) -> message shown to the user
MESSAGES = {
    ("title", "string_too_short"): "Poll question must be at least 5 characters",
    ("title", "string_too_long"): "Poll question must be less than 255 characters",
    ("options", "too_short"): "You must provide at least 2 options",
    ("options", "too_long"): "You cannot have more than 10 options",
    ("options.item", "string_too_short"): "Option cannot be empty",
    ("options.item", "string_too_long"): "Option must be less than 100 characters",
}


class PollValidationResult(BaseModel):
    """Outcome of validating raw poll input."""
    success: bool
    data: Optional[PollInput] = None
    errors: Dict[str, List[str]] = {}

    def raise_for_errors(self) -> PollInput:
        """Return the typed input or raise PollInputError with every violation."""
        if not self.success:
            raise PollInputError(self.errors)
        return self.data


def _field_path(loc: tuple) -> str:
    return ".".join(str(part) for part in loc)


def _message(loc: tuple, error_type: str, default: str) -> str:
    if len(loc) == 2 and loc[0] == "options" and isinstance(loc[1], int):
        key = ("options.item", error_type)
    else:
        key = (_field_path(loc), error_type)
    return MESSAGES.get(key, default)


def validate_poll_input(raw: Any) -> PollValidationResult:
    """
    Validate raw poll input.

    All violations are collected, not just the first one. The input object
    is never modified.

    Args:
        raw: Decoded request body

    Returns:
        PollValidationResult: typed data on success, otherwise errors keyed by
        field path such as ``title`` or ``options.3``
    """
    if not isinstance(raw, dict):
        return PollValidationResult(success=False, errors={"body": ["Expected an object"]})

    try:
        data = PollInput.model_validate(raw)
    except PydanticValidationError as e:
        errors: Dict[str, List[str]] = {}
        for error in e.errors():
            loc = tuple(error.get("loc", ()))
            path = _field_path(loc) or "body"
            errors.setdefault(path, []).append(_message(loc, error["type"], error["msg"]))
        logger.debug(f"Poll input rejected: {errors}")
        return PollValidationResult(success=False, errors=errors)

    return PollValidationResult(success=True, data=data)
