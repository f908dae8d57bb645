from typing import Any, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _error_message(error: dict) -> str:
    ctx_error = (error.get("ctx") or {}).get("error")
    if ctx_error is not None:
        return str(ctx_error)
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = str(error.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message


def validate_body(model: Type[ModelT], body: Any) -> Tuple[Optional[ModelT], List[str]]:
    """
    Validate a decoded JSON body against a request model.
    Returns the typed request or the list of field-level error messages.
    """
    if not isinstance(body, dict):
        return None, ["Request body must be a JSON object"]
    try:
        return model.model_validate(body), []
    except ValidationError as e:
        return None, [_error_message(err) for err in e.errors()]
