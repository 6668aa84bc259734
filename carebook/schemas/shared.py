# carebook/schemas/shared.py
from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None


# documented on every router; bodies are produced by the handlers in carebook.main
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation failure or conflict"},
    403: {"model": ErrorResponse, "description": "Caller may not perform this action"},
    404: {"model": ErrorResponse, "description": "Resource not found"},
    409: {"model": ErrorResponse, "description": "Gave up after repeated write conflicts"},
}
