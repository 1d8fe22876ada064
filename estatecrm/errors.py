"""
estatecrm/errors.py

Error taxonomy for the request pipeline.

Every failure a caller can see is one of these classes. Each carries a stable
HTTP status and a short machine-usable code; the app-level handlers in main.py
turn them into the `{"error": ...}` envelope. Nothing here ever carries a stack
trace or an internal identifier to the client.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class CRMError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.code)
        self.detail = detail

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code}
        if self.detail:
            body["detail"] = self.detail
        return body


class Unauthenticated(CRMError):
    status_code = 401
    code = "unauthenticated"


class PermissionDenied(CRMError):
    status_code = 403
    code = "forbidden"

    def __init__(self, reason: str, detail: Optional[str] = None):
        super().__init__(detail)
        self.reason = reason

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body["reason"] = self.reason
        return body


class ValidationFailed(CRMError):
    status_code = 400
    code = "validation_error"

    def __init__(self, field: str, reason: str, detail: Optional[str] = None):
        super().__init__(detail)
        self.fields: List[Dict[str, str]] = [{"field": field, "reason": reason}]

    @classmethod
    def from_fields(cls, fields: List[Dict[str, str]]) -> "ValidationFailed":
        err = cls(fields[0]["field"], fields[0]["reason"]) if fields else cls("body", "invalid")
        err.fields = list(fields) or err.fields
        return err

    @property
    def field(self) -> str:
        return self.fields[0]["field"]

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body["fields"] = self.fields
        return body


class NotFound(CRMError):
    status_code = 404
    code = "not_found"


class Conflict(CRMError):
    status_code = 409
    code = "conflict"

    def __init__(self, reason: str, detail: Optional[str] = None):
        super().__init__(detail)
        self.reason = reason

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body["reason"] = self.reason
        return body


class InternalError(CRMError):
    status_code = 500
    code = "internal_error"


def fields_from_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """
    Flatten pydantic error dicts into [{field, reason}].

    The request location prefix ("body", "query", "path") is dropped so a missing
    `name` in a JSON body is reported as field "name".
    """
    fields = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in ("body", "query", "path", "header"):
            loc = loc[1:]
        fields.append({"field": ".".join(loc) or "body", "reason": str(err.get("type", "invalid"))})
    return fields
