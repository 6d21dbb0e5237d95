"""Error taxonomy shared by the chat pipeline, insights engine and API.

Policy refusals are not errors: they travel the normal reply path.
Best-effort failures (event recording) never reach these types; they are
logged where they happen.
"""

from __future__ import annotations


class StarchatError(RuntimeError):
    """Base error; carries the HTTP-equivalent status for the API layer."""

    status_code = 500

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_payload(self, production: bool = False) -> dict:
        payload: dict = {"error": self.message}
        if self.detail and not production:
            payload["details"] = self.detail
        return payload


class ConfigurationError(StarchatError):
    """Missing external-capability credentials. Fatal, never retried."""


class InvalidRequestError(StarchatError):
    status_code = 400


class PersonaNotFoundError(StarchatError):
    status_code = 404


class UpstreamError(StarchatError):
    """Completion or classification service failed."""

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        super().__init__(message, detail)
        self.status_code = status_code or 500


class ClassificationError(StarchatError):
    """The classifier call failed or returned unparseable output."""


class InvalidClassifierOutput(StarchatError):
    """At least one classified item failed validation; the batch is rejected."""


class PersistenceError(StarchatError):
    """Accumulated state could not be written."""
