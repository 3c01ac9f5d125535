"""Error taxonomy for the call orchestrator.

Every error carries a stable ``code`` and a human-readable ``message`` so the
UI collaborator can render it as a ``{code, message}`` pair. ``http_status``
is the status the API layer answers with when the error reaches a route.
"""
from typing import Any, Dict, Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""

    code: str = "ORCHESTRATOR_ERROR"
    http_status: int = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


# Local, pre-network validation. Never retried automatically.


class ValidationError(OrchestratorError):
    code = "VALIDATION_ERROR"
    http_status = 400


class MissingAgentSelection(ValidationError):
    code = "MISSING_AGENT_SELECTION"

    def __init__(self, message: str = "Select an agent configuration or a direct agent to place a call."):
        super().__init__(message)


class ConflictingAgentSelection(ValidationError):
    code = "CONFLICTING_AGENT_SELECTION"

    def __init__(self, message: str = "Choose either an agent configuration or a direct agent, not both."):
        super().__init__(message)


class MissingPhoneNumberBinding(ValidationError):
    code = "MISSING_PHONE_NUMBER_BINDING"

    def __init__(self, message: str = "Direct agent calls need a phone number registered with the speech provider."):
        super().__init__(message)


class IncompleteTelephonyCredentials(ValidationError):
    code = "INCOMPLETE_TELEPHONY_CREDENTIALS"

    def __init__(self, message: str = "Telephony configuration is incomplete. Add your Account SID, Auth Token and Phone Number."):
        super().__init__(message)


class MissingSpeechCredential(ValidationError):
    code = "SPEECH_CREDENTIAL_MISSING"

    def __init__(self, message: str = "Speech provider API key not configured in your profile."):
        super().__init__(message)


class DevelopmentModeDisabled(ValidationError):
    code = "DEVELOPMENT_MODE_DISABLED"

    def __init__(self, message: str = "Development calls are disabled for this deployment."):
        super().__init__(message)


class InvalidDestinationNumber(ValidationError):
    code = "INVALID_DESTINATION_NUMBER"


# Store lookups


class RecordNotFound(OrchestratorError):
    code = "RECORD_NOT_FOUND"
    http_status = 404


class ProfileNotFound(RecordNotFound):
    code = "PROFILE_NOT_FOUND"


class ProspectNotFound(RecordNotFound):
    code = "PROSPECT_NOT_FOUND"


class AgentConfigNotFound(RecordNotFound):
    code = "AGENT_CONFIG_NOT_FOUND"


# Provider-side failures raised by ProviderClient


class ProviderError(OrchestratorError):
    """A provider call did not produce a usable response."""

    code = "PROVIDER_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, code=code)
        self.provider = provider
        self.status_code = status_code


class ProviderRequestError(ProviderError):
    """The provider answered with a structured error."""


class ProviderNetworkError(ProviderError):
    """Connection-level failure talking to a provider."""

    code = "PROVIDER_UNAVAILABLE"
    http_status = 503


class ProviderTimeout(ProviderNetworkError):
    code = "PROVIDER_TIMEOUT"
    http_status = 504


# Call lifecycle


class CallRejected(OrchestratorError):
    """The provider refused to place the call. No handle was created."""

    code = "CALL_REJECTED"
    http_status = 502

    def __init__(self, provider_error_code: str, message: str):
        super().__init__(message)
        self.provider_error_code = provider_error_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["provider_error_code"] = self.provider_error_code
        return data


class WatchAlreadyActive(OrchestratorError):
    code = "WATCH_ALREADY_ACTIVE"
    http_status = 409


class UnknownCall(OrchestratorError):
    code = "UNKNOWN_CALL"
    http_status = 404


# Conversation session negotiation


class NegotiationError(OrchestratorError):
    code = "NEGOTIATION_ERROR"
    http_status = 502


class CredentialMissing(NegotiationError):
    code = "CREDENTIAL_MISSING"
    http_status = 400

    def __init__(self, message: str = "No speech provider API key is configured for this account."):
        super().__init__(message)


class SignedUrlUnavailable(NegotiationError):
    code = "SIGNED_URL_UNAVAILABLE"

    def __init__(self, provider_message: str):
        super().__init__(f"Could not obtain a signed conversation URL: {provider_message}")
        self.provider_message = provider_message

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["provider_message"] = self.provider_message
        return data
