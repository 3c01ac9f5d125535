"""Rendering orchestrator errors as HTTP responses."""
from fastapi import HTTPException

from outbound_voice.core.errors import CallRejected, OrchestratorError
from outbound_voice.services.calls.guidance import RejectionGuide, rejection_guide


def to_http_exception(error: OrchestratorError, guide: RejectionGuide = rejection_guide) -> HTTPException:
    """Build an HTTPException whose detail is ``{code, message, guidance, user_actionable}``."""
    detail = error.to_dict()
    guidance_code = (
        error.provider_error_code if isinstance(error, CallRejected) else error.code
    )
    guidance = guide.lookup(guidance_code)
    detail["guidance"] = guidance.guidance
    detail["user_actionable"] = guidance.user_actionable
    return HTTPException(status_code=error.http_status, detail=detail)
