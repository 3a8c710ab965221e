"""Actionable error hierarchy for the trade-car search aggregator.

Errors are classified by **recovery path**, not by origin.
Each error type carries structured guidance for three audiences:
  - The calling code (typed ``error_type`` for routing)
  - The human operator (``suggestion`` + ``troubleshooting`` steps)
  - An AI agent (``ai_guidance`` with concrete next actions)

Source adapters may raise anything; the job runner is the single place
that turns those exceptions into an :class:`ActionableError` carried by a
``Failure`` outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class ErrorType(StrEnum):
    """Recovery-path categories — what to *do*, not where it came from."""

    AUTHENTICATION = "authentication"
    EXTRACTION = "extraction"
    CONTEXT = "context"
    TIMEOUT = "timeout"
    CONFIG = "config"
    VALIDATION = "validation"
    UNEXPECTED = "unexpected"


# ---------------------------------------------------------------------------
# Guidance dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AIGuidance:
    """Machine-readable guidance for an AI agent consuming this error."""

    action_required: str
    command: str | None = None
    checks: list[str] | None = None
    steps: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"action_required": self.action_required}
        if self.command is not None:
            result["command"] = self.command
        if self.checks is not None:
            result["checks"] = self.checks
        if self.steps is not None:
            result["steps"] = self.steps
        return result


@dataclass(frozen=True)
class Troubleshooting:
    """Sequential, human-readable recovery steps for the operator."""

    steps: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"steps": self.steps}


# ---------------------------------------------------------------------------
# Base actionable error
# ---------------------------------------------------------------------------


@dataclass
class ActionableError(Exception):
    """Structured error with embedded recovery guidance.

    Use the factory classmethods rather than constructing directly —
    they encode domain knowledge so callers don't have to.
    """

    error: str
    error_type: ErrorType
    service: str

    success: bool = field(default=False, init=False)
    suggestion: str | None = None
    ai_guidance: AIGuidance | None = None
    troubleshooting: Troubleshooting | None = None
    context: dict[str, Any] | None = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def __post_init__(self) -> None:
        super().__init__(self.error)

    # -- serialisation -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Compact JSON-ready dict — ``None`` values are excluded."""
        result: dict[str, Any] = {
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type.value,
            "service": self.service,
            "timestamp": self.timestamp,
        }
        if self.suggestion is not None:
            result["suggestion"] = self.suggestion
        if self.ai_guidance is not None:
            result["ai_guidance"] = self.ai_guidance.to_dict()
        if self.troubleshooting is not None:
            result["troubleshooting"] = self.troubleshooting.to_dict()
        if self.context is not None:
            result["context"] = self.context
        return result

    # -- factory methods -----------------------------------------------------

    @classmethod
    def authentication(
        cls,
        source: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Missing credentials, rejected login, or session challenge."""
        env_prefix = source.upper()
        return cls(
            error=f"Authentication failed for {source}: {raw_error}",
            error_type=ErrorType.AUTHENTICATION,
            service=source,
            suggestion=suggestion or f"Check the {source} credentials and try again",
            ai_guidance=AIGuidance(
                action_required=f"Verify the credentials configured for {source}",
                checks=[
                    f"Are {env_prefix}_USERNAME and {env_prefix}_PASSWORD set?",
                    "Does the account still have trade access?",
                    "Was a CAPTCHA or MFA prompt shown after login?",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Log in to {source} manually in a browser",
                    "2. Update the credentials in .env if they changed",
                    "3. Re-run the search",
                ]
            ),
        )

    @classmethod
    def extraction(
        cls,
        source: str,
        raw_error: str,
        *,
        selector: str | None = None,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Refinement or extraction step failed — page structure changed or API moved."""
        where = f" — selector '{selector}'" if selector else ""
        return cls(
            error=f"Extraction failed on {source}{where}: {raw_error}",
            error_type=ErrorType.EXTRACTION,
            service=source,
            suggestion=suggestion or f"The {source} page structure may have changed; update the adapter",
            ai_guidance=AIGuidance(
                action_required=f"Inspect the {source} results page and update the adapter",
                checks=[
                    f"Open a {source} search result page in a real browser",
                    "Verify the selectors used by the adapter still match",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Run: tradecar-search search --source {source} (headed mode)",
                    "2. Inspect the page structure with DevTools",
                    f"3. Update the {source} adapter if needed",
                ]
            ),
            context={"selector": selector} if selector else None,
        )

    @classmethod
    def context_acquisition(
        cls,
        source: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """The execution context pool could not provide an isolated browser context."""
        return cls(
            error=f"Could not acquire a browser context for {source}: {raw_error}",
            error_type=ErrorType.CONTEXT,
            service="browser",
            suggestion=suggestion or "Verify Playwright browsers are installed and the host has free memory",
            ai_guidance=AIGuidance(
                action_required="Verify the Playwright browser can launch",
                command="playwright install chromium",
                checks=[
                    "Is the Chromium build installed for this Playwright version?",
                    "Is the host out of memory or file descriptors?",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    "1. Run: playwright install chromium",
                    "2. Lower [orchestration].concurrency_limit",
                    "3. Re-run the search",
                ]
            ),
        )

    @classmethod
    def timeout(
        cls,
        source: str,
        seconds: float,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """A job exceeded its wall-clock ceiling."""
        return cls(
            error=f"Job for {source} did not finish within {seconds:g}s",
            error_type=ErrorType.TIMEOUT,
            service=source,
            suggestion=suggestion or "Raise [orchestration].job_timeout_seconds or check the site is responsive",
            ai_guidance=AIGuidance(
                action_required=f"Determine why {source} is slow",
                checks=[
                    f"Is {source} reachable from this host?",
                    "Is the job timeout realistic for the number of result pages?",
                ],
            ),
        )

    @classmethod
    def config(
        cls,
        field_name: str,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Missing or invalid configuration in settings.toml."""
        return cls(
            error=f"Configuration error — {field_name}: {reason}",
            error_type=ErrorType.CONFIG,
            service="settings.toml",
            suggestion=suggestion or f"Fix '{field_name}' in config/settings.toml",
            ai_guidance=AIGuidance(
                action_required=f"Correct the '{field_name}' value in config/settings.toml",
                checks=[
                    "Verify config/settings.toml exists",
                    f"Verify '{field_name}' is present and valid",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    "1. Open config/settings.toml",
                    f"2. Locate the '{field_name}' setting",
                    f"3. Fix the issue: {reason}",
                    "4. Save and re-run",
                ]
            ),
        )

    @classmethod
    def validation(
        cls,
        field_name: str,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Input validation failure (search criteria, CLI args, request body)."""
        return cls(
            error=f"Validation error — {field_name}: {reason}",
            error_type=ErrorType.VALIDATION,
            service="validation",
            suggestion=suggestion or f"Fix '{field_name}': {reason}",
            ai_guidance=AIGuidance(
                action_required=f"Correct the value for '{field_name}'",
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Check the value of '{field_name}'",
                    f"2. Issue: {reason}",
                    "3. Correct and retry",
                ]
            ),
        )

    @classmethod
    def unexpected(
        cls,
        service: str,
        operation: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Catch-all for truly unexpected failures."""
        return cls(
            error=f"Unexpected error in {service} during {operation}: {raw_error}",
            error_type=ErrorType.UNEXPECTED,
            service=service,
            suggestion=suggestion or "This is an unexpected error — check logs for details",
            ai_guidance=AIGuidance(
                action_required="Analyze the error and escalate if needed",
                checks=[
                    "Check the full traceback in logs",
                    f"Is {service} in a known-good state?",
                ],
            ),
        )

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        service: str,
        operation: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Auto-classify an exception by keyword patterns and the failing step.

        A caller-supplied ``suggestion`` is always preserved — it carries
        context the generic classifier cannot infer.
        """
        error_str = str(error).lower()
        raw_error = str(error) or type(error).__name__

        if operation == "authenticate" or any(
            kw in error_str for kw in ("unauthorized", "401", "credential", "login")
        ):
            return cls.authentication(service, raw_error, suggestion=suggestion)

        if operation in ("navigate", "apply_refinements", "extract_items"):
            return cls.extraction(service, raw_error, suggestion=suggestion)

        return cls.unexpected(service, operation, raw_error, suggestion=suggestion)
