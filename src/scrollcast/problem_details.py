# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""RFC 9457 Problem Details for the capture HTTP API and CLI.

Maps scrollcast and Playwright exceptions to structured problem objects.
Near-leaf dependency (stdlib + errors.py + starlette lazy) so it can be
imported from any layer.

Key public API:

- ``ProblemType``: error taxonomy.
- ``ProblemDetail``: frozen dataclass (→ JSON / Starlette response / CLI text).
- ``sanitize_detail()``: scrub secrets & paths from error messages.
- ``from_exception`` / ``from_validation``: factories.

Type URI namespace: ``https://scrollcast.dev/errors/{slug}``
"""

from __future__ import annotations

import json
import re
import traceback
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

# ── Constants ────────────────────────────────────────────────────────

_ERROR_BASE = "https://scrollcast.dev/errors"

MAX_DETAIL_LENGTH = 200

CAPTURE_FAILED_TITLE = "Failed to generate video"

# ── ProblemType taxonomy ─────────────────────────────────────────────


class ProblemType(StrEnum):
    """Error taxonomy for capture requests."""

    VALIDATION_ERROR = "validation-error"
    BROWSER_UNAVAILABLE = "browser-unavailable"
    PAGE_TIMEOUT = "page-timeout"
    NAVIGATION_FAILED = "navigation-failed"
    ARTIFACT_NOT_FOUND = "artifact-not-found"
    UPLOAD_FAILED = "upload-failed"
    CAPTURE_FAILED = "capture-failed"

    @property
    def uri(self) -> str:
        """Full type URI for RFC 9457 ``type`` field."""
        return f"{_ERROR_BASE}/{self.value}"


# ── Per-type metadata: (status, title) ───────────────────────────────

_TYPE_METADATA: dict[ProblemType, tuple[int, str]] = {
    ProblemType.VALIDATION_ERROR: (400, "Invalid Request"),
    ProblemType.BROWSER_UNAVAILABLE: (503, "Browser Unavailable"),
    ProblemType.PAGE_TIMEOUT: (504, "Page Timed Out"),
    ProblemType.NAVIGATION_FAILED: (502, "Navigation Failed"),
    ProblemType.ARTIFACT_NOT_FOUND: (500, CAPTURE_FAILED_TITLE),
    ProblemType.UPLOAD_FAILED: (502, "Upload Failed"),
    ProblemType.CAPTURE_FAILED: (500, CAPTURE_FAILED_TITLE),
}

# ── Secret sanitization patterns ─────────────────────────────────────

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (
        re.compile(
            r"(?:API_KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL)\s*[=:]\s*\S+",
            re.IGNORECASE,
        ),
        "<redacted>",
    ),
    (re.compile(r"://[^@\s]+@"), "://<redacted>@"),
    (re.compile(r"AKIA[0-9A-Z]{16}"), "<redacted>"),
    (re.compile(r"X-Amz-(?:Signature|Credential|Security-Token)=[^&\s]+"), "<redacted>"),
]

_PATH_PATTERN = re.compile(
    r"(/(?:Users|home|tmp|var|etc|opt|root|srv|proc|sys|usr|Library"
    r"|Applications|private|snap|mnt|media|nix)/[\w./-]+"
    r"|[A-Z]:\\[\w.\\-]+)"
)

# ── Chromium net::ERR_* classification ───────────────────────────────

_NET_ERR_RE = re.compile(r"net::ERR_(\w+)")
_HOSTNAME_RE = re.compile(r"https?://([^/:\s]+)")


def classify_network_error(exc_message: str) -> tuple[ProblemType, str] | None:
    """Classify a Playwright ``net::ERR_*`` message. None if there is no such code."""
    m = _NET_ERR_RE.search(exc_message)
    if m is None:
        return None
    code = m.group(1)
    hm = _HOSTNAME_RE.search(exc_message)
    hostname = hm.group(1) if hm else ""

    if code == "NAME_NOT_RESOLVED":
        host_part = f" '{hostname}'" if hostname else ""
        return ProblemType.NAVIGATION_FAILED, f"Could not resolve domain name{host_part}"
    if code == "CONNECTION_TIMED_OUT":
        host_part = f" to '{hostname}'" if hostname else ""
        return ProblemType.PAGE_TIMEOUT, f"Connection timed out{host_part}"
    if "CERT" in code or "SSL" in code:
        host_part = f" for '{hostname}'" if hostname else ""
        return ProblemType.NAVIGATION_FAILED, f"SSL/TLS error{host_part}"
    return ProblemType.NAVIGATION_FAILED, f"Navigation failed (net::ERR_{code})"


_CLI_HINTS: dict[str, str] = {
    ProblemType.VALIDATION_ERROR.uri: "Check the command arguments and try again.",
    ProblemType.BROWSER_UNAVAILABLE.uri: "Ensure Chromium is installed: playwright install chromium",
    ProblemType.PAGE_TIMEOUT.uri: "The page took too long to load. Try again or check your connection.",
    ProblemType.NAVIGATION_FAILED.uri: "Check the URL spelling and that the site is reachable.",
    ProblemType.UPLOAD_FAILED.uri: "The recording was kept in the video directory; retry the upload manually.",
}


def sanitize_detail(text: str) -> str:
    """Scrub secrets and filesystem paths from *text*, then truncate."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _PATH_PATTERN.sub("<path>", text)
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text


# ── ProblemDetail dataclass ──────────────────────────────────────────

_STANDARD_FIELDS = frozenset({"type", "title", "status", "detail", "instance"})


@dataclass(frozen=True, slots=True)
class ProblemDetail:
    """RFC 9457 Problem Detail object."""

    type: str = "about:blank"
    title: str = ""
    status: int = 500
    detail: str = ""
    instance: str = ""
    extensions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """RFC 9457 JSON dict.  Empty optional fields omitted, extensions merged at top level."""
        d: dict[str, Any] = {"type": self.type, "status": self.status}
        if self.title:
            d["title"] = self.title
        if self.detail:
            d["detail"] = self.detail
        if self.instance:
            d["instance"] = self.instance
        for k, v in self.extensions.items():
            if k not in _STANDARD_FIELDS:
                d[k] = v
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def to_response(self):
        """Starlette ``JSONResponse`` with ``application/problem+json``."""
        from starlette.responses import JSONResponse

        return JSONResponse(
            content=self.to_dict(),
            status_code=self.status,
            media_type="application/problem+json",
            headers={"Cache-Control": "no-store"},
        )

    def to_cli_text(self) -> str:
        """``Error: <detail>`` plus an optional ``Hint:`` line."""
        hint = _CLI_HINTS.get(self.type, "")
        lines = [f"Error: {self.detail}"]
        if hint:
            lines.append(f"Hint: {hint}")
        return "\n".join(lines)


# ── Exception → ProblemType mapping ──────────────────────────────────


def _exception_type_map() -> dict[type, ProblemType]:
    from botocore.exceptions import BotoCoreError, ClientError

    from .errors import (
        ArtifactNotFoundError,
        BrowserOperationError,
        UploadError,
        ValidationError,
    )

    return {
        ValidationError: ProblemType.VALIDATION_ERROR,
        BrowserOperationError: ProblemType.BROWSER_UNAVAILABLE,
        ArtifactNotFoundError: ProblemType.ARTIFACT_NOT_FOUND,
        UploadError: ProblemType.UPLOAD_FAILED,
        # S3 backend errors propagate unchanged from the store
        ClientError: ProblemType.UPLOAD_FAILED,
        BotoCoreError: ProblemType.UPLOAD_FAILED,
    }


def _lookup(exc: Exception) -> ProblemType | None:
    for exc_type, problem_type in _exception_type_map().items():
        if isinstance(exc, exc_type):
            return problem_type
    return None


def _build(problem_type: ProblemType, detail: str, instance: str, ext: dict[str, Any]) -> ProblemDetail:
    status, title = _TYPE_METADATA[problem_type]
    return ProblemDetail(
        type=problem_type.uri,
        title=title,
        status=status,
        detail=sanitize_detail(detail),
        instance=instance,
        extensions=ext,
    )


def from_exception(
    exc: Exception,
    *,
    instance: str = "",
    include_stack: bool = False,
) -> ProblemDetail:
    """Build a ProblemDetail from a capture failure.

    ``include_stack`` adds the formatted traceback as a ``stack`` extension;
    only development configurations should set it.
    """
    ext: dict[str, Any] = {}
    if include_stack:
        ext["stack"] = "".join(traceback.format_exception(exc))

    problem_type = _lookup(exc)
    if problem_type is not None:
        return _build(problem_type, str(exc), instance, ext)

    if isinstance(exc, TimeoutError) or type(exc).__name__ == "TimeoutError":
        return _build(ProblemType.PAGE_TIMEOUT, str(exc), instance, ext)

    net_result = classify_network_error(str(exc))
    if net_result is not None:
        problem_type, human_msg = net_result
        return _build(problem_type, human_msg, instance, ext)

    return _build(ProblemType.CAPTURE_FAILED, str(exc), instance, ext)


def from_validation(detail: str, *, field_name: str = "", instance: str = "") -> ProblemDetail:
    """Build a 400 ProblemDetail for a rejected request."""
    ext: dict[str, Any] = {}
    if field_name:
        ext["field"] = field_name
    return _build(ProblemType.VALIDATION_ERROR, detail, instance, ext)
