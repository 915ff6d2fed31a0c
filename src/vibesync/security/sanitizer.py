"""Message sanitization and redaction.

Sensitive spans are replaced with category-tagged placeholders so the
conversation stays readable for analysis. Passes run in a fixed order and
each one sees the output of the previous one, so a secret inside a fenced
code block disappears with the block and is not counted again.

Placeholder ids come from a ``RedactionCounter`` created for each
``sanitize_messages`` call. Repeats of the same secret get new ids.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from re import Pattern
from typing import Any

from vibesync.models import Message, RedactionMetadata, SanitizedMessage, format_timestamp

CATEGORIES = (
    "code_blocks",
    "credentials",
    "env_vars",
    "paths",
    "urls",
    "emails",
    "ip_addresses",
    "passwords",
    "attachments",
)

PREVIEW_LENGTH = 20


class RedactionCounter:
    """Sequential placeholder ids, one sequence per entity type."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = {}

    def next_name(self, entity_type: str) -> str:
        """Return the next id for ``entity_type``, e.g. ``credential_3``."""
        count = self._counters.get(entity_type, 0) + 1
        self._counters[entity_type] = count
        return f"{entity_type}_{count}"

    def reset(self) -> None:
        self._counters.clear()


@dataclass
class CredentialFinding:
    """Truncated preview of a redacted credential (debug mode only)."""

    preview: str
    pattern: str


def _preview(text: str) -> str:
    return text[:PREVIEW_LENGTH] + "..." if len(text) > PREVIEW_LENGTH else text


# Pass 4 pre-check: one cheap alternation before the full pattern list
CREDENTIAL_INDICATOR = re.compile(
    r"\b(sk[-_]|pk[-_]|rk_|gh[ps]_|gho_|ghu_|ghr_|AKIA|xox[bp]-|npm_|SG\.|bearer\s+)",
    re.IGNORECASE,
)

# Most common first
CREDENTIAL_PATTERNS: list[tuple[str, Pattern[str]]] = [
    ("GitHub token", re.compile(r"\bgh[ps]_[a-zA-Z0-9]{36,}\b")),
    ("GitHub OAuth token", re.compile(r"\bgho_[a-zA-Z0-9]{36,}\b")),
    ("Stripe secret key", re.compile(r"\bsk[-_](?:test|live)[-_][a-zA-Z0-9_-]{24,}\b")),
    ("Stripe publishable key", re.compile(r"\bpk[-_](?:test|live)[-_][a-zA-Z0-9_-]{24,}\b")),
    ("Bearer token", re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE)),
    ("OpenAI API key", re.compile(r"\bsk-[a-zA-Z0-9]{48,}\b")),
    ("Anthropic API key", re.compile(r"\bsk-ant-[a-zA-Z0-9_-]{48,}\b")),
    ("Stripe restricted key", re.compile(r"\brk_(?:live|test)_[a-zA-Z0-9]{24,}\b")),
    ("GitHub user token", re.compile(r"\bghu_[a-zA-Z0-9]{36,}\b")),
    ("GitHub refresh token", re.compile(r"\bghr_[a-zA-Z0-9]{36,}\b")),
    ("AWS access key", re.compile(r"\bAKIA[A-Z0-9]{16}\b")),
    ("Firebase/GCP token", re.compile(r"\bAAAA[A-Za-z0-9_-]{32,}\b")),
    ("SendGrid API key", re.compile(r"\bSG\.[a-zA-Z0-9_-]{22}\.[a-zA-Z0-9_-]{43}\b")),
    ("Slack token", re.compile(r"\bxox[bp]-[0-9]{10,}-[a-zA-Z0-9]{24,}")),
    ("NPM token", re.compile(r"\bnpm_[a-zA-Z0-9]{36,}\b")),
]

# Inline code spans that are credentials as a whole
INLINE_CREDENTIAL_PATTERNS: list[Pattern[str]] = [
    re.compile(r"^sk[-_](?:test|live)[-_]"),
    re.compile(r"^pk[-_](?:test|live)[-_]"),
    re.compile(r"^rk_(?:live|test)_"),
    re.compile(r"^gh[ps]_"),
    re.compile(r"^gho_"),
    re.compile(r"^ghu_"),
    re.compile(r"^ghr_"),
    re.compile(r"^AKIA[A-Z0-9]"),
    re.compile(r"^xox[bp]-"),
    re.compile(r"^npm_"),
    re.compile(r"^SG\."),
    re.compile(r"^sk-[a-zA-Z0-9]{48,}"),
    re.compile(r"^sk-ant-"),
    re.compile(
        r"^[\w-]*(?:api[_-]?key|api[_-]?secret|auth[_-]?token|access[_-]?token|private[_-]?key)"
        r"\s*=\s*[\"'][^\"']+[\"']$",
        re.IGNORECASE,
    ),
    # JWT
    re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$"),
    # MD5 / SHA1 / SHA256 digests
    re.compile(r"^[a-f0-9]{32}$", re.IGNORECASE),
    re.compile(r"^[a-f0-9]{40}$", re.IGNORECASE),
    re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE),
]

_ASSIGNMENT = re.compile(r"^(?:export\s+)?[\w.-]+\s*[=:]\s*[\"']?(?P<value>[^\"'\s]+)[\"']?;?$")

FENCED_CODE = re.compile(r"```[\s\S]*?```")
FENCE_LANGUAGE = re.compile(r"```(\w+)")
INLINE_CODE = re.compile(r"`[^`]+`")
ENV_VAR = re.compile(r"\$\{[^}\n]*\}|\$[A-Z_][A-Z0-9_]*")
PATH_PATTERNS: list[Pattern[str]] = [
    re.compile(r"[A-Z]:\\[\w\\.-]+"),
    re.compile(r"/(?:home|usr|var|etc|Users)/[\w/.-]+"),
    re.compile(r"\.\.?/[\w/.-]+"),
]
URL = re.compile(r"(?:https?|postgres|mysql|mongodb|redis)://[^\s<>\"{}|\\^`\[\]]+")
EMAIL = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
IPV4 = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
PASSWORD_FIELD = re.compile(r"[\"']password[\"']:\s*[\"'][^\"']+[\"']", re.IGNORECASE)
IMAGE_PLACEHOLDER = re.compile(r"\[(\d+) image (?:attachments?|\(s\) removed)\]")

_DATABASE_SCHEMES = ("postgres", "mysql", "mongodb", "redis")


def looks_like_credential(span: str) -> bool:
    """Check whether an inline code span holds a credential.

    Matches known key prefixes, quoted key assignments, JWT-shaped strings
    and exact-length hex digests. For ``NAME=value`` spans the value is
    checked on its own as well.
    """
    cleaned = span.replace("`", "").strip()
    if any(pattern.search(cleaned) for pattern in INLINE_CREDENTIAL_PATTERNS):
        return True
    match = _ASSIGNMENT.match(cleaned)
    if match and match.group("value") != cleaned:
        return looks_like_credential(match.group("value"))
    return False


def collapse_content(content: Any) -> tuple[str, int]:
    """Pass 1: turn structured content into text plus an attachment suffix.

    Returns:
        The text and the number of attachments it stands for, including
        placeholders already left by a reader.
    """
    if isinstance(content, list):
        texts: list[str] = []
        image_count = 0
        for item in content:
            if isinstance(item, dict):
                if item.get("type") == "image":
                    image_count += 1
                elif item.get("text"):
                    texts.append(str(item["text"]))
            elif item:
                texts.append(str(item))
        text = " ".join(texts)
        if image_count:
            text += f" [{image_count} image(s) removed]"
        return text, image_count

    if isinstance(content, dict):
        text = json.dumps(content, indent=2)
    elif content is None:
        text = ""
    else:
        text = str(content)

    existing = sum(int(m.group(1)) for m in IMAGE_PLACEHOLDER.finditer(text))
    return text, existing


def redact_code_blocks(text: str, counter: RedactionCounter) -> tuple[str, int]:
    """Pass 2: fenced code blocks -> ``[CODE_BLOCK_code_N: lang]``."""
    count = 0

    def replace(match: re.Match[str]) -> str:
        nonlocal count
        count += 1
        lang = FENCE_LANGUAGE.match(match.group(0))
        return f"[CODE_BLOCK_{counter.next_name('code')}: {lang.group(1) if lang else 'code'}]"

    return FENCED_CODE.sub(replace, text), count


def redact_inline_code(
    text: str,
    counter: RedactionCounter,
    findings: list[CredentialFinding] | None = None,
) -> tuple[str, int, int]:
    """Pass 3: inline code -> credential or generic code placeholders.

    Returns:
        The text, the number of code spans and the number of credential spans.
    """
    code = 0
    credentials = 0

    def replace(match: re.Match[str]) -> str:
        nonlocal code, credentials
        span = match.group(0)
        if looks_like_credential(span):
            credentials += 1
            if findings is not None:
                findings.append(CredentialFinding(_preview(span), "Inline code (credential-like)"))
            return f"[CREDENTIAL_{counter.next_name('credential')}]"
        code += 1
        return f"[CODE_{counter.next_name('inline_code')}]"

    return INLINE_CODE.sub(replace, text), code, credentials


def redact_credentials(
    text: str,
    counter: RedactionCounter,
    findings: list[CredentialFinding] | None = None,
) -> tuple[str, int]:
    """Pass 4: provider-specific credential patterns, behind a cheap pre-check."""
    if not CREDENTIAL_INDICATOR.search(text):
        return text, 0

    count = 0
    for name, pattern in CREDENTIAL_PATTERNS:

        def replace(match: re.Match[str], name: str = name) -> str:
            nonlocal count
            count += 1
            if findings is not None:
                findings.append(CredentialFinding(_preview(match.group(0)), name))
            return f"[CREDENTIAL_{counter.next_name('credential')}]"

        text = pattern.sub(replace, text)
    return text, count


def _redact_sequential(
    text: str,
    counter: RedactionCounter,
    pattern: Pattern[str],
    label: str,
    entity: str,
) -> tuple[str, int]:
    count = 0

    def replace(_match: re.Match[str]) -> str:
        nonlocal count
        count += 1
        return f"[{label}_{counter.next_name(entity)}]"

    return pattern.sub(replace, text), count


def redact_env_vars(text: str, counter: RedactionCounter) -> tuple[str, int]:
    """Pass 5: ``${VAR}`` / ``$VAR`` -> ``[ENV_VAR_env_var_N]``."""
    return _redact_sequential(text, counter, ENV_VAR, "ENV_VAR", "env_var")


def redact_paths(text: str, counter: RedactionCounter) -> tuple[str, int]:
    """Pass 6: Windows, Unix-root and relative paths -> ``[PATH_path_N]``."""
    total = 0
    for pattern in PATH_PATTERNS:
        text, count = _redact_sequential(text, counter, pattern, "PATH", "path")
        total += count
    return text, total


def redact_urls(text: str, counter: RedactionCounter) -> tuple[str, int]:
    """Pass 7: URLs -> fixed category placeholder or ``[URL_url_N]``."""
    count = 0

    def replace(match: re.Match[str]) -> str:
        nonlocal count
        count += 1
        url = match.group(0)
        if url.startswith(_DATABASE_SCHEMES):
            return "[DATABASE_URL]"
        if "github.com" in url:
            return "[GITHUB_URL]"
        if "localhost" in url or "127.0.0.1" in url:
            return "[LOCAL_URL]"
        if "api" in url:
            return "[API_URL]"
        return f"[URL_{counter.next_name('url')}]"

    return URL.sub(replace, text), count


def redact_emails(text: str, counter: RedactionCounter) -> tuple[str, int]:
    """Pass 8: email addresses -> ``[EMAIL_email_N]``."""
    return _redact_sequential(text, counter, EMAIL, "EMAIL", "email")


def redact_ip_addresses(text: str) -> tuple[str, int]:
    """Pass 9: IPv4 addresses -> ``[IP_ADDRESS]``."""
    return IPV4.subn("[IP_ADDRESS]", text)


def redact_passwords(text: str) -> tuple[str, int]:
    """Pass 10: quoted password fields -> fixed redacted value."""
    return PASSWORD_FIELD.subn('"password": "[REDACTED_PASSWORD]"', text)


class MessageSanitizer:
    """Redacts sensitive information from session messages.

    Example:
        "Check /home/me/app/.env for $API_KEY" becomes
        "Check [PATH_path_1] for [ENV_VAR_env_var_1]".
    """

    def __init__(self, debug: bool = False) -> None:
        """Initialize the sanitizer.

        Args:
            debug: Record truncated previews of redacted credentials in
                ``debug_credentials``, accumulated over every call.
        """
        self.debug = debug
        self.debug_credentials: list[CredentialFinding] = []

    def sanitize_messages(self, messages: list[Message]) -> list[SanitizedMessage]:
        """Sanitize one session's messages.

        Placeholder ids restart at 1 on every call.

        Args:
            messages: Messages in session order.

        Returns:
            One SanitizedMessage per input message, in the same order.
        """
        counter = RedactionCounter()
        findings = self.debug_credentials if self.debug else None
        sanitized = [self.sanitize_message(m, counter, findings) for m in messages]
        return sanitized

    def sanitize_message(
        self,
        message: Message,
        counter: RedactionCounter,
        findings: list[CredentialFinding] | None = None,
    ) -> SanitizedMessage:
        """Sanitize a single message using the caller's counter."""
        content, counts = self.sanitize_content(message.content, counter, findings)
        return SanitizedMessage(
            role=message.role,
            content=content,
            timestamp=format_timestamp(message.timestamp),
            metadata=RedactionMetadata(
                has_code=counts["code_blocks"] > 0,
                redacted_items=counts,
                original_length=len(message.content),
                sanitized_length=len(content),
            ),
        )

    def sanitize_content(
        self,
        content: Any,
        counter: RedactionCounter,
        findings: list[CredentialFinding] | None = None,
    ) -> tuple[str, dict[str, int]]:
        """Run all redaction passes over raw content.

        Returns:
            The redacted text and per-category redaction counts.
        """
        counts = dict.fromkeys(CATEGORIES, 0)

        text, counts["attachments"] = collapse_content(content)

        text, n = redact_code_blocks(text, counter)
        counts["code_blocks"] += n

        # Inline code counts toward code blocks
        text, code, credentials = redact_inline_code(text, counter, findings)
        counts["code_blocks"] += code
        counts["credentials"] += credentials

        text, n = redact_credentials(text, counter, findings)
        counts["credentials"] += n

        text, counts["env_vars"] = redact_env_vars(text, counter)
        text, counts["paths"] = redact_paths(text, counter)
        text, counts["urls"] = redact_urls(text, counter)
        text, counts["emails"] = redact_emails(text, counter)
        text, counts["ip_addresses"] = redact_ip_addresses(text)
        text, counts["passwords"] = redact_passwords(text)

        return text, counts


def summarize_redactions(messages: list[SanitizedMessage]) -> dict[str, Any]:
    """Aggregate redaction counts across sanitized messages.

    Returns:
        Dictionary with ``total`` and per-category ``by_type`` counts.
    """
    by_type = dict.fromkeys(CATEGORIES, 0)
    for message in messages:
        for category, count in message.metadata.redacted_items.items():
            by_type[category] = by_type.get(category, 0) + count
    return {"total": sum(by_type.values()), "by_type": by_type}
