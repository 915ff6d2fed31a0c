"""Privacy redaction for session content."""

from vibesync.security.sanitizer import MessageSanitizer, RedactionCounter, summarize_redactions

__all__ = ["MessageSanitizer", "RedactionCounter", "summarize_redactions"]
