"""Channel-points message checks against a channel's content policy."""

import re
from dataclasses import dataclass

from chatvibes.shared.models.rewards import ContentPolicy

_LINK_RE = re.compile(r"(https?://\S+|\b\w+\.[a-z]{2,}\b)", re.IGNORECASE)


@dataclass
class PolicyResult:
    ok: bool
    reason: str | None = None


def check_message(policy: ContentPolicy, text: str) -> PolicyResult:
    """Decide whether *text* may be spoken under *policy*.

    Length is measured after trimming. Banned words match on word
    boundaries, case-insensitively.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return PolicyResult(False, "Message is empty")
    if len(trimmed) < policy.min_chars:
        return PolicyResult(False, f"Message too short (min {policy.min_chars})")
    if len(trimmed) > policy.max_chars:
        return PolicyResult(False, f"Message too long (max {policy.max_chars})")

    if policy.block_links and _LINK_RE.search(trimmed):
        return PolicyResult(False, "Links are not allowed")

    for word in policy.banned_words:
        w = (word or "").strip()
        if w and re.search(rf"\b{re.escape(w)}\b", trimmed, re.IGNORECASE):
            return PolicyResult(False, f'Contains banned word: "{w}"')

    return PolicyResult(True)
