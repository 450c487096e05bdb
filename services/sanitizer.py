"""Turn raw assistant text into display content plus an optional contract reference."""
import re
from dataclasses import dataclass
from typing import Optional

REF_PATTERN = re.compile(r"\[REF\](.*?)\[/REF\]", re.DOTALL)

# Provider file-search citation noise: 【4:0†source】 and [4:0†contract.pdf]
CITATION_TOKEN_PATTERNS = (
    re.compile(r"【[^】]*】"),
    re.compile(r"\[\d+:\d+†[^\]]*\]"),
)

CITATION_PATTERN = re.compile(
    r"^\s*Section\s+(?P<section>[^,]+?)\s*,\s*Page\s+(?P<page>[^:]+?)\s*:\s*(?P<quote>.*)$",
    re.IGNORECASE | re.DOTALL,
)


@dataclass(frozen=True)
class Citation:
    """A reference annotation split into its parts."""
    section: str
    page: str
    quote: str

    def to_dict(self) -> dict:
        return {"section": self.section, "page": self.page, "quote": self.quote}


@dataclass(frozen=True)
class SanitizedResponse:
    main_content: str
    reference: Optional[str] = None

    @property
    def citation(self) -> Optional[Citation]:
        return parse_reference(self.reference) if self.reference else None


def strip_citation_tokens(text: str) -> str:
    for pattern in CITATION_TOKEN_PATTERNS:
        text = pattern.sub("", text)
    return text


def sanitize(raw: str) -> SanitizedResponse:
    """
    Split assistant output into main content and the first [REF] annotation.

    The marker pair and its interior are cut out of the main content, which
    is then stripped of provider citation tokens and trimmed. Every string
    has an answer; there is no error case.
    """
    raw = raw or ""
    reference = None

    match = REF_PATTERN.search(raw)
    if match:
        reference = match.group(1).strip()
        raw = raw[:match.start()] + raw[match.end():]

    return SanitizedResponse(main_content=strip_citation_tokens(raw).strip(), reference=reference)


def parse_reference(reference: Optional[str]) -> Optional[Citation]:
    """Split "Section X.X, Page Y: quote" into a Citation, or None when it does not fit."""
    if not reference:
        return None
    match = CITATION_PATTERN.match(reference)
    if not match:
        return None
    quote = match.group("quote").strip().strip('"').strip()
    return Citation(section=match.group("section").strip(), page=match.group("page").strip(), quote=quote)
