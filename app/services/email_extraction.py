"""
Best-effort extraction of job details from application confirmation emails.

Covers the common LinkedIn / Indeed / Glassdoor phrasings; callers that
already know the title and company pass them directly.
"""
import re

KNOWN_PLATFORMS = ("linkedin", "indeed", "glassdoor")
MAX_FOR_LINE_LENGTH = 120

_SENT_TO_FOR = re.compile(r"your application was sent to\s+(.+?)\s+for\s+(.+?)(?:\r?\n|$)", re.I)
_APPLIED_TO_FOR = re.compile(r"you applied to\s+(.+?)\s+for\s+(.+?)(?:\r?\n|$)", re.I)

_LOCATION_LINES = [
    re.compile(r"^\s*location\s*:\s*(.+?)\s*$", re.I | re.M),
    re.compile(r"^\s*job location\s*:\s*(.+?)\s*$", re.I | re.M),
]
_TITLE_LINES = [
    re.compile(r"^\s*applied for\s*:\s*(.+?)\s*$", re.I | re.M),
    re.compile(r"^\s*application for\s*:\s*(.+?)\s*$", re.I | re.M),
    re.compile(r"^\s*role\s*:\s*(.+?)\s*$", re.I | re.M),
]
_COMPANY_LINE = re.compile(r"^\s*company\s*:\s*(.+?)\s*$", re.I | re.M)

# "You applied to Software Engineer at Acme Corp"
_SUBJECT_APPLIED_AT = re.compile(r"applied to\s+(.+?)\s+at\s+(.+?)$", re.I)
# "Your application was sent to Acme Corp"
_SUBJECT_SENT_TO = re.compile(r"application .* sent to\s+(.+?)$", re.I)
_FOR_LINES = [
    re.compile(r"^\s*for\s+(.+?)\s*$", re.I | re.M),
    re.compile(r"for\s+(.+?)(?:\r?\n|$)", re.I),
]


def _clean(value) -> str:
    return str(value if value is not None else "").strip()


def _first_match(patterns, text: str) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return ""


def normalize_key(value) -> str:
    """Lowercased alphanumeric words, used to compare titles and companies."""
    text = _clean(value).lower()
    text = re.sub(r"[’']", "", text)
    text = re.sub(r"[^a-z0-9]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def detect_platform(subject: str, from_: str) -> str:
    subject = subject.lower()
    from_ = from_.lower()
    for platform in KNOWN_PLATFORMS:
        if platform in from_ or platform in subject:
            return platform
    return "unknown"


def extract_job_details_from_email(
    subject: str | None, from_: str | None, body_text: str | None
) -> dict:
    """
    Returns:
        dict with ``platform``, ``job_title``, ``company`` and ``location``;
        any field that could not be found is None (``platform`` falls back
        to ``"unknown"``).
    """
    subject = _clean(subject)
    from_ = _clean(from_)
    body = _clean(body_text)

    platform = detect_platform(subject, from_)
    location = _first_match(_LOCATION_LINES, body)

    company = ""
    job_title = ""
    for pattern in (_SENT_TO_FOR, _APPLIED_TO_FOR):
        match = pattern.search(body)
        if match:
            company = company or match.group(1).strip()
            job_title = job_title or match.group(2).strip()

    job_title = job_title or _first_match(_TITLE_LINES, body)
    company = company or _first_match([_COMPANY_LINE], body)

    if not company or not job_title:
        match = _SUBJECT_APPLIED_AT.search(subject)
        if match:
            job_title = job_title or match.group(1).strip()
            company = company or match.group(2).strip()

    if not company:
        match = _SUBJECT_SENT_TO.search(subject)
        if match:
            company = match.group(1).strip()

    if company and not job_title:
        for_line = _first_match(_FOR_LINES, body)
        if for_line and len(for_line) <= MAX_FOR_LINE_LENGTH:
            job_title = for_line

    return {
        "platform": platform,
        "job_title": job_title or None,
        "company": company or None,
        "location": location or None,
    }
