"""
Input Validation

Single source of truth for every rule applied to a submission:
- predicted_date: ISO YYYY-MM-DD, real calendar date, inside [min, max]
- metadata (user agent): bounded length, SQL and HTML/script heuristics
- verification token: required unless bot verification is degraded

Validators never raise for bad input. They return a ValidationResult naming
the rule, the field and a user-presentable message. The client pre-check is
generated from `export_rules()` so the two sides cannot drift.
"""
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================================
# RULE CONSTANTS
# =============================================================================

DATE_PATTERN = r"^(\d{4})-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$"
DATE_REGEX = re.compile(DATE_PATTERN)

MAX_METADATA_LENGTH = 256

MESSAGES = {
    "missing": "Please enter a date",
    "format": "Please enter a valid date in YYYY-MM-DD format",
    "calendar": "Invalid calendar date (e.g., Feb 30, Apr 31)",
    "before_min": "Date must be on or after {min_date}. Predictions before the official date are not allowed.",
    "after_max": "Date must be on or before {max_date}",
    "metadata_length": f"User agent must be at most {MAX_METADATA_LENGTH} characters",
    "metadata_sql": "User agent contains potentially dangerous SQL injection patterns",
    "metadata_xss": "User agent contains potentially dangerous XSS patterns",
    "token_missing": "Verification token is required",
}

SQL_PATTERNS = (
    re.compile(r"\bUNION\b.*\bSELECT\b", re.IGNORECASE),
    re.compile(r"\bDROP\b.*\b(TABLE|DATABASE)\b", re.IGNORECASE),
    re.compile(r"\bDELETE\b.*\bFROM\b", re.IGNORECASE),
    re.compile(r"\bINSERT\b.*\bINTO\b", re.IGNORECASE),
    re.compile(r"\bUPDATE\b.*\bSET\b", re.IGNORECASE),
    re.compile(r"(--|/\*|\*/)"),
    re.compile(r"\bOR\b.*=", re.IGNORECASE),
    re.compile(r"\bEXEC(UTE)?\b", re.IGNORECASE),
)

XSS_PATTERNS = (
    re.compile(r"<script[\s\S]*?>[\s\S]*?</script>", re.IGNORECASE),
    re.compile(r"<img[^>]+onerror\s*=", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
    re.compile(r"on(click|error|load|mouse\w+|key\w+)\s*=", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:.*base64", re.IGNORECASE),
)

_HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
)


class ValidationRule(str, Enum):
    """Which rule rejected the input."""
    MISSING = "missing"
    FORMAT = "format"
    CALENDAR = "calendar"
    BEFORE_MIN = "before_min"
    AFTER_MAX = "after_max"
    METADATA_LENGTH = "metadata_length"
    METADATA_SQL = "metadata_sql"
    METADATA_XSS = "metadata_xss"
    TOKEN_MISSING = "token_missing"


@dataclass
class ValidationResult:
    """Outcome of a validation check."""
    is_valid: bool
    rule: Optional[ValidationRule] = None
    field: Optional[str] = None
    message: Optional[str] = None
    value: Optional[Any] = None

    @classmethod
    def ok(cls, value: Any = None) -> "ValidationResult":
        return cls(is_valid=True, value=value)

    @classmethod
    def fail(cls, rule: ValidationRule, field: str, message: str) -> "ValidationResult":
        return cls(is_valid=False, rule=rule, field=field, message=message)


@dataclass
class Submission:
    """A submission that passed every rule, ready for storage."""
    predicted_date: date
    user_agent: Optional[str]
    verification_token: str


# =============================================================================
# DATE RULES
# =============================================================================

def parse_calendar_date(value: str) -> Optional[date]:
    """Return the date for a YYYY-MM-DD string, or None if it is not a real day."""
    match = DATE_REGEX.match(value)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def validate_date(
    value: Any,
    min_date: date,
    max_date: date,
    field: str = "predicted_date",
) -> ValidationResult:
    """
    Validate a predicted date string.

    Order: presence, pattern, calendar validity, lower bound, upper bound.
    The "before minimum" message is distinct from the format message.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return ValidationResult.fail(ValidationRule.MISSING, field, MESSAGES["missing"])

    if not isinstance(value, str) or not DATE_REGEX.match(value):
        return ValidationResult.fail(ValidationRule.FORMAT, field, MESSAGES["format"])

    parsed = parse_calendar_date(value)
    if parsed is None:
        return ValidationResult.fail(ValidationRule.CALENDAR, field, MESSAGES["calendar"])

    if parsed < min_date:
        return ValidationResult.fail(
            ValidationRule.BEFORE_MIN,
            field,
            MESSAGES["before_min"].format(min_date=min_date.isoformat()),
        )

    if parsed > max_date:
        return ValidationResult.fail(
            ValidationRule.AFTER_MAX,
            field,
            MESSAGES["after_max"].format(max_date=max_date.isoformat()),
        )

    return ValidationResult.ok(parsed)


# =============================================================================
# THREAT DETECTORS
# =============================================================================

def detect_sql_injection(text: Optional[str]) -> bool:
    """Heuristic: does the text carry SQL metacharacters or keywords?"""
    if not text or not isinstance(text, str):
        return False
    return any(pattern.search(text) for pattern in SQL_PATTERNS)


def detect_xss(text: Optional[str]) -> bool:
    """Heuristic: does the text carry HTML/script injection vectors?"""
    if not text or not isinstance(text, str):
        return False
    return any(pattern.search(text) for pattern in XSS_PATTERNS)


def sanitize_text(text: Optional[str]) -> str:
    """HTML-entity encode &<>"' for storage."""
    if not text or not isinstance(text, str):
        return ""
    for raw, encoded in _HTML_ESCAPES:
        text = text.replace(raw, encoded)
    return text


def validate_metadata(value: Optional[str], field: str = "user_agent") -> ValidationResult:
    """
    Validate an optional free-text metadata field.

    On success the result value is the sanitized text (None when absent).
    """
    if value is None or value == "":
        return ValidationResult.ok(None)

    if len(value) > MAX_METADATA_LENGTH:
        return ValidationResult.fail(ValidationRule.METADATA_LENGTH, field, MESSAGES["metadata_length"])

    sql_suspicious = detect_sql_injection(value)
    xss_suspicious = detect_xss(value)
    if sql_suspicious:
        return ValidationResult.fail(ValidationRule.METADATA_SQL, field, MESSAGES["metadata_sql"])
    if xss_suspicious:
        return ValidationResult.fail(ValidationRule.METADATA_XSS, field, MESSAGES["metadata_xss"])

    return ValidationResult.ok(sanitize_text(value))


def validate_verification_token(
    value: Any,
    verification_degraded: bool,
    field: str = "metadata_token",
) -> ValidationResult:
    """A challenge token must be present unless verification is degraded."""
    token = value if isinstance(value, str) else ""
    if not token.strip() and not verification_degraded:
        return ValidationResult.fail(ValidationRule.TOKEN_MISSING, field, MESSAGES["token_missing"])
    return ValidationResult.ok(token.strip())


# =============================================================================
# SUBMISSION VALIDATOR
# =============================================================================

class SubmissionValidator:
    """
    Runs every submission rule in a fixed order and stops at the first
    failure. Date rules always run, whatever the token state.
    """

    def __init__(self, min_date: date, max_date: date):
        self.min_date = min_date
        self.max_date = max_date

    def validate(
        self,
        predicted_date: Any,
        verification_token: Any,
        user_agent: Optional[str] = None,
        verification_degraded: bool = False,
    ) -> ValidationResult:
        date_result = validate_date(predicted_date, self.min_date, self.max_date)
        if not date_result.is_valid:
            return date_result

        token_result = validate_verification_token(verification_token, verification_degraded)
        if not token_result.is_valid:
            return token_result

        metadata_result = validate_metadata(user_agent)
        if not metadata_result.is_valid:
            return metadata_result

        return ValidationResult.ok(
            Submission(
                predicted_date=date_result.value,
                user_agent=metadata_result.value,
                verification_token=token_result.value,
            )
        )

    def export_rules(self) -> Dict[str, Any]:
        """Rule set for the client-side pre-check mirror."""
        return export_rules(self.min_date, self.max_date)


def export_rules(min_date: date, max_date: date) -> Dict[str, Any]:
    return {
        "date_pattern": DATE_PATTERN,
        "min_date": min_date.isoformat(),
        "max_date": max_date.isoformat(),
        "max_metadata_length": MAX_METADATA_LENGTH,
        "messages": {
            "missing": MESSAGES["missing"],
            "format": MESSAGES["format"],
            "calendar": MESSAGES["calendar"],
            "before_min": MESSAGES["before_min"].format(min_date=min_date.isoformat()),
            "after_max": MESSAGES["after_max"].format(max_date=max_date.isoformat()),
        },
    }
