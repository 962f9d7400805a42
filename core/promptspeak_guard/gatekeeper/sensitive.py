import re
from typing import Callable

SensitiveDataClassifier = Callable[[str], bool]

SENSITIVE_PATTERNS = {
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "api_key": re.compile(r"(sk-[a-zA-Z0-9_-]{20,}|AIza[a-zA-Z0-9_-]{35})"),
    "bearer_token": re.compile(r"\bBearer\s+[A-Za-z0-9\-._~+/]{20,}=*"),
    "aws_access_key": re.compile(r"\b(AKIA|ASIA)[0-9A-Z]{16}\b"),
    "private_key": re.compile(
        r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----"
    ),
    "generic_secret": re.compile(
        r"\b(password|passwd|secret|api_key|apikey|access_token)\b[\"']?\s*[:=]\s*[\"']?([a-zA-Z0-9_\-]{8,})",
        re.IGNORECASE,
    ),
}

CARD_PATTERN = re.compile(r"\b(?:\d{4}[ -]){3}\d{4}\b")


def _luhn_valid(number: str) -> bool:
    digits = [int(c) for c in number if c.isdigit()]
    checksum = 0
    for i, digit in enumerate(reversed(digits)):
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        checksum += digit
    return checksum % 10 == 0


def find_sensitive_data(text: str) -> list[str]:
    """
    Return the labels of every sensitive-data pattern found in text.
    """
    found = [
        label for label, pattern in SENSITIVE_PATTERNS.items()
        if pattern.search(text)
    ]
    if any(_luhn_valid(m.group(0)) for m in CARD_PATTERN.finditer(text)):
        found.append("credit_card")
    return found


def contains_sensitive_data(text: str) -> bool:
    """Check whether text carries PII or credentials."""
    if not text:
        return False
    return bool(find_sensitive_data(text))
