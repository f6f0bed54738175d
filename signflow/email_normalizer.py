"""
Email Normalizer

Canonicalizes a submitter email before it is used as an identity key,
repairing common domain typos (gmial.com -> gmail.com) when the fix is
small enough to trust.

Usage:
    normalize_email(' John@Gmial.com ')  # -> 'john@gmail.com'
    normalize_email('John@gmail')        # -> 'john@gmail.com'
"""

import logging
import re
from typing import Any, Optional

from .config import Config
from .domain_typos import DomainTypoDictionary
from .exceptions import SigningError

logger = logging.getLogger(__name__)

# "@gmail" or "@gmai" with no TLD at all
GMAIL_MISSING_TLD = re.compile(r'@gmail?\Z', re.IGNORECASE)

# Country-code TLDs that users type on purpose but look like typos
NO_FIX_TLDS = re.compile(r'\.(?:gob|om|mm|cm|et|mo|nz|za|ie)\Z', re.IGNORECASE)

# gmail.<anything but com> is too ambiguous to correct
GMAIL_NEAR_MISS = re.compile(r'\Agmail\.(?!com\Z)', re.IGNORECASE)

NUMERIC_ONLY = re.compile(r'\A[\d\s]+\Z')


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings (insert/delete/substitute)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b)
            ))
        previous = current
    return previous[-1]


class EmailNormalizer:
    """
    Normalizes raw email input. Never raises; the worst case is the
    lowercased input.
    """

    def __init__(self, typos: DomainTypoDictionary = None, max_distance: int = None):
        self._typos = typos
        self.max_distance = Config.EMAIL_FIX_MAX_DISTANCE if max_distance is None else max_distance

    @property
    def typos(self) -> DomainTypoDictionary:
        if self._typos is None:
            self._typos = DomainTypoDictionary.default()
        return self._typos

    def normalize(self, raw: Any) -> str:
        """
        Normalize an email address.

        Args:
            raw: User-supplied email (may be None, numeric, or several
                 addresses pasted together)

        Returns:
            Canonical email, or '' for empty/numeric input
        """
        if raw is None or isinstance(raw, (int, float)):
            return ''

        email = str(raw).strip()
        if not email or NUMERIC_ONLY.match(email):
            return ''

        email = email.replace('/', ',').lstrip('<').strip()
        lowered = email.lower()

        if GMAIL_MISSING_TLD.search(email):
            return GMAIL_MISSING_TLD.sub('@gmail.com', lowered)

        domain = lowered.rsplit('@', 1)[-1] if '@' in lowered else ''

        # Multiple recipients, intentional ccTLDs and dotless domains are left alone
        if ',' in email or NO_FIX_TLDS.search(email) or '.' not in domain:
            return lowered

        candidate = self._suggest_candidate(lowered, domain)

        if candidate == lowered:
            return lowered

        fixed_domain = candidate.rsplit('@', 1)[-1]

        if fixed_domain == domain:
            return lowered

        if GMAIL_NEAR_MISS.match(fixed_domain):
            logger.info(f"Skipped email fix {domain}")
            return lowered

        if levenshtein(domain, fixed_domain) > self.max_distance:
            logger.info(f"Skipped email fix {domain}")
            return lowered

        logger.info(f"Fixed email {domain}")
        return candidate

    def _suggest_candidate(self, lowered: str, domain: str) -> str:
        """Build the corrected address proposed by the typo dictionary."""
        try:
            suggestion = self.typos.suggest(domain)
        except SigningError as e:
            logger.warning(f"Domain typo lookup unavailable, keeping {domain}: {e}")
            return lowered

        if not suggestion:
            return lowered

        local = lowered.rsplit('@', 1)[0]
        return f"{local}@{suggestion}"


_default_normalizer: Optional[EmailNormalizer] = None


def normalize_email(raw: Any) -> str:
    """Normalize an email with the default typo dictionary."""
    global _default_normalizer
    if _default_normalizer is None:
        _default_normalizer = EmailNormalizer()
    return _default_normalizer.normalize(raw)
