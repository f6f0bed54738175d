"""
Domain Typo Dictionary

Keyed lookup of common mail domain misspellings, loaded from YAML.
Used by the email normalizer to propose a corrected domain.

Usage:
    typos = DomainTypoDictionary.default()
    typos.suggest('gmial.com')   # -> 'gmail.com'
    typos.suggest('example.com') # -> None
"""

import logging
from pathlib import Path
from typing import Dict, Optional

import yaml

from .config import Config
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class DomainTypoDictionary:
    """
    Suggests corrected domains for known misspellings.

    Two tables are consulted in order:
        - domains: full misspelled domain -> corrected domain
        - tlds: misspelled top-level domain -> corrected TLD
    """

    _default: Optional['DomainTypoDictionary'] = None

    def __init__(self, domains: Dict[str, str] = None, tlds: Dict[str, str] = None):
        self.domains = {k.lower(): v.lower() for k, v in (domains or {}).items()}
        self.tlds = {k.lower(): v.lower() for k, v in (tlds or {}).items()}

    @classmethod
    def from_yaml(cls, path: Path) -> 'DomainTypoDictionary':
        """Load the dictionary from a YAML file with 'domains' and 'tlds' maps."""
        try:
            raw = yaml.safe_load(Path(path).read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load domain typos from {path}: {e}")

        typos = cls(domains=raw.get('domains'), tlds=raw.get('tlds'))
        logger.debug(f"Loaded {len(typos.domains)} domain typo(s) and {len(typos.tlds)} TLD typo(s)")
        return typos

    @classmethod
    def default(cls) -> 'DomainTypoDictionary':
        """Get the dictionary configured by DOMAIN_TYPOS_PATH, loading it once."""
        if cls._default is None:
            cls._default = cls.from_yaml(Config.DOMAIN_TYPOS_PATH)
        return cls._default

    def suggest(self, domain: str) -> Optional[str]:
        """
        Suggest a corrected domain.

        Returns None when the domain is not a known misspelling.
        """
        if not domain:
            return None

        domain = domain.strip().lower()

        if domain in self.domains:
            return self.domains[domain]

        name, dot, tld = domain.rpartition('.')
        if dot and name and tld in self.tlds:
            fixed = f"{name}.{self.tlds[tld]}"
            # A fixed TLD can reveal a known misspelled domain (gmial.con)
            return self.domains.get(fixed, fixed)

        return None
