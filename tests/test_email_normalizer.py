"""
Email Normalizer Tests

Run with: python -m pytest tests/test_email_normalizer.py -v
"""

import logging
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from signflow import DomainTypoDictionary, EmailNormalizer, SigningError, normalize_email
from signflow.email_normalizer import levenshtein


class FailingTypos:
    """Typo dictionary whose backing store is unavailable."""

    def suggest(self, domain):
        raise SigningError("typo service down")


class TestDomainTypoDictionary:
    """Test the packaged typo dictionary."""

    def test_known_misspelling(self):
        assert DomainTypoDictionary.default().suggest('gmial.com') == 'gmail.com'

    def test_unknown_domain_returns_none(self):
        assert DomainTypoDictionary.default().suggest('example.com') is None

    def test_tld_fix(self):
        assert DomainTypoDictionary.default().suggest('example.con') == 'example.com'

    def test_tld_fix_reveals_known_domain(self):
        typos = DomainTypoDictionary(domains={'gmial.com': 'gmail.com'}, tlds={'con': 'com'})
        assert typos.suggest('gmial.con') == 'gmail.com'

    def test_missing_file_raises_configuration_error(self, tmp_path):
        from signflow import ConfigurationError

        with pytest.raises(ConfigurationError):
            DomainTypoDictionary.from_yaml(tmp_path / 'missing.yml')


class TestNormalize:
    """Test email normalization rules."""

    @pytest.fixture(autouse=True)
    def setup(self):
        self.normalizer = EmailNormalizer()

    def test_gmail_without_tld(self):
        """A bare @gmail gets .com appended."""
        assert self.normalizer.normalize('John@gmail') == 'john@gmail.com'

    def test_module_function(self):
        assert normalize_email('John@gmail') == 'john@gmail.com'

    def test_empty_and_numeric(self):
        assert self.normalizer.normalize('') == ''
        assert self.normalizer.normalize('   ') == ''
        assert self.normalizer.normalize(None) == ''
        assert self.normalizer.normalize('5551234') == ''
        assert self.normalizer.normalize(5551234) == ''

    def test_lowercases_and_strips(self):
        assert self.normalizer.normalize('  Jane.Doe@Example.com ') == 'jane.doe@example.com'

    def test_strips_leading_angle_bracket(self):
        assert self.normalizer.normalize('<jane@example.com') == 'jane@example.com'

    def test_multiple_addresses_left_alone(self):
        assert self.normalizer.normalize('A@gmial.com, b@gmial.com') == 'a@gmial.com, b@gmial.com'

    def test_slash_becomes_comma(self):
        assert self.normalizer.normalize('a@example.com/b@example.com') == 'a@example.com,b@example.com'

    @pytest.mark.parametrize('email', [
        'Juan@Correo.GOB',
        'user@domain.om',
        'user@mail.mm',
        'User@site.cm',
        'user@mail.et',
        'user@domain.mo',
        'Kiwi@Xtra.co.NZ',
        'user@mweb.co.za',
        'Paddy@eircom.IE',
    ])
    def test_no_fix_tlds_only_lowercased(self, email):
        assert self.normalizer.normalize(email) == email.lower()

    def test_dotless_domain_left_alone(self):
        assert self.normalizer.normalize('Admin@Localhost') == 'admin@localhost'

    def test_fixes_known_typo(self, caplog):
        with caplog.at_level(logging.INFO, logger='signflow.email_normalizer'):
            assert self.normalizer.normalize('Jane@Gmial.com') == 'jane@gmail.com'
        assert 'Fixed email gmial.com' in caplog.text

    def test_fixes_tld_typo(self):
        assert self.normalizer.normalize('jane@yahoo.con') == 'jane@yahoo.com'

    def test_unknown_domain_unchanged(self):
        assert self.normalizer.normalize('jane@acme-corp.com') == 'jane@acme-corp.com'

    def test_gmail_near_miss_skipped(self, caplog):
        typos = DomainTypoDictionary(domains={'gmal.co': 'gmail.co'})
        normalizer = EmailNormalizer(typos=typos)

        with caplog.at_level(logging.INFO, logger='signflow.email_normalizer'):
            assert normalizer.normalize('jane@gmal.co') == 'jane@gmal.co'
        assert 'Skipped email fix' in caplog.text

    def test_large_correction_skipped(self):
        typos = DomainTypoDictionary(domains={'mycompany.com': 'gmail.com'})
        normalizer = EmailNormalizer(typos=typos)

        assert normalizer.normalize('jane@mycompany.com') == 'jane@mycompany.com'

    def test_max_distance_is_configurable(self):
        typos = DomainTypoDictionary(domains={'mycompany.com': 'gmail.com'})
        normalizer = EmailNormalizer(typos=typos, max_distance=20)

        assert normalizer.normalize('jane@mycompany.com') == 'jane@gmail.com'

    def test_lookup_failure_never_raises(self):
        normalizer = EmailNormalizer(typos=FailingTypos())
        assert normalizer.normalize('Jane@Gmial.com') == 'jane@gmial.com'

    @pytest.mark.parametrize('email', [
        'John@gmail',
        'Jane@Gmial.com',
        'jane@yahoo.con',
        ' <Someone@Hotmial.com',
        'a@example.com/b@example.com',
        'Paddy@eircom.IE',
        'plain@example.org',
        '12345',
    ])
    def test_idempotent(self, email):
        once = self.normalizer.normalize(email)
        assert self.normalizer.normalize(once) == once


class TestLevenshtein:
    """Test the edit distance helper."""

    def test_identical(self):
        assert levenshtein('gmail.com', 'gmail.com') == 0

    def test_transposition_counts_two(self):
        assert levenshtein('gmial.com', 'gmail.com') == 2

    def test_empty(self):
        assert levenshtein('', 'abc') == 3
        assert levenshtein('abc', '') == 3


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
