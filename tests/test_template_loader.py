"""
Template Definition Test Harness

Validates all template definitions on every test run.
This ensures configuration errors are caught before deployment.

Run with: python -m pytest tests/test_template_loader.py -v
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from signflow import (
    ConfigurationError,
    FieldType,
    SubmittersOrder,
    TemplateLoader,
    ValidationError,
)

TEMPLATES_DIR = PROJECT_ROOT / 'templates'

VALID_TEMPLATE = """
schema_version: "1.0"
slug: simple
name: Simple
submitters:
  - uuid: role-a
    name: Signer
fields:
  - uuid: f-sign
    submitter_uuid: role-a
    type: signature
"""


class TestTemplateLoader:
    """Test template loading and validation."""

    @pytest.fixture(autouse=True)
    def setup(self):
        TemplateLoader.clear()
        yield
        TemplateLoader.clear()

    def test_load_all_succeeds(self):
        """All YAML files should load without errors."""
        TemplateLoader.load_all(TEMPLATES_DIR)
        assert TemplateLoader.is_loaded()

    def test_all_slugs_are_unique(self):
        TemplateLoader.load_all(TEMPLATES_DIR)
        slugs = TemplateLoader.all_slugs()
        assert len(slugs) == len(set(slugs))
        assert {'candidate-onboarding', 'mutual-nda', 'volunteer-intake'} <= set(slugs)

    def test_get_or_raise_unknown(self):
        TemplateLoader.load_all(TEMPLATES_DIR)
        with pytest.raises(ValidationError):
            TemplateLoader.get_or_raise('does-not-exist')

    def test_duplicate_slug_reported(self, tmp_path):
        (tmp_path / 'a.yml').write_text(VALID_TEMPLATE)
        (tmp_path / 'b.yml').write_text(VALID_TEMPLATE)

        with pytest.raises(ConfigurationError) as exc_info:
            TemplateLoader.load_all(tmp_path)
        assert "Duplicate slug 'simple'" in str(exc_info.value)

    def test_all_errors_collected(self, tmp_path):
        (tmp_path / 'bad-yaml.yml').write_text("slug: [unclosed")
        (tmp_path / 'bad-role.yml').write_text(VALID_TEMPLATE.replace('submitter_uuid: role-a', 'submitter_uuid: ghost'))

        with pytest.raises(ConfigurationError) as exc_info:
            TemplateLoader.load_all(tmp_path)

        message = str(exc_info.value)
        assert 'bad-yaml.yml' in message
        assert 'bad-role.yml' in message

    def test_missing_directory_is_not_fatal(self, tmp_path):
        TemplateLoader.load_all(tmp_path / 'nowhere')
        assert TemplateLoader.all() == []


class TestTemplateDefinitions:
    """Test each shipped template individually."""

    @pytest.fixture(autouse=True)
    def load_templates(self):
        TemplateLoader.clear()
        TemplateLoader.load_all(TEMPLATES_DIR)
        yield
        TemplateLoader.clear()

    def test_candidate_onboarding_roles(self):
        template = TemplateLoader.get('candidate-onboarding')

        assert [r.order for r in template.submitters] == [1, 1, 2]
        assert template.expire_after_days == 14

    def test_candidate_onboarding_field_types(self):
        template = TemplateLoader.get('candidate-onboarding')
        types = {f.uuid: f.type for f in template.get_fields_for_role('role-candidate')}

        assert types['f-first-name'] == FieldType.CANDIDATE_FIRST_NAME
        assert types['f-ssn'] == FieldType.CANDIDATE_SSN

    def test_mutual_nda_has_predefined_role(self):
        template = TemplateLoader.get('mutual-nda')

        assert template.submitters_order == SubmittersOrder.PRESERVED
        assert [r.uuid for r in template.undefined_roles()] == ['role-counterparty']
        assert template.get_role('role-company').email == 'legal@example.com'

    def test_volunteer_intake_is_shared(self):
        template = TemplateLoader.get('volunteer-intake')
        assert template.shared_link is True
        assert len(template.submitters) == 1


class TestValidateYamlContent:
    """Test validation of unregistered YAML."""

    @pytest.fixture(autouse=True)
    def setup(self):
        TemplateLoader.clear()
        TemplateLoader.load_all(TEMPLATES_DIR)
        yield
        TemplateLoader.clear()

    def test_valid(self):
        assert TemplateLoader.validate_yaml_content(VALID_TEMPLATE) == []

    def test_schema_violation(self):
        errors = TemplateLoader.validate_yaml_content(VALID_TEMPLATE + "unexpected: true\n")
        assert len(errors) == 1
        assert 'Schema validation failed' in errors[0]

    def test_bad_role_order(self):
        content = VALID_TEMPLATE.replace('name: Signer', 'name: Signer\n    order: first')
        assert TemplateLoader.validate_yaml_content(content)

    def test_unknown_schema_version(self):
        errors = TemplateLoader.validate_yaml_content(VALID_TEMPLATE.replace('"1.0"', '"9.9"'))
        assert errors == ['Unknown schema version: 9.9']

    def test_empty(self):
        assert TemplateLoader.validate_yaml_content('') == ['Empty template definition']

    def test_syntax_error(self):
        errors = TemplateLoader.validate_yaml_content('slug: [unclosed')
        assert errors[0].startswith('YAML syntax error')


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
