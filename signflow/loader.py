"""
Template Loader

Loads, validates, and caches signing template definitions from YAML files.
Validates all templates on startup and fails fast if any are invalid.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import jsonschema
import yaml

from .config import Config
from .exceptions import ConfigurationError, ValidationError
from .types import TemplateDefinition

logger = logging.getLogger(__name__)


class TemplateLoader:
    """
    Singleton loader for template definitions.

    Loads all YAML files from the templates directory, validates them
    against the JSON schema and the referential checks of
    TemplateDefinition, and caches them for lookup by slug.

    Usage:
        # On startup
        TemplateLoader.load_all()

        # When creating a submission
        template = TemplateLoader.get_or_raise('candidate-onboarding')
    """

    _definitions: Dict[str, TemplateDefinition] = {}
    _schemas: Dict[str, dict] = {}
    _validated: bool = False

    @classmethod
    def load_all(cls, templates_dir: Path = None) -> None:
        """
        Load and validate all template definitions.

        If any template fails validation, raises ConfigurationError
        with all errors listed.
        """
        templates_dir = Path(templates_dir or Config.TEMPLATES_DIR)
        cls._definitions.clear()
        errors = []

        cls._load_schemas(templates_dir / 'schema')

        if not templates_dir.exists():
            logger.warning(f"Templates directory not found: {templates_dir}")
            return

        yaml_files = sorted(templates_dir.glob('*.yml')) + sorted(templates_dir.glob('*.yaml'))

        if not yaml_files:
            logger.warning(f"No template definitions found in {templates_dir}")
            return

        for yaml_file in yaml_files:
            try:
                definition = cls._load_and_validate(yaml_file)

                if definition.slug in cls._definitions:
                    errors.append(
                        f"{yaml_file.name}: Duplicate slug '{definition.slug}' "
                        f"(already defined in another file)"
                    )
                    continue

                cls._definitions[definition.slug] = definition
                logger.debug(f"Loaded template definition: {definition.slug}")

            except (ValidationError, yaml.YAMLError) as e:
                errors.append(f"{yaml_file.name}: {e}")

        if errors:
            error_msg = "Template configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            logger.error(error_msg)
            raise ConfigurationError(error_msg)

        cls._validated = True
        logger.info(f"Loaded {len(cls._definitions)} template definition(s)")

    @classmethod
    def _load_schemas(cls, schema_dir: Path) -> None:
        """Load JSON schemas for validation."""
        cls._schemas.clear()

        if not schema_dir.exists():
            logger.warning(f"Schema directory not found: {schema_dir}")
            return

        for schema_file in schema_dir.glob('v*.json'):
            try:
                cls._schemas[schema_file.stem] = json.loads(schema_file.read_text())
                logger.debug(f"Loaded schema: {schema_file.stem}")
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"Failed to load schema {schema_file}: {e}")

    @classmethod
    def _get_schema(cls, version: str) -> dict:
        """Get schema for a specific version."""
        schema_key = f"v{version}"
        if schema_key not in cls._schemas:
            raise ValidationError(f"Unknown schema version: {version}")
        return cls._schemas[schema_key]

    @classmethod
    def _load_and_validate(cls, path: Path) -> TemplateDefinition:
        """Load a YAML file and validate it."""
        raw = yaml.safe_load(path.read_text())

        if not raw:
            raise ValidationError("Empty template definition")

        return cls.parse(raw)

    @classmethod
    def parse(cls, raw: dict) -> TemplateDefinition:
        """
        Validate a raw template dict and convert it to a TemplateDefinition.

        Schema validation runs when schemas are loaded; referential
        integrity is always checked.
        """
        if not isinstance(raw, dict):
            raise ValidationError("Template definition must be a mapping")

        if cls._schemas:
            schema_version = str(raw.get('schema_version', '1.0'))
            try:
                jsonschema.validate(raw, cls._get_schema(schema_version))
            except jsonschema.ValidationError as e:
                raise ValidationError(f"Schema validation failed: {e.message}", template_slug=raw.get('slug'))

        return TemplateDefinition.from_dict(raw)

    @classmethod
    def get(cls, slug: str) -> Optional[TemplateDefinition]:
        """
        Get a template definition by slug.

        Returns None if not found.
        """
        return cls._definitions.get(slug)

    @classmethod
    def get_or_raise(cls, slug: str) -> TemplateDefinition:
        """Get a template definition by slug, raising if not found."""
        definition = cls.get(slug)
        if not definition:
            raise ValidationError(f"Unknown template slug: {slug}", template_slug=slug)
        return definition

    @classmethod
    def all(cls) -> List[TemplateDefinition]:
        """Get all loaded template definitions."""
        return list(cls._definitions.values())

    @classmethod
    def all_slugs(cls) -> List[str]:
        """Get all loaded template slugs."""
        return list(cls._definitions.keys())

    @classmethod
    def is_loaded(cls) -> bool:
        """Check if templates have been loaded and validated."""
        return cls._validated

    @classmethod
    def clear(cls) -> None:
        """Clear all cached definitions. Mainly for testing."""
        cls._definitions.clear()
        cls._schemas.clear()
        cls._validated = False

    @classmethod
    def validate_yaml_content(cls, yaml_content: str) -> List[str]:
        """
        Validate YAML content without registering it.

        Returns:
            List of validation error messages (empty if valid)
        """
        try:
            raw = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            return [f"YAML syntax error: {e}"]

        if not raw:
            return ["Empty template definition"]

        try:
            cls.parse(raw)
        except ValidationError as e:
            return [str(e)]

        return []
