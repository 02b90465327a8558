"""
Schema descriptor feed loader.

Reads the feed (YAML or JSON), validates it against
sqldeploy/schemas/descriptor_feed.v1.json and builds a DescriptorFeed.
Schema conformance is checked before anything else (fail fast).
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import jsonschema
import yaml

from sqldeploy.core.errors import DescriptorFeedError
from sqldeploy.domain.models.descriptors import DescriptorFeed

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent.parent.parent / "schemas" / "descriptor_feed.v1.json"


class DescriptorFeedLoader:
    """Loads and validates the schema descriptor feed."""

    def __init__(self, schema_path: Optional[Path] = None):
        self.schema_path = schema_path or SCHEMA_PATH
        self._schema: Optional[dict] = None

    def load(self, path: Union[str, Path]) -> DescriptorFeed:
        """
        Load a feed file.

        Args:
            path: .yaml/.yml or .json file

        Returns:
            DescriptorFeed

        Raises:
            DescriptorFeedError: file missing, unparseable, or not schema-valid
        """
        path = Path(path)
        if not path.exists():
            raise DescriptorFeedError(f"Descriptor feed not found: {path}")

        try:
            with open(path, "r", encoding="utf-8-sig") as f:
                if path.suffix.lower() == ".json":
                    raw = json.load(f)
                else:
                    raw = yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise DescriptorFeedError(f"Descriptor feed is not valid {path.suffix.lstrip('.').upper()}: {e}")

        feed = self.parse(raw)
        logger.info(
            f"Loaded descriptor feed {path} (version {feed.source_descriptor_version}: "
            f"{len(feed.tables)} tables, {len(feed.column_changes)} column changes)"
        )
        return feed

    def parse(self, raw: Any) -> DescriptorFeed:
        """Validate an already-decoded feed document and build the model."""
        if not isinstance(raw, dict):
            raise DescriptorFeedError("Descriptor feed must be a mapping at the top level")

        try:
            jsonschema.validate(raw, self._load_schema())
        except jsonschema.ValidationError as e:
            where = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "<root>"
            raise DescriptorFeedError(f"Descriptor feed failed schema validation at {where}: {e.message}")

        return DescriptorFeed.from_dict(raw)

    def _load_schema(self) -> Dict[str, Any]:
        """Load and cache JSON schema."""
        if self._schema is None:
            with open(self.schema_path, "r", encoding="utf-8-sig") as f:
                self._schema = json.load(f)
        return self._schema
