"""
YAML persistence for the `nx-sync` config file.
"""

from pathlib import Path
from typing import Self

import yaml
from pydantic import BaseModel

__all__ = [
    "BaseYamlModel",
]


class BaseYamlModel(BaseModel):
    """
    Pydantic model stored as a hand-edited .yaml document; fields the user
    never wrote stay out of the file so it only holds their overrides.
    """

    @classmethod
    def load_yaml(cls, file: Path) -> Self:
        """
        Validate the document in `file`. An empty document yields the
        defaults, e.g. a config file the user has just cleared.
        """
        assert file.is_file()

        with file.open() as fh:
            document = yaml.safe_load(fh)

        if document is None:
            document = {}

        if not isinstance(document, dict):
            raise ValueError(f"Expected a mapping at top level, got: {document}")

        return cls(**document)

    def dump_yaml(self, file: Path):
        """
        Write only explicitly set fields, in declaration order.
        """
        document = self.model_dump(
            mode="json", by_alias=True, exclude_unset=True
        )
        file.write_text(
            yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
        )
