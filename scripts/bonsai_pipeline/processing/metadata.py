"""
Metadata generation for the runtime sprite table.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Optional, Union

from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound

from ..errors import BuildError, FileSystemError
from .atlas import AtlasOutput

logger = logging.getLogger(__name__)

SPRITE_TABLE_TEMPLATE = "sprites.odin.j2"
SPRITE_TABLE_NAME = "sprites.odin"


def safe_name(name: str) -> str:
    """Turn a sprite key into a valid Odin identifier."""
    ident = re.sub(r'[^a-zA-Z0-9_]', '_', name)
    if not ident or ident[0].isdigit():
        ident = f"_{ident}"
    return ident


class MetadataGenerator:
    """Renders the atlas sprite table into source the game runtime compiles."""

    def __init__(self, template_dir: Optional[Union[str, Path]] = None):
        """
        Initialize metadata generator.

        Args:
            template_dir: Directory containing Jinja2 templates; the templates
                bundled with the package by default
        """
        if template_dir is None:
            template_dir = Path(__file__).parent.parent / "templates"

        self.template_dir = Path(template_dir)

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            autoescape=False
        )
        self._setup_template_filters()

    def _setup_template_filters(self) -> None:
        def uv(value: float) -> str:
            return f"{value:.6f}"

        def odin_bool(value: bool) -> str:
            return "true" if value else "false"

        self.env.filters['safe_name'] = safe_name
        self.env.filters['uv'] = uv
        self.env.filters['odin_bool'] = odin_bool

    def generate_sprite_table(self, output: AtlasOutput, package: str,
                              atlas_name: str = "atlas.png") -> str:
        """
        Render the sprite table for an atlas.

        Args:
            output: Packed atlas
            package: Odin package name for the generated file
            atlas_name: Atlas file name recorded in the header

        Returns:
            Generated source as string

        Raises:
            MetadataGenerationError: If two keys map to the same identifier or
                template processing fails
        """
        identifiers: Dict[str, str] = {}
        for key in output.sprites:
            ident = safe_name(key)
            if ident in identifiers or ident == "nil":
                raise MetadataGenerationError(
                    f"Sprite keys '{key}' and '{identifiers.get(ident, 'nil')}' "
                    f"both map to identifier '{ident}'"
                )
            identifiers[ident] = key

        template_vars = {
            'package': safe_name(package),
            'atlas_name': atlas_name,
            'width': output.width,
            'height': output.height,
            'sprites': list(output.sprites.values()),
        }

        try:
            template = self.env.get_template(SPRITE_TABLE_TEMPLATE)
            return template.render(**template_vars)
        except TemplateNotFound as e:
            raise MetadataGenerationError(f"Template not found: {e} in {self.template_dir}") from e
        except TemplateError as e:
            raise MetadataGenerationError(f"Template processing failed: {e}") from e

    def write_sprite_table(self, output: AtlasOutput, output_dir: Union[str, Path]) -> Path:
        """Render the sprite table next to the atlas and return its path."""
        output_dir = Path(output_dir)
        content = self.generate_sprite_table(output, package=output_dir.resolve().name)
        path = output_dir / SPRITE_TABLE_NAME
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise FileSystemError(f"Failed to write {path}: {e}", path) from e
        logger.debug(f"Wrote sprite table {path}")
        return path


class MetadataGenerationError(BuildError):
    """Exception raised when metadata generation fails."""
