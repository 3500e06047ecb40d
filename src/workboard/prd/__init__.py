"""Work document models and parser exports."""

from .models import PRDDocument, PRDFrontmatter
from .parser import PRDParseError, load_prd, parse_criteria, parse_frontmatter, parse_prd

__all__ = [
    "PRDDocument",
    "PRDFrontmatter",
    "PRDParseError",
    "load_prd",
    "parse_criteria",
    "parse_frontmatter",
    "parse_prd",
]
