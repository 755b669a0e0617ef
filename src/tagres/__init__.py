"""tagres - taglib discovery and tag resolution for template compilers."""

from tagres.cache import DirectoryDiscovery, DiscoveryCache
from tagres.config import TagresSettings, resolve_settings
from tagres.errors import ConfigError, ResolutionError, TagresError, ValidationError
from tagres.loader import TaglibLoader
from tagres.nested import NestedTagResolver
from tagres.occurrence import AttributeUsage, SourceLocation, TagOccurrence
from tagres.registry import TagRegistry, merge_taglibs
from tagres.scanner import DirectoryScanner
from tagres.spec import (
    RENDER_BODY,
    WILDCARD,
    AttributeSchema,
    Cardinality,
    DiscoveryRank,
    NestedRef,
    NestedTagDeclaration,
    Provenance,
    RendererRef,
    TagDefinition,
    Taglib,
    TemplateRef,
)
from tagres.validator import AttributeValidator, BoundAttributes
from tagres.walker import TaglibDiscoveryWalker

__version__ = "0.1.0"

__all__ = [
    "AttributeSchema",
    "AttributeUsage",
    "AttributeValidator",
    "BoundAttributes",
    "Cardinality",
    "ConfigError",
    "DirectoryDiscovery",
    "DirectoryScanner",
    "DiscoveryCache",
    "DiscoveryRank",
    "NestedRef",
    "NestedTagDeclaration",
    "NestedTagResolver",
    "Provenance",
    "RENDER_BODY",
    "RendererRef",
    "ResolutionError",
    "SourceLocation",
    "TagDefinition",
    "TagOccurrence",
    "TagRegistry",
    "Taglib",
    "TaglibDiscoveryWalker",
    "TaglibLoader",
    "TagresError",
    "TagresSettings",
    "TemplateRef",
    "ValidationError",
    "WILDCARD",
    "merge_taglibs",
    "resolve_settings",
]
