"""vaultport: export interlinked outline notes to Evernote or a folder tree."""

__version__ = "0.1.0"

from vaultport.config import ExportConfig, load_config
from vaultport.enex import assemble
from vaultport.export import Exporter, export_corpus
from vaultport.index import CorpusIndex, index_corpus
from vaultport.note import Block, Page, ResolvedNote, Resource
from vaultport.parser import extract_tags, tag_to_path
from vaultport.resolver import resolve
from vaultport.assets import resolve_assets

__all__ = [
    "__version__",
    "Block",
    "CorpusIndex",
    "ExportConfig",
    "Exporter",
    "Page",
    "ResolvedNote",
    "Resource",
    "assemble",
    "export_corpus",
    "extract_tags",
    "index_corpus",
    "load_config",
    "resolve",
    "resolve_assets",
    "tag_to_path",
]
