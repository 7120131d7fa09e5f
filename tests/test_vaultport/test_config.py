"""Tests for vaultport.config."""

import textwrap

import pytest

from vaultport.config import (
    GENERIC_EXTENSIONS,
    LINKED_EXTENSIONS,
    ConversionFailurePolicy,
    ExportConfig,
    Layout,
    Mode,
    OutputFormat,
    TagPlacement,
    load_config,
)


class TestDefaults:
    def test_linked_defaults(self):
        config = ExportConfig()
        assert config.mode is Mode.LINKED
        assert config.output_format is OutputFormat.ENEX
        assert config.max_depth == 20
        assert config.note_extensions == LINKED_EXTENSIONS
        assert config.folder_layout is Layout.TAGS
        assert config.backup_subdir == "logseq/bak"

    def test_generic_defaults(self):
        config = ExportConfig(mode="generic")
        assert config.note_extensions == GENERIC_EXTENSIONS
        assert config.folder_layout is Layout.PATHS
        assert config.backup_subdir is None

    def test_explicit_layout_wins(self):
        assert ExportConfig(mode="generic", layout="tags").folder_layout is Layout.TAGS

    def test_extensions_normalised(self):
        assert ExportConfig(extensions=("MD", ".Org")).note_extensions == (".md", ".org")

    def test_invalid_depth(self):
        with pytest.raises(ValueError):
            ExportConfig(max_depth=0)

    def test_invalid_enum_value(self):
        with pytest.raises(ValueError):
            ExportConfig(output_format="pdf")


class TestLoading:
    def test_from_toml(self, tmp_path):
        path = tmp_path / "vaultport.toml"
        path.write_text(textwrap.dedent("""\
            [export]
            output_format = "folders"
            tag_placement = "every"
            max_depth = 7
            on_conversion_failure = "fallback"
            extensions = [".md"]
        """))
        config = ExportConfig.from_toml(path)
        assert config.output_format is OutputFormat.FOLDERS
        assert config.tag_placement is TagPlacement.EVERY
        assert config.max_depth == 7
        assert config.on_conversion_failure is ConversionFailurePolicy.FALLBACK
        assert config.note_extensions == (".md",)

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="colour"):
            ExportConfig.from_dict({"export": {"colour": "blue"}})

    def test_flat_dict(self):
        assert ExportConfig.from_dict({"mode": "generic"}).mode is Mode.GENERIC

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "vaultport.toml"
        path.write_text('[export]\nmax_depth = 7\npandoc_path = "pandoc"\n')
        config = load_config(
            path,
            environ={
                "VAULTPORT_MAX_DEPTH": "3",
                "VAULTPORT_PANDOC": "/opt/pandoc/bin/pandoc",
                "VAULTPORT_INCLUDE_BACKUPS": "no",
                "VAULTPORT_MODE": "",
            },
        )
        assert config.max_depth == 3
        assert config.pandoc_path == "/opt/pandoc/bin/pandoc"
        assert config.include_backups is False
        assert config.mode is Mode.LINKED

    def test_mode_change_keeps_extension_default_in_sync(self):
        config = load_config(environ={"VAULTPORT_MODE": "generic"})
        assert config.note_extensions == GENERIC_EXTENSIONS

    def test_invalid_environment_value(self):
        with pytest.raises(ValueError):
            load_config(environ={"VAULTPORT_MAX_DEPTH": "-1"})
