"""Unit tests for the kbindex command-line interface."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from kbindex.cli.main import _build_parser, main
from kbindex.config.settings import Settings


@pytest.fixture
def cli_env(monkeypatch, project_root):
    """Pin the environment so the commands run in-process and without retries delays."""
    monkeypatch.chdir(project_root)
    for name in ("NER_ENABLED", "EMBEDDING_PROVIDER", "EMBEDDING_MODEL", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("EMBEDDING_WORKER_POOL_ENABLED", "false")
    monkeypatch.setenv("JOB_RETRY_BACKOFF", "0")
    return monkeypatch


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestParser:
    def test_yaml_sections_seed_defaults(self) -> None:
        file_config = {
            "chunking": {"strategy": "sentence", "chunk_size": 600, "chunk_overlap": 60, "enable_parent_child": True},
            "ner": {"method": "pattern_model"},
        }
        parser = _build_parser(Settings(_env_file=None), file_config)

        split_args = parser.parse_args(["split", "--file", "a.txt"])
        index_args = parser.parse_args(["index", "--file", "a.txt"])

        assert (split_args.strategy, split_args.chunk_size, split_args.chunk_overlap) == ("sentence", 600, 60)
        assert index_args.parent_child is True
        assert index_args.ner_method == "pattern_model"

    def test_flags_override_file_values(self) -> None:
        parser = _build_parser(Settings(_env_file=None), {"chunking": {"chunk_size": 600}})
        args = parser.parse_args(["split", "--file", "a.txt", "--chunk-size", "300"])
        assert args.chunk_size == 300

    def test_builtin_defaults_without_file_config(self) -> None:
        args = _build_parser(Settings(_env_file=None)).parse_args(["index", "--file", "a.txt"])
        assert (args.strategy, args.chunk_size, args.chunk_overlap) == ("recursive_character", 1000, 200)
        assert args.ner is None
        assert args.config == "config/config.yaml"


class TestCommands:
    def test_no_command_prints_help(self, cli_env, capsys) -> None:
        assert _run([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_models_lists_mapping(self, cli_env, capsys) -> None:
        assert _run(["models", "--provider", "ollama"]) == 0
        out = capsys.readouterr().out
        assert "provider 'ollama'" in out
        assert "bge-m3" in out

    def test_split_prints_chunks(self, cli_env, capsys, tmp_path, sample_english_text) -> None:
        path = tmp_path / "notes.txt"
        path.write_text(sample_english_text, encoding="utf-8")

        code = _run(["split", "--file", str(path), "--strategy", "sentence", "--chunk-size", "200", "--chunk-overlap", "20"])

        out = capsys.readouterr().out
        assert code == 0
        assert "--- chunk 1 (" in out
        assert out.rstrip().endswith("chunks")

    def test_broken_config_file_exits_2(self, cli_env, capsys, tmp_path) -> None:
        broken = tmp_path / "broken.yaml"
        broken.write_text("chunking: [unclosed\n", encoding="utf-8")

        assert _run(["--config", str(broken), "models"]) == 2
        assert "Cannot parse" in capsys.readouterr().err

    def test_index_runs_pipeline_to_completion(
        self, cli_env, capsys, tmp_path, fake_provider, sample_english_text
    ) -> None:
        path = tmp_path / "notes.txt"
        path.write_text(sample_english_text, encoding="utf-8")

        with patch("kbindex.cli.main.build_embedding_provider", return_value=fake_provider):
            code = _run(
                ["index", "--file", str(path), "--db", ":memory:", "--chunk-size", "200", "--chunk-overlap", "20"]
            )

        out = capsys.readouterr().out
        assert code == 0
        assert "Status:      completed" in out
        assert "Dimensions:  8" in out
        assert fake_provider.calls

    def test_index_rejects_invalid_chunk_size(self, cli_env, capsys, tmp_path, fake_provider) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("short", encoding="utf-8")

        with patch("kbindex.cli.main.build_embedding_provider", return_value=fake_provider):
            code = _run(["index", "--file", str(path), "--db", ":memory:", "--chunk-size", "50", "--chunk-overlap", "0"])

        assert code == 2
        assert "Invalid indexing configuration" in capsys.readouterr().err
        assert fake_provider.calls == []

    def test_status_of_unknown_document(self, cli_env, capsys) -> None:
        assert _run(["status", "--document-id", "nope", "--db", ":memory:"]) == 1
        assert "not found" in capsys.readouterr().err
