"""
Unit tests for configuration loading and application wiring.

Tests cover:
- Environment parsing and validation
- Store factory
- build_runner assembling schema, functions and store
"""

import io
import json
import logging
import os
import sys
import tempfile
import types

import pytest

from docbridge.config import DocBridgeConfig, ObservabilityConfig, StorageConfig, StoreBackend
from docbridge.functions import mutation, query
from docbridge.main import build_runner, setup_logging
from docbridge.schema import v
from docbridge.store import InMemoryDocumentStore, SqliteDocumentStore, create_store

SCHEMA_YAML = """
tables:
  notes:
    fields:
      text: string
      pinned: boolean?
"""


class TestDocBridgeConfig:
    """Tests for environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        for name in ("DOCBRIDGE_STORE", "DOCBRIDGE_SCHEMA", "DOCBRIDGE_FUNCTIONS", "LOG_FORMAT"):
            monkeypatch.delenv(name, raising=False)
        config = DocBridgeConfig.from_env()
        assert config.storage.backend == StoreBackend.MEMORY
        assert config.schema_path is None
        assert config.functions_module is None
        assert config.runner.function_timeout_s == 0.0

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DOCBRIDGE_STORE", "SQLite")
        monkeypatch.setenv("DOCBRIDGE_SQLITE_PATH", "/tmp/docbridge-test/db.sqlite")
        monkeypatch.setenv("DOCBRIDGE_FUNCTION_TIMEOUT_S", "2.5")
        monkeypatch.setenv("DOCBRIDGE_SLOW_CALL_MS", "50")
        monkeypatch.setenv("LOG_FORMAT", "json")
        config = DocBridgeConfig.from_env()
        assert config.storage.backend == StoreBackend.SQLITE
        assert config.storage.sqlite_path == "/tmp/docbridge-test/db.sqlite"
        assert config.runner.function_timeout_s == 2.5
        assert config.runner.slow_call_ms == 50
        assert config.observability.log_format == "json"

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("DOCBRIDGE_STORE", "postgres")
        with pytest.raises(ValueError, match="DOCBRIDGE_STORE"):
            DocBridgeConfig.from_env()

    def test_sqlite_requires_file(self):
        config = DocBridgeConfig(
            storage=StorageConfig(backend=StoreBackend.SQLITE, sqlite_path=":memory:")
        )
        with pytest.raises(ValueError, match="DOCBRIDGE_SQLITE_PATH"):
            config.validate()

    def test_invalid_log_format(self, monkeypatch):
        monkeypatch.delenv("DOCBRIDGE_STORE", raising=False)
        monkeypatch.setenv("LOG_FORMAT", "xml")
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            DocBridgeConfig.from_env()

    def test_create_store(self):
        assert isinstance(create_store(DocBridgeConfig()), InMemoryDocumentStore)
        with tempfile.TemporaryDirectory() as tmpdir:
            config = DocBridgeConfig(
                storage=StorageConfig(
                    backend=StoreBackend.SQLITE, sqlite_path=os.path.join(tmpdir, "db.sqlite")
                )
            )
            assert isinstance(create_store(config), SqliteDocumentStore)


@mutation(args={"text": v.string()})
async def add_note(ctx, args):
    return await ctx.db.insert("notes", {"text": args["text"]})


@query(name="notes:count")
async def count_notes(ctx, args):
    return len(await ctx.db.query("notes").collect())


class TestBuildRunner:
    """Tests for main.build_runner and setup_logging."""

    @pytest.fixture
    def schema_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "schema.yaml")
            with open(path, "w", encoding="utf-8") as f:
                f.write(SCHEMA_YAML)
            yield path

    @pytest.fixture
    def functions_module(self, monkeypatch):
        module = types.ModuleType("docbridge_test_functions")
        module.add_note = add_note
        module.count_notes = count_notes
        monkeypatch.setitem(sys.modules, module.__name__, module)
        return module.__name__

    def test_empty_schema_without_path(self):
        runner = build_runner(DocBridgeConfig())
        assert isinstance(runner.store, InMemoryDocumentStore)
        assert runner.registry.fingerprint.startswith("sha256:")

    @pytest.mark.asyncio
    async def test_serves_module_functions(self, schema_path, functions_module):
        runner = build_runner(
            DocBridgeConfig(schema_path=schema_path, functions_module=functions_module)
        )
        await runner.store.connect()
        try:
            note_id = await runner.run_mutation("add_note", {"text": "hello"})
            assert note_id.startswith("notes:")
            assert await runner.run_query("notes:count") == 1
        finally:
            await runner.store.close()

    def test_setup_logging_json(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(
                DocBridgeConfig(observability=ObservabilityConfig(log_level="debug", log_format="json"))
            )
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            stream = io.StringIO()
            root.handlers[0].setStream(stream)
            logging.getLogger("docbridge.test").info(
                'Loaded schema from "C:\\data"', extra={"table": "users"}
            )
            record = json.loads(stream.getvalue().splitlines()[-1])
            assert record["message"] == 'Loaded schema from "C:\\data"'
            assert record["table"] == "users"
            assert "time" in record
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)
