"""
Tests for the memvault MCP server.

Covers tool definitions, the call_tool dispatcher, per-tool handlers and
error handling.
"""

import json

import pytest
from mcp.types import TextContent, Tool

from memvault.backup import build_export_package, dumps_package
from memvault.chunking import get_model_context_limit
from memvault.config import DEFAULT_MODEL
from memvault.mcp import server
from memvault.mcp.server import TOOLS, call_tool, handle_tool_error, list_tools, validate_tool_input


async def call(name, arguments):
    result = await call_tool(name, arguments)
    assert len(result) == 1
    assert isinstance(result[0], TextContent)
    return result[0].text


class TestToolDefinitions:
    """Tool registry and schemas."""

    @pytest.mark.asyncio
    async def test_list_tools_returns_all_tools(self):
        tools = await list_tools()
        assert all(isinstance(tool, Tool) for tool in tools)
        assert {tool.name for tool in tools} == {
            "memory_similarity",
            "memory_find_similar",
            "memory_quality_score",
            "document_chunk",
            "backup_validate",
        }

    def test_tool_definitions_have_required_fields(self):
        for tool in TOOLS:
            assert tool.name
            assert tool.description
            assert tool.inputSchema["type"] == "object"
            assert "properties" in tool.inputSchema

    def test_every_tool_has_handler_and_validator(self):
        from memvault.mcp.handlers import HANDLERS, VALIDATORS

        names = {tool.name for tool in TOOLS}
        assert set(HANDLERS) == names
        assert set(VALIDATORS) == names


class TestValidateToolInput:
    def test_fills_defaults(self):
        args = validate_tool_input("memory_similarity", {"text_a": "a", "text_b": "b"})
        assert args["method"] == "combined"

    def test_unknown_tool(self):
        with pytest.raises(ValueError, match="Unknown tool"):
            validate_tool_input("memory_delete", {})

    def test_arguments_must_be_object(self):
        with pytest.raises(ValueError, match="arguments must be an object"):
            validate_tool_input("memory_similarity", ["a", "b"])

    def test_schema_violation_names_field(self):
        with pytest.raises(ValueError, match="threshold"):
            validate_tool_input(
                "memory_find_similar", {"content": "x", "records": [], "threshold": 2}
            )


class TestMemoryTools:
    """memory_similarity, memory_find_similar, memory_quality_score."""

    @pytest.mark.asyncio
    async def test_similarity(self):
        text = await call("memory_similarity", {"text_a": "same words", "text_b": "same words"})
        assert json.loads(text) == {"method": "combined", "similarity": 1.0}

    @pytest.mark.asyncio
    async def test_similarity_method(self):
        text = await call(
            "memory_similarity", {"text_a": "a b", "text_b": "a c", "method": "jaccard"}
        )
        assert json.loads(text) == {"method": "jaccard", "similarity": 0.3333}

    @pytest.mark.asyncio
    async def test_find_similar(self, sample_memories):
        text = await call(
            "memory_find_similar",
            {"content": "I love drinking coffee in the morning", "records": sample_memories},
        )
        matches = json.loads(text)
        assert matches[0]["memoryId"] == "mem-1"
        assert matches[0]["similarity"] == 1.0
        assert matches[0]["reason"] == "near-duplicate"
        assert matches[0]["content"] == "I love drinking coffee in the morning"

    @pytest.mark.asyncio
    async def test_find_similar_category_filter(self, sample_memories):
        text = await call(
            "memory_find_similar",
            {
                "content": "I love drinking coffee in the morning",
                "category": "GOAL",
                "records": sample_memories,
            },
        )
        assert text == "No similar memories found."

    @pytest.mark.asyncio
    async def test_find_similar_blank_content(self):
        text = await call("memory_find_similar", {"content": "   ", "records": []})
        assert text.startswith("Invalid input:")

    @pytest.mark.asyncio
    async def test_quality_score(self):
        text = await call("memory_quality_score", {"confidence": 1, "evidence_strength": 1})
        assert json.loads(text) == {"quality_score": 0.85}

        text = await call(
            "memory_quality_score",
            {"confidence": 1, "evidence_strength": 1, "generalization": 1, "consistency": 1},
        )
        assert json.loads(text) == {"quality_score": 1.0}

    @pytest.mark.asyncio
    async def test_quality_score_out_of_range(self):
        text = await call("memory_quality_score", {"confidence": 1.5, "evidence_strength": 0.5})
        assert text.startswith("Invalid input: Schema validation failed at confidence")


class TestDocumentTools:
    """document_chunk and backup_validate."""

    @pytest.mark.asyncio
    async def test_chunk_default_model(self, data_dir, monkeypatch):
        monkeypatch.delenv("MEMVAULT_MODEL", raising=False)
        payload = json.loads(await call("document_chunk", {"text": "Hello there."}))
        assert payload["budget"] == get_model_context_limit(DEFAULT_MODEL)
        assert payload["chunk_count"] == 1
        assert payload["chunks"][0] == {
            "index": 0,
            "start": 0,
            "end": 12,
            "length": 12,
            "preview": "Hello there.",
        }

    @pytest.mark.asyncio
    async def test_chunk_explicit_budget_with_text(self):
        text = "word " * 100
        payload = json.loads(
            await call("document_chunk", {"text": text, "max_chunk_size": 100, "include_text": True})
        )
        assert payload["budget"] == 100
        assert payload["chunk_count"] > 1
        assert payload["chunks"][-1]["end"] == len(text)
        assert all("text" in chunk for chunk in payload["chunks"])

    @pytest.mark.asyncio
    async def test_chunk_rejects_negative_overlap(self):
        text = await call("document_chunk", {"text": "x", "overlap": -1})
        assert text.startswith("Invalid input:")

    @pytest.mark.asyncio
    async def test_backup_validate_object(self, sample_dataset):
        package = build_export_package(sample_dataset)
        payload = json.loads(await call("backup_validate", {"package": package}))
        assert payload["valid"] is True
        assert payload["errors"] == []
        assert payload["itemCounts"]["memories"] == 4

    @pytest.mark.asyncio
    async def test_backup_validate_string(self, sample_dataset):
        package = build_export_package(sample_dataset)
        package["data"]["memories"][0]["layer"] = 9
        payload = json.loads(await call("backup_validate", {"package": dumps_package(package)}))
        assert payload["valid"] is False
        assert payload["errors"][0]["field"] == "data.memories[0].layer"

    @pytest.mark.asyncio
    async def test_backup_validate_bad_json(self):
        text = await call("backup_validate", {"package": "{nope"})
        assert text.startswith("Invalid input: package is not valid JSON")


class TestErrorHandling:
    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        text = await call("memory_delete", {})
        assert text == "Invalid input: Unknown tool: memory_delete"

    @pytest.mark.asyncio
    async def test_missing_required_argument(self):
        text = await call("memory_similarity", {"text_a": "only one"})
        assert text.startswith("Invalid input: Schema validation failed")
        assert "text_b" in text

    @pytest.mark.asyncio
    async def test_internal_error_is_generic(self, monkeypatch):
        def boom(args):
            raise RuntimeError("secret details")

        monkeypatch.setitem(server.HANDLERS, "memory_similarity", boom)
        text = await call("memory_similarity", {"text_a": "a", "text_b": "b"})
        assert text == "Internal server error"

    def test_handle_tool_error_value_error(self):
        result = handle_tool_error(ValueError("bad"), "memory_similarity", {})
        assert result[0].text == "Invalid input: bad"
