"""Tests for the context document reader and the system context prompt."""

import json

from agent.prompts.context_prompt import NO_DATA, PREAMBLE, build_system_context, top_tickers, truncate
from storage import context_docs
from tests.fixtures.fakes import write_docs

SAMPLE = """=== DOC dataroma/00001 ===
Investor: Some Fund
date_utc: 2024-05-01
---
Bought AAPL, sold MSFT.

=== DOC dataroma/00002 part 1/2 ===
title: no body here
"""


class TestParse:
    def test_headers_and_body(self) -> None:
        docs = context_docs.parse(SAMPLE)
        assert [d.doc_id for d in docs] == ["dataroma/00001", "dataroma/00002 part 1/2"]
        assert docs[0].headers == {"investor": "Some Fund", "date_utc": "2024-05-01"}
        assert docs[0].body == "Bought AAPL, sold MSFT."
        assert docs[1].headers == {"title": "no body here"}
        assert docs[1].body == ""

    def test_crlf_and_empty_input(self) -> None:
        assert context_docs.parse("") == []
        assert context_docs.parse("no markers at all") == []
        docs = context_docs.parse(SAMPLE.replace("\n", "\r\n"))
        assert docs[0].body == "Bought AAPL, sold MSFT."

    def test_render(self) -> None:
        doc = context_docs.parse(SAMPLE)[0]
        assert context_docs.render(doc) == (
            "[dataroma/00001]\ninvestor: Some Fund\ndate_utc: 2024-05-01\nBought AAPL, sold MSFT."
        )


class TestLoadUnseen:
    def test_missing_file_is_empty(self, tmp_path) -> None:
        assert context_docs.load(tmp_path / "absent.txt") == []
        assert context_docs.load_unseen(tmp_path / "absent.txt", set(), 10) == []

    def test_skips_seen_and_caps(self, tmp_path) -> None:
        path = tmp_path / "vic_context.txt"
        write_docs(path, [(f"vic/{i}", {"title": f"idea {i}"}, "") for i in range(5)])

        unseen = context_docs.load_unseen(path, {"vic/0", "vic/2"}, max_docs=2)
        assert [d.doc_id for d in unseen] == ["vic/1", "vic/3"]


class TestSystemContext:
    def test_all_sections_present_without_data(self, settings) -> None:
        context = build_system_context(settings)
        assert context.startswith(PREAMBLE)
        for title in ("IMPORTANT TICKERS", "FINANCIAL OVERVIEW", "DATAROMA INVESTOR MOVES", "VIC IDEAS", "FOXLAND CONTEXT"):
            assert f"=== {title} ===" in context
        assert context.count(NO_DATA) == 5

    def test_sections_render_data(self, tmp_path, settings) -> None:
        (tmp_path / "important_tickers.json").write_text(
            json.dumps([{"ticker": "AAPL", "score": 12.5}, {"ticker": "MSFT", "score": 3}])
        )
        (tmp_path / "financial_overview.jsonl").write_text(
            json.dumps({"ticker": "AAPL", "pe": 28.1, "sector": "Tech"}) + "\nnot json\n"
        )
        write_docs(tmp_path / "dataroma_context.txt", [("dataroma/1", {"investor": "Fund"}, "Bought AAPL")])

        context = build_system_context(settings)
        assert "AAPL" in context and "12.5" in context
        assert "[AAPL]\n  pe: 28.1\n  sector: Tech" in context
        assert "[dataroma/1]\ninvestor: Fund\nBought AAPL" in context

    def test_truncate(self) -> None:
        text = "x" * 100
        assert truncate(text, 200) == text
        cut = truncate(text, 50)
        assert len(cut) == 50
        assert cut.endswith("[... truncated ...]")

    def test_top_tickers(self, tmp_path) -> None:
        path = tmp_path / "important_tickers.json"
        path.write_text(json.dumps([{"ticker": t} for t in ["A", "B", "C", "D", "E", "F"]] + [{"score": 1}]))
        assert top_tickers(str(path), 5) == ["A", "B", "C", "D", "E"]
        assert top_tickers(str(tmp_path / "missing.json")) == []
