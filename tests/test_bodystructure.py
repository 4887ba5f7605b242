"""Tests for docrelay.bodystructure."""

from __future__ import annotations

import pytest

from conftest import BODYSTRUCTURE_RESPONSE, DOCX_MIME
from docrelay.bodystructure import (
    BodyStructureError,
    flatten_fetch_response,
    parse_bodystructure,
    parse_fetch_response,
    tokenize,
)


class TestTokenize:
    def test_nested_lists_and_nil(self):
        assert tokenize('("a" NIL ("b" "c") 12)') == [["a", None, ["b", "c"], "12"]]

    def test_escaped_quotes(self):
        assert tokenize(r'("say \"hi\"")') == [['say "hi"']]

    def test_unbalanced_open(self):
        with pytest.raises(BodyStructureError):
            tokenize('(("a")')

    def test_unbalanced_close(self):
        with pytest.raises(BodyStructureError):
            tokenize('("a"))')


class TestFlatten:
    def test_literal_becomes_quoted_string(self):
        data = [(b'1 (UID 7 BODYSTRUCTURE ("application" "msword" ("name" {10}', b'otchet.doc'), b") NIL)"]
        flat = flatten_fetch_response(data)
        assert flat == b'1 (UID 7 BODYSTRUCTURE ("application" "msword" ("name" "otchet.doc") NIL)'

    def test_literal_with_quote_is_escaped(self):
        data = [(b"1 (X {5}", b'a"b\\c'), b")"]
        assert flatten_fetch_response(data) == b'1 (X "a\\"b\\\\c")'


class TestParseFetchResponse:
    def test_multipart_with_attachment(self):
        uid, root = parse_fetch_response(BODYSTRUCTURE_RESPONSE)
        assert uid == 101
        assert root.part_id == "TEXT"
        assert root.content_type == "multipart/mixed"
        assert root.params == {"boundary": "xyz"}
        assert [child.part_id for child in root.children] == ["1", "2"]

        text, attachment = root.children
        assert text.content_type == "text/plain"
        assert text.disposition is None
        assert attachment.content_type == f"application/{DOCX_MIME}"
        assert attachment.encoding == "base64"
        assert attachment.size == 4096
        assert attachment.disposition == "attachment"
        assert attachment.disposition_params == {"filename": "report.docx"}
        assert attachment.params == {"name": "report.docx"}

    def test_literal_filename(self):
        data = [
            (
                b'1 (UID 7 BODYSTRUCTURE (("text" "plain" NIL NIL NIL "7bit" 10 1 NIL NIL NIL NIL)'
                b'("application" "msword" ("name" {10}',
                b"otchet.doc",
            ),
            b') NIL NIL "base64" 100 NIL ("attachment" ("filename" "otchet.doc")) NIL NIL) "mixed" NIL NIL NIL))',
        ]
        uid, root = parse_fetch_response(data)
        assert uid == 7
        assert root.children[1].params == {"name": "otchet.doc"}
        assert root.children[1].disposition_params == {"filename": "otchet.doc"}

    def test_single_part_message(self):
        data = [b'1 (UID 9 BODYSTRUCTURE ("text" "plain" ("charset" "us-ascii") NIL NIL "7bit" 12 1 NIL NIL NIL NIL))']
        uid, root = parse_fetch_response(data)
        assert uid == 9
        assert root.part_id == "1"
        assert root.children == []

    def test_missing_bodystructure(self):
        with pytest.raises(BodyStructureError):
            parse_fetch_response([b"1 (UID 9 FLAGS (\\Seen))"])


class TestParseBodystructure:
    def test_nested_multipart_section_numbers(self):
        node = tokenize(
            '((("text" "plain" NIL NIL NIL "7bit" 1 1)("text" "html" NIL NIL NIL "7bit" 1 1) "alternative")'
            '("application" "rtf" ("name" "memo.rtf") NIL NIL "base64" 30 NIL ("attachment" NIL)) "mixed")'
        )[0]
        root = parse_bodystructure(node)
        assert [p.part_id for p in root.walk()] == ["TEXT", "1", "1.1", "1.2", "2"]
        assert root.children[0].subtype == "alternative"
        assert root.children[1].disposition == "attachment"
        assert root.children[1].disposition_params == {}

    def test_forwarded_message_parts(self):
        node = tokenize(
            '(("text" "plain" NIL NIL NIL "7bit" 1 1)'
            '("message" "rfc822" NIL NIL NIL "7bit" 500 NIL'
            ' (("text" "plain" NIL NIL NIL "7bit" 1 1)'
            '  ("application" "msword" ("name" "inner.doc") NIL NIL "base64" 40 NIL ("attachment" NIL)) "mixed")'
            " 10 NIL (\"attachment\" NIL)) \"mixed\")"
        )[0]
        root = parse_bodystructure(node)
        forwarded = root.children[1]
        assert forwarded.content_type == "message/rfc822"
        assert forwarded.disposition == "attachment"
        inner = forwarded.children[0]
        assert [p.part_id for p in inner.children] == ["2.1", "2.2"]
        assert inner.children[1].params == {"name": "inner.doc"}

    def test_too_few_fields(self):
        with pytest.raises(BodyStructureError):
            parse_bodystructure(["text", "plain"])
