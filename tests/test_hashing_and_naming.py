"""
Unit tests for content hashing and the document filename convention.
"""

import base64
import hashlib
import io

import pytest

from app.docledger.errors import ContentReadError, FormatError
from app.docledger.modules.documents.hashing import content_hash, hash_file, hash_stream, sha256_hex
from app.docledger.modules.documents.naming import (
    base_name,
    build_file_name,
    is_valid_owner_id,
    parse_file_name,
)


class TestContentHash:
    def test_is_base64_sha256(self):
        data = b"hello world"
        expected = base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")
        assert content_hash(data) == expected
        assert len(content_hash(data)) == 44

    def test_deterministic(self):
        assert content_hash(b"abc") == content_hash(b"abc")

    def test_single_byte_change_changes_hash(self):
        assert content_hash(b"abc") != content_hash(b"abd")

    def test_empty_content_hashes(self):
        assert content_hash(b"") == "47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU="

    def test_non_bytes_rejected(self):
        with pytest.raises(ContentReadError):
            content_hash("not bytes")  # type: ignore[arg-type]

    def test_stream_matches_bytes(self):
        data = b"x" * (3 * 1024 * 1024 + 7)
        assert hash_stream(io.BytesIO(data), expected_size=len(data)) == content_hash(data)

    def test_short_stream_is_unreadable(self):
        with pytest.raises(ContentReadError):
            hash_stream(io.BytesIO(b"abc"), expected_size=10)

    def test_hash_file(self, tmp_path):
        p = tmp_path / "doc.pdf"
        p.write_bytes(b"%PDF-1.4 test")
        assert hash_file(p) == content_hash(b"%PDF-1.4 test")

    def test_missing_file_is_unreadable(self, tmp_path):
        with pytest.raises(ContentReadError):
            hash_file(tmp_path / "missing.pdf")

    def test_hex_digest_for_addressing(self):
        assert sha256_hex(b"abc") == hashlib.sha256(b"abc").hexdigest()


class TestParseFileName:
    def test_basic(self):
        parsed = parse_file_name("AB1234_Transcript.pdf")
        assert parsed.owner_id == "AB1234"
        assert parsed.document_type == "Transcript"

    def test_spaces_and_hyphens_in_type(self):
        parsed = parse_file_name("XY0001_Degree Certificate-Final.png")
        assert parsed.document_type == "Degree Certificate-Final"

    def test_path_components_stripped(self):
        assert parse_file_name("batch/2024/AB1234_Transcript.pdf").owner_id == "AB1234"
        assert parse_file_name("C:\\docs\\AB1234_Transcript.pdf").owner_id == "AB1234"

    @pytest.mark.parametrize(
        "name",
        [
            "certificate.pdf",
            "ab1234_Transcript.pdf",
            "AB123_Transcript.pdf",
            "AB12345_Transcript.pdf",
            "AB1234_Transcript",
            "AB1234_Tran_script.pdf",
            "AB1234_Transcript2.pdf",
            "AB1234-Transcript.pdf",
            "AB1234_.pdf",
            "AB１２３４_Transcript.pdf",
            "",
        ],
    )
    def test_rejects(self, name):
        with pytest.raises(FormatError):
            parse_file_name(name)

    def test_format_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_file_name("nope.pdf")


class TestOwnerIdAndBuild:
    def test_owner_id_shape(self):
        assert is_valid_owner_id("DL0001")
        assert not is_valid_owner_id("dl0001")
        assert not is_valid_owner_id("")

    def test_build_then_parse(self):
        name = build_file_name("AB1234", "Marks Card", "pdf")
        assert name == "AB1234_Marks Card.pdf"
        parsed = parse_file_name(name)
        assert (parsed.owner_id, parsed.document_type) == ("AB1234", "Marks Card")

    def test_build_rejects_bad_parts(self):
        with pytest.raises(FormatError):
            build_file_name("AB1234", "Type_With_Underscore", "pdf")
        with pytest.raises(FormatError):
            build_file_name("AB1234", "Transcript", "p.df")

    def test_base_name(self):
        assert base_name("a/b\\c.pdf") == "c.pdf"
