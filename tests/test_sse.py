"""
Tests for SSE framing and incremental decoding.
"""

from docqa.utils.sse import SSEDecoder, encode_sse


class TestEncode:
    def test_single_data_line_and_blank_line(self):
        assert encode_sse({"type": "text", "delta": "hi"}) == b'data: {"type":"text","delta":"hi"}\n\n'

    def test_non_ascii_kept_as_utf8(self):
        frame = encode_sse({"delta": "café"})
        assert frame.decode("utf-8") == 'data: {"delta":"café"}\n\n'


class TestDecoder:
    """Reassembly across chunk boundaries and skipping bad records."""

    def test_record_split_across_chunks(self):
        decoder = SSEDecoder()

        assert decoder.feed(b'data: {"type":"te') == []
        records = decoder.feed(b'xt","delta":"a"}\n\ndata: {"type":"error","error":"x"}\n\n')

        assert records == [{"type": "text", "delta": "a"}, {"type": "error", "error": "x"}]

    def test_multibyte_character_split(self):
        decoder = SSEDecoder()
        frame = encode_sse({"delta": "é"})
        cut = frame.index("é".encode("utf-8")) + 1

        assert decoder.feed(frame[:cut]) == []
        assert decoder.feed(frame[cut:]) == [{"delta": "é"}]

    def test_crlf_line_endings(self):
        records = SSEDecoder().feed(b'data: {"type":"text","delta":"a"}\r\n\r\n')
        assert records == [{"type": "text", "delta": "a"}]

    def test_round_trip_of_encoded_frames(self):
        payloads = [{"type": "text", "delta": "one"}, {"type": "sources", "sources": []}]
        stream = b"".join(encode_sse(p) for p in payloads)
        assert SSEDecoder().feed(stream) == payloads

    def test_malformed_record_skipped(self):
        decoder = SSEDecoder()
        records = decoder.feed(b"data: {not json}\n\ndata: {\"ok\":true}\n\n")

        assert records == [{"ok": True}]
        assert decoder.skipped == 1

    def test_non_object_payload_skipped(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: [1, 2]\n\n") == []
        assert decoder.skipped == 1

    def test_comments_and_event_lines_ignored(self):
        decoder = SSEDecoder()
        assert decoder.feed(b": keep-alive\n\nevent: ping\n\n") == []
        assert decoder.skipped == 0

    def test_incomplete_tail_is_held(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"a":1}\n') == []
        assert decoder.feed(b"\n") == [{"a": 1}]
