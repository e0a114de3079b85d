"""Tests for RequestTracer."""

import json
import re

from ollama_proxy.gateway.tracing import RequestTracer


class TestGenerateTraceId:
    def test_format(self):
        """Trace IDs carry a counter, time, message count and context."""
        tracer = RequestTracer()
        body = {"messages": [{"role": "user", "content": "Please write a parser"}]}

        trace_id = tracer.generate_trace_id(body)

        assert re.fullmatch(r"00001_\d{6}_1msgs_Please_write_a", trace_id)

    def test_counter_increments(self):
        tracer = RequestTracer()

        first = tracer.generate_trace_id({"messages": []})
        second = tracer.generate_trace_id({"messages": []})

        assert first.startswith("00001_")
        assert second.startswith("00002_")

    def test_context_from_last_user_text(self):
        """Tool-result-only user turns are skipped when picking the context."""
        tracer = RequestTracer()
        body = {
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": "Fix tests"}]},
                {"role": "assistant", "content": "ok"},
                {"role": "user", "content": [{"type": "tool_result", "content": "done"}]},
            ]
        }

        trace_id = tracer.generate_trace_id(body)

        assert trace_id.endswith("_3msgs_Fix_tests")

    def test_empty_and_odd_bodies(self):
        tracer = RequestTracer()

        assert tracer.generate_trace_id({"messages": []}).endswith("_0msgs_empty")
        assert tracer.generate_trace_id([1, 2]).endswith("_0msgs_empty")

    def test_context_is_filesystem_safe(self):
        tracer = RequestTracer()
        body = {"messages": [{"role": "user", "content": "what's/up? ok"}]}

        trace_id = tracer.generate_trace_id(body)

        assert "/" not in trace_id
        assert "?" not in trace_id


class TestSaveDebug:
    def test_no_debug_dir_is_noop(self, tmp_path):
        tracer = RequestTracer()

        tracer.save_debug("trace", "1_request.json", {"a": 1})

        assert tracer.debug_dir is None
        assert list(tmp_path.iterdir()) == []

    def test_writes_json(self, tmp_path):
        tracer = RequestTracer(debug_dir=tmp_path)

        tracer.save_debug("00001_trace", "1_request.json", {"a": 1})

        path = tracer.debug_dir / "00001_trace" / "1_request.json"
        assert json.loads(path.read_text()) == {"a": 1}
        assert tracer.debug_dir.parent == tmp_path / "logs"

    def test_write_failure_is_logged(self, tmp_path, caplog):
        """Unwritable debug dirs never break a request."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        tracer = RequestTracer(debug_dir=blocker)

        tracer.save_debug("trace", "1_request.json", {"a": 1})

        assert "Failed to save debug file" in caplog.text
