"""Request tracing for the proxy server.

Provides human-readable trace IDs and optional debug dumps of the
requests and responses flowing through the proxy.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class RequestTracer:
    """Generates trace IDs and saves debug data for proxied requests.

    Debug files are saved to: {debug_dir}/logs/{session_id}/{trace_id}/

    Example:
        tracer = RequestTracer(debug_dir="/tmp/ollama-proxy-debug")
        trace_id = tracer.generate_trace_id(body)
        tracer.save_debug(trace_id, "1_request.json", body)
    """

    def __init__(self, debug_dir: str | Path | None = None):
        self._request_counter = 0
        self._session_id: str | None = None
        self._debug_dir_config = debug_dir

    @property
    def debug_dir(self) -> Path | None:
        """Get the debug directory path, creating the session folder name on first access."""
        if not self._debug_dir_config:
            return None

        if self._session_id is None:
            self._session_id = time.strftime("%Y-%m-%d_%H-%M-%S")

        return Path(self._debug_dir_config) / "logs" / self._session_id

    def generate_trace_id(self, body: Any) -> str:
        """Generate a human-readable trace ID with sequence number and context.

        Format: {counter}_{hhmmss}_{num_messages}msgs_{context}
        Example: 00001_031333_1msgs_Please_write_a
        """
        self._request_counter += 1
        timestamp = time.strftime("%H%M%S")

        msgs = body.get("messages") if isinstance(body, dict) else None
        if not isinstance(msgs, list):
            msgs = []

        # Last user message with actual text (skips tool results)
        context = "empty"
        for m in reversed(msgs):
            if not isinstance(m, dict) or m.get("role") != "user":
                continue
            text = _first_text(m.get("content"))
            if text:
                words = text.split()[:3]
                context = "_".join(w[:8] for w in words if w and not w.startswith("<"))[:20]
                break

        # Clean context for filesystem
        context = "".join(c if c.isalnum() or c == "_" else "" for c in context) or "request"

        return f"{self._request_counter:05d}_{timestamp}_{len(msgs)}msgs_{context}"

    def save_debug(self, trace_id: str, filename: str, data: Any) -> None:
        """Save debug data to a JSON file if debug_dir is configured."""
        if not self.debug_dir:
            return

        try:
            trace_path = self.debug_dir / trace_id
            trace_path.mkdir(parents=True, exist_ok=True)

            filepath = trace_path / filename
            with open(filepath, "w") as f:
                json.dump(data, f, indent=2, default=str)
            logger.debug("[%s] Saved debug file: %s", trace_id, filepath)
        except OSError as e:
            logger.warning("[%s] Failed to save debug file %s: %s", trace_id, filename, e)


def _first_text(content: Any) -> str:
    """First non-blank text in string content or text blocks/parts."""
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                text = (block.get("text") or "").strip()
                if text:
                    return text
    return ""
