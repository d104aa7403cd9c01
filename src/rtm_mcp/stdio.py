from __future__ import annotations

import json
import logging
import sys
from typing import TextIO

from .protocol import ProtocolSession

logger = logging.getLogger(__name__)


def serve_stdio(session: ProtocolSession, stdin: TextIO | None = None, stdout: TextIO | None = None) -> int:
    """Answer newline-delimited JSON-RPC requests until ``stdin`` closes.

    Returns the number of responses written.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    logger.info("RTM MCP server listening on stdio")
    written = 0
    for line in stdin:
        if not line.strip():
            continue
        response = session.handle_raw(line)
        if response is None:
            continue
        try:
            stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
            stdout.flush()
        except (BrokenPipeError, OSError) as exc:
            logger.warning("stdout closed while writing response: %s", exc)
            break
        written += 1
    logger.info("stdin closed; stopping")
    return written
