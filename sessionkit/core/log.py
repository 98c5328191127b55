"""Local JSONL lifecycle log for SessionKit.

Appends structured JSON Lines entries describing what happened to each
session: when it was opened, every recording transition the controller
applied, and every upload outcome the engine reported.

Record types
------------
``session`` (event=``"open"``)
    Written when :meth:`RecordingController.open_new_session` obtains a
    session handle.

``recording``
    Written for ``start_requested``, ``started``, ``start_failed``,
    ``stop_requested`` and ``stopped`` transitions.

``upload``
    Written for every upload notification forwarded by
    :class:`~sessionkit.core.uploads.UploadMonitor`.

Example log lines::

    {"type":"session","event":"open","session_id":"S1","has_contextual_data":false,"at":"2026-02-23T14:30:22"}
    {"type":"recording","event":"started","session_id":"S1","recording_id":"R1","at":"2026-02-23T14:30:23"}
    {"type":"recording","event":"stopped","session_id":"S1","recording_id":"R1","duration_sec":61.5,"at":"2026-02-23T14:31:24"}
    {"type":"upload","event":"upload_failed","session_id":"S1","recording_id":"R1","error":"timeout","will_retry":true,"at":"2026-02-23T14:31:30"}
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


class SessionLogger:
    """Appends JSONL log entries for sessions, recordings and uploads.

    Thread-safe: engine callbacks may arrive on several threads.  A single
    :class:`threading.Lock` serialises file writes.

    Args:
        log_path: Path to the ``.jsonl`` log file.  Parent directories are
            created automatically.
    """

    def __init__(self, log_path: Path) -> None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = log_path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write_session_open(
        self,
        session_id: str,
        has_contextual_data: bool = False,
        at: Optional[datetime] = None,
    ) -> None:
        """Append a session-open record.

        Args:
            session_id: Correlation identifier of the session.
            has_contextual_data: Whether contextual data was attached.  The
                payload itself is never logged.
            at: Event time.  Defaults to ``datetime.now()``.
        """
        self._append({
            "type": "session",
            "event": "open",
            "session_id": session_id,
            "has_contextual_data": has_contextual_data,
            "at": _iso(at),
        })

    def write_recording(
        self,
        event: str,
        session_id: str,
        recording_id: Optional[str] = None,
        at: Optional[datetime] = None,
        **details: Any,
    ) -> None:
        """Append a recording transition record.

        Args:
            event: Transition name, e.g. ``'started'``.
            session_id: Session the recording belongs to.
            recording_id: Engine recording identifier, once known.
            at: Event time.  Defaults to ``datetime.now()``.
            **details: Extra fields such as ``reason`` or ``duration_sec``.
        """
        record: Dict[str, Any] = {
            "type": "recording",
            "event": event,
            "session_id": session_id,
            "recording_id": recording_id,
        }
        record.update(_rounded(details))
        record["at"] = _iso(at)
        self._append(record)

    def write_upload(self, event: str, at: Optional[datetime] = None, **details: Any) -> None:
        """Append an upload notification record."""
        record: Dict[str, Any] = {"type": "upload", "event": event}
        record.update(_rounded(details))
        record["at"] = _iso(at)
        self._append(record)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, record: dict) -> None:
        """Serialise *record* as JSON and append it to the log file."""
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)


def _rounded(details: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: round(value, 3) if isinstance(value, float) else value
        for key, value in details.items()
    }


def _iso(dt: Optional[datetime]) -> str:
    """Return a compact ISO 8601 string for *dt*, defaulting to now."""
    if dt is None:
        dt = datetime.now()
    return dt.replace(microsecond=0).isoformat()
