import json
import logging
import time
import uuid

import sentry_sdk
import zmq

from analysis.errors import ThresholdError
from analysis.job import AnalysisManager, AnalysisStatus
from analysis.tone import ToneThresholds
from imaging.loader import probe
from security import validate_pixel_count, validate_upload

logger = logging.getLogger(__name__)


class ZMQServer:
    def __init__(self):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, 1_048_576)  # 1 MB limit
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket: answers while an analysis request is handled
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)  # 4 KB limit (pings only)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token: blocks unauthorized ZMQ access from other local processes
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.analysis = AnalysisManager()
        self.last_analysis_ms = 0.0

    def reset_state(self):
        """Drop analysis state without closing sockets/context.

        Used by session-scoped test fixtures to reset between tests
        while keeping the server running.
        """
        job = self.analysis.job
        if job is not None:
            # No cancel: let a running scan finish before discarding it
            job.wait(timeout=5.0)
        self.analysis = AnalysisManager()
        self.last_analysis_ms = 0.0

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        if message.get("_token") != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_analysis_ms": self.last_analysis_ms,
        }

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}
        elif cmd == "probe":
            return self._handle_probe(message, msg_id)
        elif cmd == "analyze":
            return self._handle_analyze(message, msg_id)
        elif cmd == "analyze_status":
            return self._handle_analyze_status(msg_id)
        elif cmd == "histogram":
            return self._handle_histogram(msg_id)
        elif cmd == "palette":
            return self._handle_palette(msg_id)
        elif cmd == "set_thresholds":
            return self._handle_set_thresholds(message, msg_id)
        elif cmd == "summary":
            return self._handle_summary(message, msg_id)
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    def _result_unavailable(self, msg_id: str | None) -> dict | None:
        """Error reply when there is no finished scan to read from, else None."""
        if self.analysis.busy:
            return {"id": msg_id, "ok": False, "error": "analysis in progress"}
        if self.analysis.analyzer.result is None:
            return {"id": msg_id, "ok": False, "error": "no image analyzed"}
        return None

    def _handle_probe(self, message: dict, msg_id: str | None) -> dict:
        path = message.get("path")
        if not path:
            return {"id": msg_id, "ok": False, "error": "missing path"}

        errors = validate_upload(path)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        result = probe(path)
        result["id"] = msg_id
        return result

    def _handle_analyze(self, message: dict, msg_id: str | None) -> dict:
        path = message.get("path")
        if not path:
            return {"id": msg_id, "ok": False, "error": "missing path"}

        # SEC-1: Validate upload
        errors = validate_upload(path)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        header = probe(path)
        if not header.get("ok"):
            return {"id": msg_id, "ok": False, "error": header["error"]}

        # SEC-2: Validate decoded area before decoding
        errors = validate_pixel_count(header["width"], header["height"])
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        if self.analysis.busy:
            return {"id": msg_id, "ok": False, "error": "analysis in progress"}

        try:
            t0 = time.time()
            job = self.analysis.start(path)
            if message.get("wait"):
                job.wait()
                self.last_analysis_ms = round((time.time() - t0) * 1000, 2)
            status = self.analysis.get_status()
            status["id"] = msg_id
            status["ok"] = status["status"] != AnalysisStatus.ERROR.value
            return status
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Analyze handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

    def _handle_analyze_status(self, msg_id: str | None) -> dict:
        status = self.analysis.get_status()
        status["id"] = msg_id
        status["ok"] = True
        return status

    def _handle_histogram(self, msg_id: str | None) -> dict:
        unavailable = self._result_unavailable(msg_id)
        if unavailable:
            return unavailable
        analyzer = self.analysis.analyzer
        return {
            "id": msg_id,
            "ok": True,
            "total_pixels": analyzer.total_pixels,
            **analyzer.histograms.to_dict(),
        }

    def _handle_palette(self, msg_id: str | None) -> dict:
        unavailable = self._result_unavailable(msg_id)
        if unavailable:
            return unavailable
        analyzer = self.analysis.analyzer
        total = analyzer.total_pixels
        return {
            "id": msg_id,
            "ok": True,
            "total_pixels": total,
            "colors": [entry.to_dict(total) for entry in analyzer.palette()],
        }

    def _parse_thresholds(self, message: dict) -> ToneThresholds:
        levels = []
        for name in ("shadow", "highlight"):
            if name not in message:
                raise ThresholdError(f"missing {name}")
            value = message[name]
            # JSON ints only: no float truncation, no numeric strings
            if isinstance(value, bool) or not isinstance(value, int):
                raise ThresholdError("threshold levels must be integers")
            levels.append(value)
        return ToneThresholds(*levels)

    def _handle_set_thresholds(self, message: dict, msg_id: str | None) -> dict:
        analyzer = self.analysis.analyzer
        try:
            requested = self._parse_thresholds(message)
            current = analyzer.set_thresholds(requested.shadow, requested.highlight)
        except ThresholdError as e:
            kept = analyzer.thresholds
            return {
                "id": msg_id,
                "ok": False,
                "error": str(e),
                "shadow": kept.shadow,
                "highlight": kept.highlight,
            }
        return {
            "id": msg_id,
            "ok": True,
            "shadow": current.shadow,
            "highlight": current.highlight,
        }

    def _handle_summary(self, message: dict, msg_id: str | None) -> dict:
        unavailable = self._result_unavailable(msg_id)
        if unavailable:
            return unavailable
        analyzer = self.analysis.analyzer
        thresholds = None
        if "shadow" in message or "highlight" in message:
            try:
                thresholds = self._parse_thresholds(message)
            except ThresholdError as e:
                return {"id": msg_id, "ok": False, "error": str(e)}
        try:
            summary = analyzer.summary(thresholds)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Summary handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}
        used = thresholds or analyzer.thresholds
        return {
            "id": msg_id,
            "ok": True,
            "total_pixels": analyzer.total_pixels,
            "shadow_level": used.shadow,
            "highlight_level": used.highlight,
            **summary.to_dict(),
        }

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            # Handle ping socket first (lightweight, never blocked)
            if self.ping_socket in events:
                try:
                    raw = self.ping_socket.recv()
                    message = json.loads(raw)
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except json.JSONDecodeError:
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break  # socket state is unrecoverable

            if self.socket in events:
                try:
                    raw = self.socket.recv()
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    # MUST send reply before next recv (REP protocol)
                    self.socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                    continue
                except zmq.ZMQError:
                    logger.error("ZMQ error on main socket")
                    break

                try:
                    response = self.handle_message(message)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error("Unhandled handler error: %s", type(e).__name__)
                    response = {"ok": False, "error": "Internal processing error"}

                self.socket.send_json(response)
        self.close()

    def close(self):
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
