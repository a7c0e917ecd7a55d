"""ZMQ sidecar — exposes the sorting engine to the host UI over JSON.

Every request is a JSON object with ``cmd``, ``id`` and the process
``_token``; every reply echoes ``id`` and carries ``ok``.
"""

import base64
import binascii
import json
import logging
import time
import uuid
from pathlib import Path

import sentry_sdk
import zmq

from imaging.png import ImageFormatError, probe_png
from imaging.pngsort import sort_png_image
from security import validate_output_path, validate_pixel_count, validate_upload
from sorting.config import Channel, PixelFormat, RangeMode, TieMode, parse_config
from sorting.engine import MAX_WORKERS, flush_timing, get_sort_stats
from sorting.errors import ConfigError, InternalInvariantError, ShapeError

logger = logging.getLogger(__name__)

# Inline PNGs travel base64-encoded inside the JSON request
MAX_MESSAGE_SIZE = 64 * 1024 * 1024


def _capture_invariant(e: InternalInvariantError, context: dict):
    """Report an engine bug with its own fingerprint so it never merges with user errors."""
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("error_class", "internal_invariant")
        scope.fingerprint = ["sort-invariant", type(e).__name__]
        scope.set_context("sort", context)
        sentry_sdk.capture_exception(e, scope=scope)


class ZMQServer:
    def __init__(self):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, MAX_MESSAGE_SIZE)
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket, never blocked by a long sort
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.last_sort_ms = 0.0

    def reset_state(self):
        """Clear accumulated state without closing sockets/context."""
        flush_timing()
        self.last_sort_ms = 0.0

    def _validate_token(self, message: dict) -> str | None:
        if message.get("_token") != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_sort_ms": self.last_sort_ms,
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
        elif cmd == "list_options":
            return {"id": msg_id, "ok": True, **self._options()}
        elif cmd == "sort_png":
            return self._handle_sort_png(message, msg_id)
        elif cmd == "sort_file":
            return self._handle_sort_file(message, msg_id)
        elif cmd == "sort_stats":
            return {"id": msg_id, "ok": True, "stats": get_sort_stats()}
        elif cmd == "flush_state":
            flush_timing()
            return {"id": msg_id, "ok": True}
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    @staticmethod
    def _options() -> dict:
        return {
            "sort_range": [m.value for m in RangeMode],
            "sort_mode": [m.value for m in TieMode],
            "sort_channel": [m.value for m in Channel],
            "pixel_formats": {f.value: [c.value for c in f.channels] for f in PixelFormat},
            "max_workers": MAX_WORKERS,
        }

    def _sort(self, message: dict, msg_id: str | None, data: bytes) -> tuple[dict, bytes | None]:
        """Shared path for sort_png and sort_file.

        Returns (response, png_bytes); png_bytes is None when the response
        is an error.
        """
        header = probe_png(data)
        if not header["ok"]:
            return {"id": msg_id, "ok": False, "error": header["error"]}, None
        errors = validate_pixel_count(header["width"], header["height"])
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}, None

        workers = message.get("workers", 1)
        if not isinstance(workers, int) or workers < 1:
            return {"id": msg_id, "ok": False, "error": "workers must be a positive integer"}, None

        try:
            config = parse_config(message.get("config", {}))
            t0 = time.time()
            encoded, image = sort_png_image(config, data, workers=workers)
            self.last_sort_ms = round((time.time() - t0) * 1000, 2)
        except ConfigError as e:
            return {"id": msg_id, "ok": False, "error": str(e), "field": e.field}, None
        except (ShapeError, ImageFormatError) as e:
            return {"id": msg_id, "ok": False, "error": str(e)}, None
        except InternalInvariantError as e:
            _capture_invariant(e, {"width": header["width"], "height": header["height"]})
            logger.error("Sort invariant violated: %s", e)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}, None

        return {
            "id": msg_id,
            "ok": True,
            "width": image.width,
            "height": image.height,
            "pixel_format": image.pixel_format.value,
            "elapsed_ms": self.last_sort_ms,
        }, encoded

    def _handle_sort_png(self, message: dict, msg_id: str | None) -> dict:
        raw = message.get("data")
        if not raw:
            return {"id": msg_id, "ok": False, "error": "missing data"}
        try:
            data = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError, TypeError):
            return {"id": msg_id, "ok": False, "error": "data must be base64"}

        try:
            response, encoded = self._sort(message, msg_id, data)
            if encoded is not None:
                response["data"] = base64.b64encode(encoded).decode("ascii")
            return response
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Sort handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

    def _handle_sort_file(self, message: dict, msg_id: str | None) -> dict:
        input_path = message.get("input_path")
        output_path = message.get("output_path")
        if not input_path:
            return {"id": msg_id, "ok": False, "error": "missing input_path"}
        if not output_path:
            return {"id": msg_id, "ok": False, "error": "missing output_path"}

        errors = validate_upload(input_path)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}
        out_errors = validate_output_path(output_path)
        if out_errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(out_errors)}

        try:
            data = Path(input_path).read_bytes()
            response, encoded = self._sort(message, msg_id, data)
            if encoded is not None:
                Path(output_path).write_bytes(encoded)
                response["output_path"] = output_path
            return response
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Sort file handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            if self.ping_socket in events:
                try:
                    message = json.loads(self.ping_socket.recv())
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except (json.JSONDecodeError, AttributeError):
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break

            if self.socket in events:
                try:
                    message = json.loads(self.socket.recv())
                    if not isinstance(message, dict):
                        raise json.JSONDecodeError("expected object", "", 0)
                except json.JSONDecodeError:
                    # REP sockets must reply before the next recv
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
