"""
HTTP/REST server for the key/value store.
Implements the start/stop/is_stop_requested contract the lifecycle
supervisor runs servers through.
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from lifecycle.options import DatabaseOptions, ServerOptions
from storage.database import Database

logger = logging.getLogger(__name__)


class _RequestError(Exception):
    """Malformed request, answered with a 4xx status"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class KVRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for Key/Value API"""

    def __init__(self, kv_server: 'KVServer', *args, **kwargs):
        self.kv_server = kv_server
        self.database = kv_server.database
        super().__init__(*args, **kwargs)

    def _dispatch(self, routes: Dict[str, Any]) -> None:
        try:
            handler = routes.get(urlparse(self.path).path)
            if handler is None:
                self._send_error_response(404, "Not found")
                return
            handler()
        except _RequestError as e:
            self._send_error_response(e.status_code, str(e))
        except Exception as e:
            logger.exception("Error handling %s %s", self.command, self.path)
            self._send_error_response(500, f"Internal server error: {str(e)}")

    def do_PUT(self) -> None:
        self._dispatch({'/kv/put': self._handle_put})

    def do_GET(self) -> None:
        self._dispatch({
            '/kv/get': self._handle_get,
            '/health': self._handle_health_check,
            '/stats': self._handle_stats,
        })

    def do_DELETE(self) -> None:
        self._dispatch({'/kv/delete': self._handle_delete})

    def do_POST(self) -> None:
        self._dispatch({'/admin/shutdown': self._handle_shutdown})

    def _read_json(self, *required: str) -> Dict[str, Any]:
        """Read the JSON body and check that the required fields are present"""
        content_length = int(self.headers.get('Content-Length', 0))
        if content_length > self.kv_server.server_options.max_request_size:
            raise _RequestError(413, "Request too large")

        body = self.rfile.read(content_length)
        try:
            data = json.loads(body.decode('utf-8')) if body else {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise _RequestError(400, "Invalid JSON") from None
        if not isinstance(data, dict):
            raise _RequestError(400, "Invalid JSON")

        missing = [field for field in required if field not in data]
        if missing:
            raise _RequestError(400, f"{' and '.join(missing)} required")
        return data

    def _handle_put(self) -> None:
        data = self._read_json('key', 'value')
        self.database.put(data['key'].encode('utf-8'), data['value'].encode('utf-8'))
        self._send_json_response(200, {"status": "success", "message": "Key stored successfully"})

    def _handle_get(self) -> None:
        key_text = self._read_json('key')['key']
        value = self.database.get(key_text.encode('utf-8'))

        if value is not None:
            self._send_json_response(200, {
                "status": "success",
                "key": key_text,
                "value": value.decode('utf-8'),
            })
        else:
            self._send_json_response(404, {
                "status": "not_found",
                "key": key_text,
                "message": "Key not found",
            })

    def _handle_delete(self) -> None:
        key_text = self._read_json('key')['key']
        if self.database.delete(key_text.encode('utf-8')):
            self._send_json_response(200, {"status": "success", "message": "Key deleted successfully"})
        else:
            self._send_json_response(404, {"status": "not_found", "message": "Key not found"})

    def _handle_health_check(self) -> None:
        self._send_json_response(200, {"status": "healthy", "service": "kvserver"})

    def _handle_stats(self) -> None:
        self._send_json_response(200, {"status": "success", "database": self.database.get_stats()})

    def _handle_shutdown(self) -> None:
        self.kv_server.request_stop()
        self._send_json_response(202, {"status": "success", "message": "Stop requested"})

    def _send_json_response(self, status_code: int, data: Dict[str, Any]) -> None:
        """Send JSON response"""
        response_body = json.dumps(data, indent=2).encode('utf-8')

        self.send_response(status_code)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(response_body)))
        self.end_headers()
        self.wfile.write(response_body)

    def _send_error_response(self, status_code: int, message: str) -> None:
        """Send error response"""
        self._send_json_response(status_code, {
            "status": "error",
            "code": status_code,
            "message": message,
        })

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


class _BoundedThreadingHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server handling at most num_threads requests at once"""

    daemon_threads = True

    def __init__(self, address, handler_factory, num_threads: int, listen_backlog: int):
        self.request_queue_size = listen_backlog
        self._slots = threading.BoundedSemaphore(max(1, num_threads))
        super().__init__(address, handler_factory)

    def process_request(self, request, client_address):
        self._slots.acquire()
        try:
            super().process_request(request, client_address)
        except Exception:
            self._slots.release()
            raise

    def process_request_thread(self, request, client_address):
        try:
            super().process_request_thread(request, client_address)
        finally:
            self._slots.release()


class KVServer:
    """HTTP server for Key/Value API"""

    def __init__(self):
        self.server_options: Optional[ServerOptions] = None
        self.database: Optional[Database] = None
        self.server: Optional[_BoundedThreadingHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self._stop_requested = threading.Event()
        self._running = False

    def start(self, server_options: ServerOptions, db_options: DatabaseOptions, path: str) -> None:
        """
        Open the database and start serving requests.

        Args:
            server_options: Listen address and request limits
            db_options: Storage engine options
            path: Database directory
        """
        if self._running:
            return

        self.server_options = server_options
        self.database = Database(path, db_options)
        self.database.open()

        def handler_factory(*args, **kwargs):
            return KVRequestHandler(self, *args, **kwargs)

        try:
            self.server = _BoundedThreadingHTTPServer(
                (server_options.interface, server_options.port), handler_factory,
                server_options.num_threads, server_options.listen_backlog)
        except OSError:
            self.database.close()
            raise

        self.server_thread = threading.Thread(target=self.server.serve_forever,
                                              name='kvserver-http', daemon=True)
        self.server_thread.start()
        self._running = True
        logger.info("kvserver listening on http://%s:%d", *self.address)

    @property
    def address(self):
        """Bound (host, port); the port is the real one when 0 was requested"""
        return self.server.server_address[:2]

    def request_stop(self) -> None:
        """Ask the supervisor to stop this server"""
        self._stop_requested.set()

    def is_stop_requested(self) -> bool:
        """True once a stop was requested or the serving thread has died"""
        if self._stop_requested.is_set():
            return True
        return self._running and not self.server_thread.is_alive()

    def stop(self) -> None:
        """Stop serving and close the database"""
        if not self._running:
            return

        self.server.shutdown()
        self.server.server_close()
        self.database.close()

        self._running = False
        logger.info("kvserver stopped")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
