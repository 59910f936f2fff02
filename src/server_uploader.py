#!/usr/bin/env python3
import os
import sys
import json
import ssl
import re
import tempfile
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote, urlparse, parse_qs, quote
from werkzeug.formparser import parse_form_data # For parsing multipart/form-data (cgi was removed in Python 3.13)

import config
from shared import create_logger
from records import RecordStore
from placement import Placement
from service import UploaderService, UploaderError, BadRequest, UPLOAD_FAILED, DELETE_FAILED

DOWNLOAD_FAILED = "Internal server error occured trying to download the file"

CHUNK_SIZE = 2 * 1024 * 1024  # 2 MB

# Same set helmet() applied to every response of the express version
SECURITY_HEADERS = (
    ('X-Content-Type-Options', 'nosniff'),
    ('X-Frame-Options', 'SAMEORIGIN'),
    ('Referrer-Policy', 'no-referrer'),
    ('X-DNS-Prefetch-Control', 'off'),
    ('Cross-Origin-Resource-Policy', 'same-site'),
)


def content_disposition(filename):
    """attachment header with an ASCII fallback and the RFC 5987 utf-8 name."""
    fallback = filename.encode('ascii', 'ignore').decode('ascii')
    fallback = fallback.replace('\\', '').replace('"', '').replace('\r', '').replace('\n', '') or 'download'
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def parse_range(header, size):
    """
    Parses a single `bytes=start-end` range.
    Returns (start, end) inclusive, None when the header is not usable and
    ValueError when the range can't be satisfied.
    """
    m = re.match(r'^bytes=(\d*)-(\d*)$', header.strip())
    if not m or not (m.group(1) or m.group(2)):
        return None
    if m.group(1):
        start = int(m.group(1))
        end = int(m.group(2)) if m.group(2) else size - 1
    else:
        # suffix range: last N bytes
        start = max(0, size - int(m.group(2)))
        end = size - 1
    end = min(end, size - 1)
    if start >= size or start > end:
        raise ValueError(header)
    return start, end


# ==============================================================================
# --- MAIN REQUEST HANDLER ---
# ==============================================================================
class UploaderHandler(SimpleHTTPRequestHandler):
    server_version = "shotdrop/1.0"

    # --- Route Patterns ---
    embed_pattern = re.compile(r'^/i/([^/]+)$')
    download_pattern = re.compile(r'^/f/([^/]+)$')
    delete_pattern = re.compile(r'^/d/([^/]+)/([^/]+)$')
    upload_path = '/upload'

    @property
    def service(self):
        return self.server.service

    # --- Response Helpers ---
    def end_headers(self):
        for name, value in SECURITY_HEADERS:
            self.send_header(name, value)
        super().end_headers()

    def _send_json(self, status_code, payload, body=True):
        content = json.dumps(payload).encode('utf-8')
        self.send_response(status_code)
        self.send_header('Content-Type', 'application/json; charset=utf-8')
        self.send_header('Content-Length', str(len(content)))
        self.end_headers()
        if body:
            self.wfile.write(content)

    def _send_error_json(self, status_code, message, body=True):
        return self._send_json(status_code, {"status": status_code, "message": message}, body)

    def _discard_body(self):
        """Reads and drops the request body so the client sees our response."""
        remaining = int(self.headers.get('Content-Length', 0) or 0)
        while remaining > 0:
            chunk = self.rfile.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)

    def log_message(self, format, *args):
        self.service.logger.info(f"HTTP: {format % args}")

    # --- Static files (/, /robots.txt, /i/<file>) ---
    def _static_target(self, path):
        if path == '/':
            return os.path.join(self.server.static_dir, 'index.html')
        if path == '/robots.txt':
            return os.path.join(self.server.static_dir, 'robots.txt')
        m = self.embed_pattern.match(path)
        if m:
            name = m.group(1)
            if name in ('.', '..') or '\\' in name or '\x00' in name:
                return None
            return os.path.join(self.service.placement.embed_dir, name)
        return None

    def translate_path(self, path):
        # Only called for paths that _static_target accepted
        return self._static_target(unquote(urlparse(path).path))

    # --- Main Router (do_*) ---
    def do_GET(self):
        parsed_url = urlparse(self.path)
        path = unquote(parsed_url.path)

        target = self._static_target(path)
        if target is not None:
            if not os.path.isfile(target):
                return self._send_error_json(404, "Not Found")
            return super().do_GET()

        m = self.download_pattern.match(path)
        if m:
            return self.handle_download(m.group(1))

        m = self.delete_pattern.match(path)
        if m:
            return self.handle_delete(m.group(1), m.group(2))

        if path == self.upload_path:
            return self._send_error_json(405, "Method Not Allowed")
        return self._send_error_json(404, "Not Found")

    def do_HEAD(self):
        path = unquote(urlparse(self.path).path)
        m = self.download_pattern.match(path)
        if m:
            return self.handle_download(m.group(1), body=False)

        target = self._static_target(path)
        if target is None:
            return self._send_error_json(405, "Method Not Allowed", body=False)
        if not os.path.isfile(target):
            return self._send_error_json(404, "Not Found", body=False)
        return super().do_HEAD()

    def do_POST(self):
        parsed_url = urlparse(self.path)
        path = unquote(parsed_url.path)

        if path == self.upload_path:
            return self.handle_upload(parsed_url.query)

        self._discard_body()
        if (self._static_target(path) is not None or self.download_pattern.match(path)
                or self.delete_pattern.match(path)):
            return self._send_error_json(405, "Method Not Allowed")
        return self._send_error_json(404, "Endpoint not found")

    # --- Upload ---
    def _temp_stream_factory(self, total_content_length=None, content_type=None, filename=None, content_length=None):
        # File parts stream straight to disk under TMPDEST, we move them from there
        f = tempfile.NamedTemporaryFile('wb+', dir=self.service.tmp_dir, prefix='upload-', delete=False)
        self._temp_files.append(f)
        return f

    def _cleanup_temp_files(self):
        for f in self._temp_files:
            try:
                f.close()
                if os.path.exists(f.name):
                    os.remove(f.name)
            except OSError:
                self.service.logger.exception(f"Could not remove temp file '{f.name}'")
        self._temp_files = []

    def handle_upload(self, query_string):
        params = parse_qs(query_string)
        token = params.get('token', [None])[0]
        category = params.get('type', [None])[0]

        try:
            self.service.authenticate(token)
            self.service.validate_category(category)
        except UploaderError as e:
            self._discard_body()
            return self._send_error_json(e.status, e.message)

        self._temp_files = []
        try:
            environ = {
                'REQUEST_METHOD': 'POST',
                'CONTENT_TYPE': self.headers.get('Content-Type', ''),
                'CONTENT_LENGTH': self.headers.get('Content-Length', '0'),
                'wsgi.input': self.rfile,
            }
            stream, form, files = parse_form_data(environ, stream_factory=self._temp_stream_factory)

            file_item = files.get('file')
            original_name = os.path.basename((file_item.filename or '').replace('\\', '/')) if file_item else ''
            if not original_name:
                raise BadRequest("Missing 'file' field.")

            # Flush to disk before the move
            file_item.stream.close()
            status, payload = 200, self.service.upload(file_item.stream.name, original_name, category)
        except UploaderError as e:
            status = e.status
            payload = {"status": status, "message": UPLOAD_FAILED if status >= 500 else e.message}
        except Exception:
            self.service.logger.exception("Upload failed.")
            status, payload = 500, {"status": 500, "message": UPLOAD_FAILED}
        finally:
            self._cleanup_temp_files()
        return self._send_json(status, payload)

    # --- Download ---
    def handle_download(self, name, body=True):
        try:
            record = self.service.find(name)
            f = open(record.storage_path, 'rb')
        except UploaderError as e:
            return self._send_error_json(e.status, e.message, body)
        except Exception:
            self.service.logger.exception(f"Download of '{name}' failed.")
            return self._send_error_json(500, DOWNLOAD_FAILED, body)

        with f:
            file_size = os.fstat(f.fileno()).st_size
            range_header = self.headers.get('Range')
            byte_range = None
            if range_header and file_size > 0:
                try:
                    byte_range = parse_range(range_header, file_size)
                except ValueError:
                    self.send_response(416)
                    self.send_header('Content-Range', f'bytes */{file_size}')
                    self.send_header('Content-Length', '0')
                    self.end_headers()
                    return

            self.send_response(206 if byte_range else 200)
            self.send_header('Content-Type', self.guess_type(record.original_name))
            self.send_header('Content-Disposition', content_disposition(record.original_name))
            self.send_header('Accept-Ranges', 'bytes')
            start, end = byte_range or (0, file_size - 1)
            length = end - start + 1
            if byte_range:
                self.send_header('Content-Range', f'bytes {start}-{end}/{file_size}')
            self.send_header('Content-Length', str(length))
            self.end_headers()
            if not body:
                return
            try:
                f.seek(start)
                remaining = length
                while remaining > 0:
                    chunk = f.read(min(CHUNK_SIZE, remaining))
                    if not chunk:
                        break
                    self.wfile.write(chunk)
                    remaining -= len(chunk)
            except ConnectionError as e:
                self.service.logger.info(f"Client went away while downloading '{record.id}': {e}")

    # --- Delete ---
    def handle_delete(self, file_id, token):
        try:
            self.service.delete(file_id, token)
            return self._send_json(200, {"status": 200, "message": "File deleted"})
        except UploaderError as e:
            return self._send_error_json(e.status, DELETE_FAILED if e.status >= 500 else e.message)
        except Exception:
            self.service.logger.exception(f"Delete of '{file_id}' failed.")
            return self._send_error_json(500, DELETE_FAILED)


# ==============================================================================
# --- SERVER EXECUTION ---
# ==============================================================================
def build_service(logger):
    """Wires the service from the values in config."""
    store = RecordStore(config.DB_FILE)
    placement = Placement(config.FILES_DIR, config.EMBED_DIR, config.parse_extensions(config.EMBED))
    return UploaderService(
        store, placement, logger,
        token=config.TOKEN,
        domain=config.DOMAIN,
        scheme=config.SCHEME,
        alphabet=config.CHARS,
        id_length=config.IDLENGTH,
        delete_length=config.DELETELENGTH,
        id_attempts=config.ID_ATTEMPTS,
        tmp_dir=config.TMPDEST,
    )


def make_server(service, host, port, static_dir=config.STATIC_DIR):
    server = ThreadingHTTPServer((host, port), UploaderHandler)
    server.service = service
    server.static_dir = static_dir
    return server


def run_server(service, host, port, cert_file='', key_file=''):
    """Configures and runs the server, HTTPS when a cert and key are given."""
    logger = service.logger
    server = make_server(service, host, port)
    use_ssl = bool(cert_file and key_file)
    proto = 'HTTPS' if use_ssl else 'HTTP'
    if use_ssl:
        if not all(os.path.exists(f) for f in [cert_file, key_file]):
            logger.critical(f"SSL cert/key not found. Cannot start {proto}.")
            server.server_close()
            return 1
        try:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            context.load_cert_chain(certfile=cert_file, keyfile=key_file)
            server.socket = context.wrap_socket(server.socket, server_side=True)
        except (ssl.SSLError, OSError) as e:
            logger.critical(f"Fatal error setting up SSL for port {port}: {e}")
            server.server_close()
            return 1
    logger.info(f"Webserver running on port {port}, accesible at {service.url('')}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received KeyboardInterrupt. Shutting down.")
    finally:
        server.server_close()
        logger.info(f"{proto} server on port {port} has shut down.")
    return 0


def main():
    logger = create_logger(config.LOG_FILE)
    service = build_service(logger)
    try:
        service.prepare()
    except OSError as e:
        logger.critical(f"Could not prepare data directories: {e}")
        return 1
    return run_server(service, config.HOST, config.PORT, config.CERT_FILE, config.KEY_FILE)


if __name__ == '__main__':
    sys.exit(main())
