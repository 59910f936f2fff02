import threading

import pytest

from shared import create_logger
from records import RecordStore
from placement import Placement
from service import UploaderService
from server_uploader import make_server

DOMAIN = 'up.example.com'
TOKEN = 'secret-upload-token'
ALPHABET = 'abcdefghjkmnpqrstuvwxyz23456789'


@pytest.fixture
def log_file(tmp_path):
    return str(tmp_path / 'uploader.log')


@pytest.fixture
def logger(log_file):
    logger = create_logger(log_file, name='shotdrop.test')
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def store(tmp_path):
    store = RecordStore(str(tmp_path / 'files.db'))
    store.init_db()
    return store


@pytest.fixture
def placement(tmp_path):
    return Placement(str(tmp_path / 'files'), str(tmp_path / 'embed'), {'png', 'jpg', 'gif', 'mp4'})


@pytest.fixture
def service(tmp_path, store, placement, logger):
    service = UploaderService(
        store, placement, logger,
        token=TOKEN,
        domain=DOMAIN,
        alphabet=ALPHABET,
        id_length=6,
        delete_length=24,
        tmp_dir=str(tmp_path / 'tmp'),
    )
    service.prepare()
    return service


@pytest.fixture
def static_dir(tmp_path):
    static = tmp_path / 'static'
    static.mkdir()
    (static / 'index.html').write_text('<h1>shotdrop</h1>', encoding='utf-8')
    (static / 'robots.txt').write_text('User-agent: *\nDisallow: /\n', encoding='utf-8')
    return str(static)


@pytest.fixture
def live_server(service, static_dir):
    server = make_server(service, '127.0.0.1', 0, static_dir=static_dir)
    thread = threading.Thread(target=server.serve_forever, name='test-server', daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    yield f'http://{host}:{port}'
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


@pytest.fixture
def make_temp_upload(service):
    """Drops bytes into the service temp dir the way the multipart parser would."""
    counter = iter(range(1000))

    def _make(data):
        path = f"{service.tmp_dir}/upload-{next(counter)}"
        with open(path, 'wb') as f:
            f.write(data)
        return path
    return _make
