#!/usr/bin/env python3
import os
import string
from dotenv import load_dotenv

# Centralized configuration. Values come from the environment, a `.env` file
# in the working directory is loaded first so it behaves like the deploy env.
load_dotenv()

BASE_DIR = os.path.dirname(__file__)

# Host/port
HOST = os.getenv('HOST', '0.0.0.0')
PORT = int(os.getenv('PORT', '3000'))

# Public-facing domain used to build the urls handed back to clients
DOMAIN = os.getenv('DOMAIN', 'localhost:3000')
SCHEME = os.getenv('SCHEME', 'https')

# Shared upload secret. Empty means every upload is rejected.
TOKEN = os.getenv('TOKEN', '')

# Id / delete token generation
CHARS = os.getenv('CHARS', string.ascii_letters + string.digits)
IDLENGTH = int(os.getenv('IDLENGTH', '8'))
DELETELENGTH = int(os.getenv('DELETELENGTH', '32'))
ID_ATTEMPTS = int(os.getenv('ID_ATTEMPTS', '10'))

# Storage
TMPDEST = os.getenv('TMPDEST', 'tmp')
FILES_DIR = os.getenv('FILES_DIR', 'files')
EMBED_DIR = os.getenv('EMBED_DIR', 'embed')
DB_FILE = os.getenv('DB_FILE', 'files.db')
STATIC_DIR = os.getenv('STATIC_DIR', os.path.join(BASE_DIR, 'static'))

# Extensions served inline from /i/ (previews on Discord and friends)
EMBED = os.getenv('EMBED', 'png,jpg,jpeg,gif,webp,mp4,webm,mov')

LOG_FILE = os.getenv('LOG_FILE', 'uploader.log')

# Optional TLS. Both must be set to serve HTTPS directly, otherwise plain HTTP
# is expected behind a reverse proxy.
CERT_FILE = os.getenv('CERT_FILE', '')
KEY_FILE = os.getenv('KEY_FILE', '')


def parse_extensions(value):
    """Turns a comma separated extension list into a lower-cased set."""
    return {ext.strip().lstrip('.').lower() for ext in value.split(',') if ext.strip().lstrip('.')}
