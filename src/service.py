#!/usr/bin/env python3
import os
import hmac
import shutil
import errno
import string

from shared import generate_id
from records import FileRecord
from placement import CATEGORIES

UPLOAD_FAILED = "Internal server error occured trying to upload file"
DELETE_FAILED = "Internal server error occured trying to delete the file"


# ==============================================================================
# --- ERRORS ---
# ==============================================================================
class UploaderError(Exception):
    status = 500
    message = "Internal server error"

    def __init__(self, message=None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class BadRequest(UploaderError):
    status = 400
    message = "Bad Request"


class Unauthorized(UploaderError):
    status = 401
    message = "Unauthorized"


class NotFound(UploaderError):
    status = 404
    message = "Not Found"


class InternalError(UploaderError):
    status = 500


# ==============================================================================
# --- SERVICE ---
# ==============================================================================
class UploaderService:
    """Everything the request handler needs, built once at startup."""

    def __init__(self, store, placement, logger, token, domain, scheme='https',
                 alphabet=string.ascii_letters + string.digits, id_length=8, delete_length=32, id_attempts=10, tmp_dir='tmp'):
        self.store = store
        self.placement = placement
        self.logger = logger
        self.token = token
        self.domain = domain
        self.scheme = scheme
        self.alphabet = alphabet
        self.id_length = id_length
        self.delete_length = delete_length
        self.id_attempts = id_attempts
        self.tmp_dir = tmp_dir

    def prepare(self):
        """Creates the data directories and the database table."""
        for dir_path in (self.tmp_dir, self.placement.files_dir, self.placement.embed_dir):
            if not os.path.isdir(dir_path):
                self.logger.warning(f"Directory '{dir_path}' does not exist. Creating it.")
                os.makedirs(dir_path, exist_ok=True)
        self.store.init_db()
        if not self.token:
            self.logger.warning("No upload token configured, every upload will be rejected.")

    def url(self, path):
        return f"{self.scheme}://{self.domain}/{path}"

    # --- Upload ---
    def authenticate(self, token):
        if not self.token or token is None or not hmac.compare_digest(token.encode('utf-8'), self.token.encode('utf-8')):
            self.logger.info("Unauthorized upload attempt!")
            raise Unauthorized()

    def validate_category(self, category):
        if category is not None and category not in CATEGORIES:
            raise BadRequest(f"Unknown type '{category}', expected one of: {', '.join(CATEGORIES)}")

    def _new_target(self, original_name, category):
        for _ in range(self.id_attempts):
            file_id = generate_id(self.alphabet, self.id_length)
            target = self.placement.place(file_id, original_name, category)
            if self.store.has(file_id) or os.path.lexists(target.path):
                self.logger.warning(f"Generated id '{file_id}' is already taken, retrying.")
                continue
            return file_id, target
        self.logger.error(f"Could not generate a free id after {self.id_attempts} attempts")
        raise InternalError(UPLOAD_FAILED)

    def _discard(self, path):
        # A stored file must not stay reachable without a record
        if os.path.lexists(path):
            try:
                os.remove(path)
            except OSError:
                self.logger.exception(f"Could not remove orphaned file '{path}'")

    def upload(self, temp_path, original_name, category=None):
        """
        Moves an already received temp file into place and registers it.
        Returns the JSON payload for the client.
        """
        file_id, target = self._new_target(original_name, category)
        delete_token = generate_id(self.alphabet, self.delete_length)

        try:
            shutil.move(temp_path, target.path)
        except OSError as e:
            self.logger.error(f"Moving '{temp_path}' to '{target.path}' failed: {e}")
            self._discard(target.path)
            raise InternalError(UPLOAD_FAILED) from e

        try:
            self.store.set(FileRecord(file_id, target.path, original_name, delete_token, None))
        except Exception as e:
            self.logger.exception(f"Registering id '{file_id}' failed")
            self._discard(target.path)
            raise InternalError(UPLOAD_FAILED) from e
        self.logger.info(f'Uploaded new file "{original_name}" with id of "{file_id}"')
        return {
            "status": 200,
            "url": self.url(f"{'i' if target.embeddable else 'f'}/{target.filename}"),
            "delete": self.url(f"d/{file_id}/{delete_token}"),
        }

    # --- Download ---
    def find(self, name):
        """Resolves `/f/<id>[.ext]` to a record whose file is still on disk."""
        file_id = name.split('.', 1)[0]
        record = self.store.get(file_id) if file_id else None
        if record is None:
            raise NotFound()
        if not os.path.isfile(record.storage_path):
            self.logger.error(f"Record '{file_id}' points at missing file '{record.storage_path}'")
            raise NotFound()
        return record

    # --- Delete ---
    def delete(self, file_id, token):
        record = self.store.get(file_id)
        if record is None:
            raise NotFound()
        if not hmac.compare_digest(token.encode('utf-8'), record.delete_token.encode('utf-8')):
            self.logger.info(f'Delete attempt with a wrong token for id "{file_id}"')
            raise Unauthorized()

        try:
            os.remove(record.storage_path)
        except OSError as e:
            if e.errno == errno.ENOENT:
                self.logger.warning(f"File '{record.storage_path}' of id '{file_id}' was already gone.")
            else:
                self.logger.error(f"Removing '{record.storage_path}' failed: {e}")

        self.store.delete(file_id)
        self.logger.info(f'Deleted file "{record.original_name}" with id of "{file_id}"')
        return record
