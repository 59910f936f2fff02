#!/usr/bin/env python3
import os
from collections import namedtuple

CATEGORIES = ('file', 'image')

Target = namedtuple('Target', ['path', 'filename', 'embeddable'])


def extension_of(name):
    """Lower-cased text after the last '.' of the basename, '' when there is none."""
    base = os.path.basename(name.replace('\\', '/'))
    stem, dot, ext = base.rpartition('.')
    if not dot:
        return ''
    return ext.lower()


class Placement:
    """
    Decides where an upload lives on disk.

    Embeddable files keep their extension and go to the embed directory, which
    is served statically under /i/. Everything else is stored under the bare id
    in the files directory, so its name is only recoverable through the record.
    """

    def __init__(self, files_dir, embed_dir, embed_extensions):
        self.files_dir = files_dir
        self.embed_dir = embed_dir
        self.embed_extensions = {ext.lower() for ext in embed_extensions}

    def is_embeddable(self, original_name, category=None):
        if category == 'file':
            return False
        ext = extension_of(original_name)
        return bool(ext) and ext in self.embed_extensions

    def place(self, file_id, original_name, category=None):
        if self.is_embeddable(original_name, category):
            filename = f"{file_id}.{extension_of(original_name)}"
            return Target(os.path.join(self.embed_dir, filename), filename, True)
        return Target(os.path.join(self.files_dir, file_id), file_id, False)
