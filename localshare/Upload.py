#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# LocalShare - Local network file sharing
# Copyright (C) 2025-2026 LocalShare contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os

from pathlib import PurePosixPath

from localshare.Errors import InternalServerError
from localshare.Kernel import getLogger, ShareEvent
from localshare.Paths import SEGMENT_SEPARATORS
from localshare.Settings import FALLBACK_UPLOAD_NAME

logger = getLogger(__name__)

# Upper bound of '(n)' suffixes tried before giving up on a name
MAX_COLLISION_ATTEMPTS = 10000

EXCLUSIVE_CREATE_FLAGS = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, 'O_BINARY', 0)


def sanitizeFileName(name):
    """Keep only the last path segment of a client supplied file name."""
    baseName = SEGMENT_SEPARATORS.split(name or '')[-1].replace('\x00', '')

    if baseName in ('', '.', '..'):
        return FALLBACK_UPLOAD_NAME

    return baseName


def candidateNames(name):
    """name, then stem(1)ext, stem(2)ext, ... ('a.tar.gz' -> 'a.tar(1).gz', '.bashrc' -> '.bashrc(1)')"""
    yield name

    path = PurePosixPath(name)
    stem, suffix = path.stem, path.suffix
    for counter in range(1, MAX_COLLISION_ATTEMPTS):
        yield f'{stem}({counter}){suffix}'


def reserveDestination(targetDir, name):
    """
    Atomically create a new, empty file for name in targetDir.

    Each candidate is created with O_CREAT | O_EXCL, so two concurrent uploads of
    the same name can never end up with the same destination.

    Returns:
        tuple: (path, writable binary file object); the caller owns the file object

    Raises:
        FileExistsError: If every candidate name is taken
        OSError: For any other filesystem failure
    """
    for candidate in candidateNames(name):
        path = os.path.join(targetDir, candidate)
        try:
            fd = os.open(path, EXCLUSIVE_CREATE_FLAGS, 0o644)
        except FileExistsError:
            continue

        return path, os.fdopen(fd, 'wb')

    raise FileExistsError(f"No free name left for {name} in {targetDir}")


def _readAll(content):
    if hasattr(content, 'read'):
        return content.read()
    return bytes(content)


def receiveUploads(targetDir, parts):
    """
    Write every file part into targetDir.

    Args:
        targetDir: Resolved, existing directory
        parts: Iterable of (filename, bytes or readable binary stream); parts whose
               filename is empty or None are form fields and are skipped

    Returns:
        int: Number of files written

    Raises:
        InternalServerError: On the first filesystem failure; files written before it stay
    """
    count = 0

    for fileName, content in parts:
        if not fileName:
            continue

        name = sanitizeFileName(fileName)
        path = None

        try:
            data = _readAll(content)
            path, f = reserveDestination(targetDir, name)
            try:
                with f:
                    f.write(data)
            except OSError:
                # Drop the half written file instead of leaving a truncated upload behind
                os.remove(path)
                raise
        except OSError as e:
            logger.error(f"Upload of {fileName!r} into {targetDir} failed: {e}")
            raise InternalServerError() from e

        count += 1
        logger.info(f"Uploaded file saved: {path} ({len(data)} bytes)")
        ShareEvent.uploadCreate.trigger(path=path, size=len(data))

    return count
