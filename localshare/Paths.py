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
import re

from localshare.Errors import InvalidPathError
from localshare.Kernel import getLogger

logger = getLogger(__name__)

# Both separators count, a client on Windows may send either.
SEGMENT_SEPARATORS = re.compile(r'[\\/]')


def canonicalizeRoot(path):
    """Resolve the shared root once at startup. Everything else is checked against it."""
    return os.path.realpath(os.path.abspath(path))


def hasTraversal(requested):
    """
    Textual fast check: True if any segment is a parent reference.

    Names merely containing two dots (``a..b``) are legitimate and pass.
    """
    return any(segment == '..' for segment in SEGMENT_SEPARATORS.split(requested))


def isContained(root, path):
    """
    Canonical containment check: path, with symlinks and '..' resolved,
    must be root itself or lie below it.
    """
    resolved = os.path.realpath(path)
    if resolved == root:
        return True

    prefix = root if root.endswith(os.sep) else root + os.sep
    return resolved.startswith(prefix)


def resolvePath(root, requested):
    """
    Join a client supplied relative path onto the canonical root.

    Args:
        root: Canonical absolute root (see canonicalizeRoot)
        requested: Decoded, untrusted request path

    Returns:
        str: Absolute candidate path below root. Existence is not checked.

    Raises:
        InvalidPathError: On traversal segments, NUL bytes, or a result escaping root
    """
    requested = requested or ''

    if requested.startswith('/'):
        requested = requested[1:]

    if '\x00' in requested or hasTraversal(requested):
        logger.warning(f"Rejected traversal attempt: {requested!r}")
        raise InvalidPathError()

    candidate = os.path.join(root, requested) if requested else root

    if not isContained(root, candidate):
        logger.warning(f"Rejected path escaping the shared root: {requested!r}")
        raise InvalidPathError()

    return candidate


def relativeRequestPath(root, path):
    """
    The '/'-rooted, '/'-separated form of path as seen by clients ('/' for root itself).
    """
    relative = os.path.relpath(path, root)
    if relative == os.curdir:
        return '/'

    return '/' + relative.replace(os.sep, '/').strip('/')
