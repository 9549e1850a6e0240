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

import mimetypes
import os

from localshare.Errors import InternalServerError, NotFoundError
from localshare.Kernel import getLogger
from localshare.Paths import canonicalizeRoot, resolvePath

DEFAULT_STATIC_ROOT = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'static')

logger = getLogger(__name__)


def findAsset(path, themeDir=None):
    """
    Locate a static file, preferring the theme directory over the bundled one.

    Returns:
        str or None: Absolute path of the file

    Raises:
        InvalidPathError: If path tries to leave the asset roots
    """
    roots = [themeDir, DEFAULT_STATIC_ROOT] if themeDir else [DEFAULT_STATIC_ROOT]

    for root in roots:
        candidate = resolvePath(canonicalizeRoot(root), path)
        if os.path.isfile(candidate):
            return candidate

    return None


def readAsset(path, themeDir=None) -> bytes:
    assetPath = findAsset(path, themeDir)
    if assetPath is None:
        raise NotFoundError()

    with open(assetPath, 'rb') as f:
        return f.read()


def guessAssetType(path):
    ctype, encoding = mimetypes.guess_type(path)
    if ctype is None:
        return 'application/octet-stream'

    if ctype.startswith('text/') or ctype in ('application/javascript', 'application/json'):
        return f'{ctype}; charset=utf-8'

    return ctype


def loadTemplate(name, themeDir=None) -> str:
    """Read templates/<name> as UTF-8 text."""
    content = readAsset(f'templates/{name}', themeDir)
    try:
        return content.decode('utf-8')
    except UnicodeDecodeError as e:
        logger.error(f"Template {name} is not valid UTF-8: {e}")
        raise InternalServerError() from e
