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

import html
import json
import re

from urllib.parse import quote

from localshare.Assets import loadTemplate
from localshare.Listing import buildListingPayload
from localshare.Utils import formatSize

PLACEHOLDER = re.compile(r'\{\{ (\w+) \}\}')


def renderTemplate(template, **values):
    """Fill every '{{ key }}' placeholder in one pass. Values are inserted as given, escape them first."""
    return PLACEHOLDER.sub(lambda match: str(values.get(match.group(1), match.group(0))), template)


def toScriptJSON(value):
    """JSON that is safe inside a <script> element."""
    return json.dumps(value).replace('<', '\\u003c').replace('>', '\\u003e').replace('&', '\\u0026')


def joinRequestPath(currentPath, name):
    return f"{currentPath.rstrip('/')}/{name}"


def parentRequestPath(currentPath):
    parent = currentPath.rstrip('/').rsplit('/', 1)[0]
    return parent or '/'


def urlFor(prefix, requestPath):
    return prefix + quote(requestPath, safe='/')


def _renderEntry(currentPath, entry):
    entryPath = joinRequestPath(currentPath, entry.name)
    name = html.escape(entry.name)

    if entry.isDir:
        return (
            '<li><div class="file-row">'
            f'<a href="{urlFor("/list", entryPath)}" class="file-link">📁 {name}/</a>'
            f'<a href="{urlFor("/download", entryPath)}" class="action-link">⬇ ZIP</a>'
            '</div></li>'
        )

    return (
        '<li><div class="file-row">'
        f'<a href="{urlFor("/download", entryPath)}" class="file-link">📄 {name}</a>'
        f'<span class="meta">{html.escape(formatSize(entry.size))}</span>'
        '</div></li>'
    )


def renderListingPage(currentPath, entries, maxUploadSize, themeDir=None):
    """
    Plain HTML listing with an upload drop zone.

    Args:
        currentPath: '/'-rooted request path of the listed directory
        entries: Sorted DirectoryEntry sequence
        maxUploadSize: Upload ceiling in bytes, shown to the user
        themeDir: Optional directory overriding bundled templates
    """
    if currentPath == '/':
        parentLink = ''
    else:
        parentLink = f'<a href="{urlFor("/list", parentRequestPath(currentPath))}" class="back">⬅ Up one level</a>'

    if entries:
        items = '\n'.join(_renderEntry(currentPath, entry) for entry in entries)
    else:
        items = '<li class="empty">This folder is empty.</li>'

    return renderTemplate(
        loadTemplate('index.html', themeDir),
        title=html.escape(currentPath),
        maxUploadSize=html.escape(formatSize(maxUploadSize)),
        parentLink=parentLink,
        entries=items,
        currentPathJSON=toScriptJSON(currentPath),
    )


def renderModernPage(currentPath, entries, themeDir=None):
    """Client-side rendered shell; the first listing is embedded as window.INITIAL_DATA."""
    return renderTemplate(
        loadTemplate('modern.html', themeDir),
        title=html.escape(currentPath),
        initialData=toScriptJSON(buildListingPayload(currentPath, entries)),
    )
