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

from dataclasses import dataclass
from typing import List

from localshare.Kernel import getLogger
from localshare.Paths import isContained

logger = getLogger(__name__)


@dataclass(frozen=True)
class DirectoryEntry:
    """One child of a listed directory. size is 0 for directories."""
    name: str
    isDir: bool
    size: int = 0

    def toDict(self):
        return {'name': self.name, 'is_dir': self.isDir, 'size': self.size}


def isHidden(name):
    return name.startswith('.')


def sortEntries(entries):
    """Directories first, then files; each group by plain codepoint order (case-sensitive)."""
    return sorted(entries, key=lambda entry: (not entry.isDir, entry.name))


def listDirectory(path, root=None) -> List[DirectoryEntry]:
    """
    Read one level of a directory.

    Hidden (dot-prefixed) names are skipped. Symlinks are followed for kind and size;
    when root is given, links resolving outside it are left out.
    A missing directory raises FileNotFoundError, other failures raise OSError;
    both are left to the caller to map.
    """
    entries = []

    with os.scandir(path) as it:
        for dirEntry in it:
            if isHidden(dirEntry.name):
                continue

            if root is not None and dirEntry.is_symlink() and not isContained(root, dirEntry.path):
                logger.debug(f"Skipping link leaving the shared root: {dirEntry.path}")
                continue

            try:
                stat = dirEntry.stat()
                isDir = dirEntry.is_dir()
            except FileNotFoundError:
                # Removed between the directory read and the stat, or a dangling symlink.
                logger.debug(f"Skipping vanished entry: {dirEntry.path}")
                continue

            entries.append(DirectoryEntry(dirEntry.name, isDir, 0 if isDir else stat.st_size))

    return sortEntries(entries)


def buildListingPayload(currentPath, entries):
    """Serialization hook for the JSON listing mode."""
    return {
        'current_path': currentPath,
        'entries': [entry.toDict() for entry in entries],
    }
