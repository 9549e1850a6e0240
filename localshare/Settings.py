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

from localshare.Kernel import getLogger
from localshare.Paths import canonicalizeRoot
from localshare.Utils import ONE_KB, ONE_MB

DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 3000
DEFAULT_MAX_UPLOAD_MB = 10

# Archive producer granularity and backlog: 4 slots x 16 KiB keeps at most 64 KiB in flight per download.
ARCHIVE_CHUNK_SIZE = int(os.getenv('ARCHIVE_CHUNK_SIZE', 16 * ONE_KB))
ARCHIVE_QUEUE_SLOTS = int(os.getenv('ARCHIVE_QUEUE_SLOTS', 4))
# Upper bound on waiting for an archive producer to exit once its download is over (seconds)
ARCHIVE_CLOSE_TIMEOUT = 5.0

# Plain file downloads
TRANSFER_CHUNK_SIZE = int(os.getenv('TRANSFER_CHUNK_SIZE', 256 * ONE_KB))

# Draining an unread request body before closing, so the client still sees the error response
LINGER_TIMEOUT = 2.0
LINGER_MAX_BYTES = 64 * ONE_MB

AUTH_REALM = 'LocalShare'

MDNS_SERVICE_TYPE = '_http._tcp.local.'
MDNS_SERVICE_NAME = 'LocalShare'

FALLBACK_UPLOAD_NAME = 'uploaded_file'

logger = getLogger(__name__)


class ShareSettings:
    """
    Immutable runtime configuration of one server. Use build() to get a validated instance.
    """

    def __init__(
        self,
        rootPath,
        maxUploadSize=DEFAULT_MAX_UPLOAD_MB * ONE_MB,
        host=DEFAULT_HOST,
        port=DEFAULT_PORT,
        authUser=None,
        authPassword=None,
        tls=False,
        certFile=None,
        keyFile=None,
        themeDir=None,
        mdns=True,
        archiveChunkSize=ARCHIVE_CHUNK_SIZE,
        archiveQueueSlots=ARCHIVE_QUEUE_SLOTS,
    ):
        self._rootPath = rootPath
        self._maxUploadSize = maxUploadSize
        self._host = host
        self._port = port
        self._authUser = authUser
        self._authPassword = authPassword
        self._tls = tls
        self._certFile = certFile
        self._keyFile = keyFile
        self._themeDir = themeDir
        self._mdns = mdns
        self._archiveChunkSize = archiveChunkSize
        self._archiveQueueSlots = archiveQueueSlots

    @classmethod
    def build(
        cls,
        path='.',
        maxUploadMB=DEFAULT_MAX_UPLOAD_MB,
        host=DEFAULT_HOST,
        port=DEFAULT_PORT,
        username=None,
        password=None,
        tls=False,
        certFile=None,
        keyFile=None,
        themeDir=None,
        mdns=True,
    ):
        """
        Validate user input and canonicalize the shared root.

        Raises:
            ValueError: With a message suitable for the console
        """
        if not os.path.exists(path):
            raise ValueError(f"Path does not exist: {path}")

        if not os.path.isdir(path):
            raise ValueError(f"Path is not a directory: {path}")

        if not 0 <= int(port) <= 65535:
            raise ValueError(f"Port must be between 0 and 65535, got {port}")

        if maxUploadMB is None or maxUploadMB <= 0:
            raise ValueError(f"Maximum upload size must be positive, got {maxUploadMB}")

        if bool(certFile) != bool(keyFile):
            raise ValueError("--cert and --key must be given together")

        for tlsFile in (certFile, keyFile):
            if tlsFile and not os.path.isfile(tlsFile):
                raise ValueError(f"TLS file not found: {tlsFile}")

        if themeDir and not os.path.isdir(themeDir):
            raise ValueError(f"Theme directory not found: {themeDir}")

        if bool(username) != bool(password):
            logger.warning("Basic auth needs both username and password; authentication disabled")
            username = password = None

        return cls(
            canonicalizeRoot(path),
            maxUploadSize=int(maxUploadMB * ONE_MB),
            host=host,
            port=int(port),
            authUser=username,
            authPassword=password,
            tls=bool(tls or certFile),
            certFile=certFile,
            keyFile=keyFile,
            themeDir=os.path.abspath(themeDir) if themeDir else None,
            mdns=mdns,
        )

    @property
    def rootPath(self):
        return self._rootPath

    @property
    def maxUploadSize(self):
        return self._maxUploadSize

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port

    @property
    def authUser(self):
        return self._authUser

    @property
    def authPassword(self):
        return self._authPassword

    @property
    def tls(self):
        return self._tls

    @property
    def certFile(self):
        return self._certFile

    @property
    def keyFile(self):
        return self._keyFile

    @property
    def themeDir(self):
        return self._themeDir

    @property
    def mdns(self):
        return self._mdns

    @property
    def archiveChunkSize(self):
        return self._archiveChunkSize

    @property
    def archiveQueueSlots(self):
        return self._archiveQueueSlots

    def isAuthEnabled(self):
        return bool(self._authUser and self._authPassword)

    def __repr__(self):
        return (
            f"ShareSettings(rootPath={self._rootPath!r}, host={self._host!r}, port={self._port}, "
            f"tls={self._tls}, auth={self.isAuthEnabled()}, maxUploadSize={self._maxUploadSize})"
        )
