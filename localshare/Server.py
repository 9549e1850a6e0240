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

import base64
import binascii
import hmac
import json
import os
import re
import socket
import ssl
import sys

from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, quote, unquote, urlparse

from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.formparser import parse_form_data

from localshare.Archiver import ArchiveJob
from localshare.Assets import findAsset, guessAssetType
from localshare.Clipboard import SharedText
from localshare.Errors import (
    AppError, BadRequestError, InternalServerError, InvalidPathError, NotFoundError, PayloadTooLargeError
)
from localshare.Html import renderListingPage, renderModernPage
from localshare.Kernel import PUBLIC_VERSION, ShareEvent, getLogger
from localshare.Listing import buildListingPayload, listDirectory
from localshare.Paths import relativeRequestPath, resolvePath
from localshare.Settings import AUTH_REALM, LINGER_MAX_BYTES, LINGER_TIMEOUT, TRANSFER_CHUNK_SIZE
from localshare.TLS import createSSLContext
from localshare.Upload import receiveUploads
from localshare.Utils import decodeText

DISCONNECT_ERRORS = (BrokenPipeError, ConnectionResetError, ConnectionAbortedError)

logger = getLogger(__name__)


class AuthMixin:
    """
    HTTP Basic authentication gate for BaseHTTPRequestHandler.

    Active only when the server settings carry both a user name and a password.
    """
    REALM = AUTH_REALM

    def handleAuthentication(self):
        """
        Checks the 'Authorization' header against the configured credentials.

        Returns:
            bool: True if the request may proceed; otherwise a 401 has already been sent
        """
        settings = self.server.settings
        if not settings.isAuthEnabled():
            return True

        authHeader = self.headers.get('Authorization')

        if not authHeader or not authHeader.startswith('Basic '):
            logger.debug("Authentication challenge sent: no or non-Basic auth header")
            self.sendAuthChallenge()
            return False

        try:
            credentials = base64.b64decode(authHeader[len('Basic '):].strip(), validate=True).decode('utf-8')
            username, password = credentials.split(':', 1)
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Error decoding credentials: {e}")
            self.sendAuthChallenge()
            return False

        userMatches = hmac.compare_digest(username.encode(), settings.authUser.encode())
        passwordMatches = hmac.compare_digest(password.encode(), settings.authPassword.encode())

        if userMatches and passwordMatches:
            return True

        logger.warning(f"Authentication failed for user '{username}' from {self.client_address[0]}")
        self.sendAuthChallenge()
        return False

    def sendAuthChallenge(self):
        """
        Sends a 401 Unauthorized response, prompting the client for credentials.
        """
        html = b'<h1>401 Unauthorized</h1><p>Authentication required to access this resource.</p>'

        # The request body, if any, is never read
        self.close_connection = True

        self.send_response(HTTPStatus.UNAUTHORIZED)
        self.send_header('WWW-Authenticate', f'Basic realm="{self.REALM}", charset="UTF-8"')
        self.send_header('Content-Type', 'text/html; charset=utf-8')
        self.send_header('Content-Length', str(len(html)))
        self.send_header('Connection', 'close')
        self.end_headers()

        if self.command != 'HEAD':
            self.wfile.write(html)


class ShareHandler(AuthMixin, SimpleHTTPRequestHandler):

    protocol_version = 'HTTP/1.1'
    server_version = f'LocalShare/{PUBLIC_VERSION}'

    def __init__(self, *args, **kwargs):
        # Exact paths
        self.getPathMap = {
            '/': self._handleRedirect,
            '/health': self._handleHealth,
            '/api/clipboard': self._handleClipboardGet,
        }

        # Paths followed by a client supplied path
        self.getPrefixMap = {
            '/list': self._handleList,
            '/download': self._handleDownload,
            '/assets': self._handleAssets,
        }

        self.postPathMap = {
            '/upload': self._handleUpload,
            '/api/clipboard': self._handleClipboardPost,
        }

        self._responseStarted = False
        self._unreadBody = False

        super().__init__(*args, **kwargs)

    @property
    def settings(self):
        return self.server.settings

    def _route(self, path, pathMap, prefixMap=None):
        """
        Returns:
            tuple: (handler, remainder). remainder is None for exact routes and the still
                   percent-encoded tail for prefix routes; handler is None when nothing matches.
        """
        handler = pathMap.get(path)
        if handler:
            return handler, None

        for prefix, handler in (prefixMap or {}).items():
            if path == prefix or path.startswith(prefix + '/'):
                return handler, path[len(prefix):]

        return None, None

    def _decodePath(self, encoded):
        try:
            return unquote(encoded, errors='strict')
        except UnicodeDecodeError as e:
            raise InvalidPathError() from e

    def _parseQuery(self, query):
        try:
            return parse_qs(query, errors='strict')
        except UnicodeDecodeError as e:
            raise InvalidPathError() from e

    def _dispatch(self, pathMap, prefixMap=None):
        if not self.handleAuthentication():
            return

        parsedURL = urlparse(self.path)

        try:
            args = self._parseQuery(parsedURL.query)
            handler, remainder = self._route(parsedURL.path, pathMap, prefixMap)
            if handler is None:
                raise NotFoundError()

            if remainder is None:
                handler(args)
            else:
                handler(self._decodePath(remainder), args)
        except DISCONNECT_ERRORS as e:
            logger.info(f"Client {self.client_address[0]} disconnected: {e}")
            self.close_connection = True
        except AppError as e:
            self._sendError(e)
        except OSError as e:
            self._sendError(AppError.fromOSError(e))
        except Exception as e:
            logger.exception(f"Unexpected error while handling {self.command} {self.path}: {e}")
            self._sendError(InternalServerError())

    def _sendError(self, error):
        cause = error.__cause__
        if isinstance(error, InternalServerError):
            logger.error(f"{self.command} {self.path} failed: {cause or error}")
        else:
            logger.debug(f"{self.command} {self.path} -> {error.status.value}: {cause or error}")

        if self._responseStarted:
            # Too late for a status line, all that is left is to drop the connection.
            self.close_connection = True
            return

        body = error.message.encode('utf-8')
        try:
            self.send_response(error.status)
            self.send_header('Content-Type', 'text/plain; charset=utf-8')
            self.send_header('Content-Length', str(len(body)))
            self.end_headers()
            if self.command != 'HEAD':
                self.wfile.write(body)
        except DISCONNECT_ERRORS as e:
            logger.info(f"Client {self.client_address[0]} disconnected: {e}")
            self.close_connection = True

    def _sendBytes(self, payload: bytes, ctype: str = 'text/plain; charset=utf-8', status=HTTPStatus.OK,
                   headers=None):
        self.send_response(status)
        self.send_header('Content-Type', ctype)
        self.send_header('Content-Length', str(len(payload)))
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.end_headers()

        if self.command != 'HEAD':
            self.wfile.write(payload)

    # GET handlers
    def _handleRedirect(self, args):
        self.send_response(HTTPStatus.FOUND)
        self.send_header('Location', '/list/')
        self.send_header('Content-Length', '0')
        self.end_headers()

    def _handleHealth(self, args):
        self._sendBytes(b'OK')

    def _handleList(self, requestPath, args):
        directory = resolvePath(self.settings.rootPath, requestPath)
        entries = listDirectory(directory, root=self.settings.rootPath)
        currentPath = relativeRequestPath(self.settings.rootPath, directory)

        outputFormat = args.get('format', ['html'])[0].lower()

        if outputFormat == 'json':
            payload = json.dumps(buildListingPayload(currentPath, entries)).encode('utf-8')
            self._sendBytes(payload, 'application/json; charset=utf-8')
        elif outputFormat == 'modern':
            page = renderModernPage(currentPath, entries, themeDir=self.settings.themeDir)
            self._sendBytes(page.encode('utf-8'), 'text/html; charset=utf-8')
        else:
            page = renderListingPage(
                currentPath, entries, self.settings.maxUploadSize, themeDir=self.settings.themeDir
            )
            self._sendBytes(page.encode('utf-8'), 'text/html; charset=utf-8')

    def _handleDownload(self, requestPath, args):
        path = resolvePath(self.settings.rootPath, requestPath)

        if os.path.isdir(path):
            self._sendArchive(path)
        elif os.path.isfile(path):
            self._sendFile(path)
        else:
            raise NotFoundError()

    def _handleAssets(self, requestPath, args):
        assetPath = findAsset(requestPath, self.settings.themeDir)
        if assetPath is None:
            raise NotFoundError()

        with open(assetPath, 'rb') as f:
            content = f.read()

        self._sendBytes(content, guessAssetType(assetPath), headers={'Cache-Control': 'no-cache'})

    def _handleClipboardGet(self, args):
        self._sendBytes(self.server.clipboard.get().encode('utf-8'))

    # POST handlers
    def _readContentLength(self):
        try:
            length = int(self.headers.get('Content-Length', '0'))
        except ValueError as e:
            raise BadRequestError('Invalid Content-Length') from e

        if length < 0:
            raise BadRequestError('Invalid Content-Length')

        if length > self.settings.maxUploadSize:
            logger.warning(
                f"Rejected {length} byte body from {self.client_address[0]}, "
                f"limit is {self.settings.maxUploadSize}"
            )
            raise PayloadTooLargeError()

        return length

    def _handleUpload(self, args):
        length = self._readContentLength()

        targetDir = resolvePath(self.settings.rootPath, args.get('path', ['/'])[0])
        if not os.path.isdir(targetDir):
            raise NotFoundError()

        environ = {
            'REQUEST_METHOD': 'POST',
            'CONTENT_TYPE': self.headers.get('Content-Type', ''),
            'CONTENT_LENGTH': str(length),
            'wsgi.input': self.rfile,
        }

        try:
            stream, form, files = parse_form_data(environ, max_content_length=self.settings.maxUploadSize)
        except RequestEntityTooLarge as e:
            raise PayloadTooLargeError() from e
        self._unreadBody = False

        storages = [storage for key, storage in files.items(multi=True)]
        try:
            count = receiveUploads(targetDir, ((storage.filename, storage.stream) for storage in storages))
        finally:
            for storage in storages:
                storage.close()

        self._sendBytes(f'Uploaded {count} file(s)'.encode('utf-8'))

    def _handleClipboardPost(self, args):
        length = self._readContentLength()
        body = self.rfile.read(length) if length else b''
        self._unreadBody = False

        try:
            text = decodeText(body)
        except (UnicodeDecodeError, LookupError) as e:
            raise InternalServerError() from e

        self.server.clipboard.set(text)
        self._sendBytes(b'')

    # Responses
    def _parseByteRange(self, byteRange, size):
        """
        Parse a single 'bytes=' range.

        Returns:
            tuple or None: Inclusive (start, end); None if the range can't be satisfied
        """
        reg = re.fullmatch(r'\s*bytes=(\d*)-(\d*)\s*', byteRange)
        if not reg or not any(reg.groups()):
            return None

        start, end = reg.groups()
        if not start:
            # Suffix range: the last N bytes
            length = int(end)
            if length == 0 or size == 0:
                return None
            return max(0, size - length), size - 1

        start = int(start)
        end = int(end) if end else size - 1
        if start >= size or start > end:
            return None

        return start, min(end, size - 1)

    def _sendFile(self, path):
        with open(path, 'rb') as f:
            size = os.fstat(f.fileno()).st_size
            ctype = self.guess_type(path)
            start, end = 0, size - 1

            if 'Range' in self.headers:
                byteRange = self._parseByteRange(self.headers['Range'], size)
                if byteRange is None:
                    self._sendBytes(
                        b'', status=HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE,
                        headers={'Content-Range': f'bytes */{size}'}
                    )
                    return

                start, end = byteRange
                self.send_response(HTTPStatus.PARTIAL_CONTENT)
                self.send_header('Content-Range', f'bytes {start}-{end}/{size}')
            else:
                self.send_response(HTTPStatus.OK)

            self.send_header('Content-Type', ctype)
            self.send_header('Content-Length', str(end - start + 1))
            self.send_header('Accept-Ranges', 'bytes')
            self.send_header('Last-Modified', self.date_time_string(os.fstat(f.fileno()).st_mtime))
            self.end_headers()

            if self.command == 'HEAD':
                return

            f.seek(start)
            remaining = end - start + 1
            while remaining > 0:
                data = f.read(min(TRANSFER_CHUNK_SIZE, remaining))
                if not data:
                    # File shrank under us, the promised length can't be met any more
                    self.close_connection = True
                    break

                self.wfile.write(data)
                remaining -= len(data)

    def _contentDisposition(self, fileName):
        asciiName = fileName.encode('ascii', 'replace').decode('ascii').replace('"', '_').replace('\\', '_')
        return f"attachment; filename=\"{asciiName}\"; filename*=UTF-8''{quote(fileName, safe='')}"

    def _writeChunk(self, data):
        self.wfile.write(f'{len(data):X}\r\n'.encode('ascii') + data + b'\r\n')

    def _sendArchive(self, path):
        archiveRootName = os.path.basename(path.rstrip(os.sep)) or 'archive'

        self.send_response(HTTPStatus.OK)
        self.send_header('Content-Type', 'application/zip')
        self.send_header('Content-Disposition', self._contentDisposition(f'{archiveRootName}.zip'))
        self.send_header('Transfer-Encoding', 'chunked')
        self.end_headers()

        if self.command == 'HEAD':
            return

        logger.info(f"Streaming {path} as {archiveRootName}.zip to {self.client_address[0]}")

        job = ArchiveJob(
            path,
            archiveRootName,
            chunkSize=self.settings.archiveChunkSize,
            queueSlots=self.settings.archiveQueueSlots,
            sharedRoot=self.settings.rootPath,
        )
        try:
            for chunk in job:
                self._writeChunk(chunk)

            if job.completed:
                self.wfile.write(b'0\r\n\r\n')
            else:
                # No terminating chunk, so the client sees an incomplete transfer
                self.close_connection = True
        finally:
            job.close()

    # Override http.server methods
    def do_GET(self):
        self._dispatch(self.getPathMap, self.getPrefixMap)

    def do_HEAD(self):
        self._dispatch(self.getPathMap, self.getPrefixMap)

    def do_POST(self):
        self._unreadBody = True
        self._dispatch(self.postPathMap)

    def send_response(self, code, message=None):
        self._responseStarted = True
        super().send_response(code, message)

    def end_headers(self):
        if self.command == 'POST' and not self.close_connection:
            # Error paths may leave part of the body unread
            self.send_header('Connection', 'close')
        super().end_headers()

    def handle_one_request(self):
        self._responseStarted = False
        self._unreadBody = False
        super().handle_one_request()

    def finish(self):
        if self._unreadBody:
            self._lingeringClose()
        super().finish()

    def _lingeringClose(self):
        """
        Half-close, then drain what the client is still sending.

        Closing a socket with unread input resets the connection, and the client
        would lose the error response it has not read yet.
        """
        try:
            self.wfile.flush()
            self.connection.shutdown(socket.SHUT_WR)
            self.connection.settimeout(LINGER_TIMEOUT)

            drained = 0
            while drained < LINGER_MAX_BYTES:
                data = self.rfile.read1(TRANSFER_CHUNK_SIZE)
                if not data:
                    break
                drained += len(data)
        except OSError as e:
            logger.debug(f"Lingering close of {self.client_address[0]} ended: {e}")

    def setup(self):
        super().setup()
        if isinstance(self.connection, ssl.SSLSocket):
            # Handshake on the worker thread, never on the accept loop
            self.connection.do_handshake()

    def log_message(self, format, *args):
        logger.info(f"{self.address_string()} - {format % args}")


class Server(ThreadingHTTPServer):

    request_queue_size = 16
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, settings, serverAddress=None, requestHandlerClass=None, sslContext=None, clipboard=None):
        self.settings = settings
        self.clipboard = clipboard if clipboard is not None else SharedText()
        self.sslContext = sslContext

        if serverAddress is None:
            serverAddress = (settings.host, settings.port)

        if requestHandlerClass is None:
            requestHandlerClass = ShareHandler

        super().__init__(serverAddress, requestHandlerClass)

        if sslContext is not None:
            self.socket = sslContext.wrap_socket(self.socket, server_side=True, do_handshake_on_connect=False)

    @property
    def port(self):
        return self.server_address[1]

    @property
    def tls(self):
        return self.sslContext is not None

    def handle_error(self, request, clientAddress):
        error = sys.exception()

        if isinstance(error, (ssl.SSLError, *DISCONNECT_ERRORS)):
            logger.debug(f"Connection from {clientAddress[0]} dropped: {error}")
            return

        logger.exception(error)

    def start(self):
        ShareEvent.serverStart.trigger(server=self, settings=self.settings)
        self.serve_forever()


def createServer(settings, handlerClass=None, clipboard=None, extraIPs=()):
    """
    Factory for a Server bound to settings.host/settings.port, with TLS when configured.
    """
    sslContext = None
    if settings.tls:
        sslContext = createSSLContext(settings.certFile, settings.keyFile, extraIPs=extraIPs)

    return Server(settings, requestHandlerClass=handlerClass, sslContext=sslContext, clipboard=clipboard)
