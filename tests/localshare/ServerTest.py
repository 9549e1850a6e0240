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
import http.client
import io
import json
import os
import re
import shutil
import socket
import tempfile
import unittest
import warnings
import zipfile

from unittest.mock import patch

import requests

from localshare.Kernel import ShareEvent
from localshare.Utils import ONE_KB

from tests.localshare.ArchiverTest import openFailingOn
from tests.localshare.ServerTestBase import LocalShareServerTestBase, writeFile


class ServerRoutingTest(LocalShareServerTestBase):

    def testRootRedirectsToListing(self):
        response = requests.get(self.url('/'), allow_redirects=False, timeout=10)
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.headers['Location'], '/list/')

    def testHealth(self):
        response = requests.get(self.url('/health'), timeout=10)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, 'OK')
        self.assertTrue(response.headers['Server'].startswith('LocalShare/'))

    def testUnknownRoute(self):
        self.assertEqual(requests.get(self.url('/nothing'), timeout=10).status_code, 404)
        self.assertEqual(requests.post(self.url('/list/'), timeout=10).status_code, 404)

    def testJSONListing(self):
        response = requests.get(self.url('/list/?format=json'), timeout=10)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers['Content-Type'].startswith('application/json'))

        payload = response.json()
        self.assertEqual(payload['current_path'], '/')
        self.assertEqual(
            payload['entries'], [
                {'name': 'docs', 'is_dir': True, 'size': 0},
                {'name': 'uploads', 'is_dir': True, 'size': 0},
                {'name': 'readme.md', 'is_dir': False, 'size': 23},
            ]
        )

    def testNestedJSONListing(self):
        payload = requests.get(self.url('/list/docs?format=json'), timeout=10).json()
        self.assertEqual(payload['current_path'], '/docs')
        self.assertEqual([e['name'] for e in payload['entries']], ['sub', 'a.txt'])

    def testHTMLListing(self):
        response = requests.get(self.url('/list/docs'), timeout=10)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers['Content-Type'].startswith('text/html'))
        self.assertIn('href="/download/docs/a.txt"', response.text)
        self.assertIn('href="/list/docs/sub"', response.text)
        self.assertIn('Up one level', response.text)

    def testModernListing(self):
        response = requests.get(self.url('/list/?format=modern'), timeout=10)
        self.assertEqual(response.status_code, 200)

        match = re.search(r'window\.INITIAL_DATA = (.*);', response.text)
        self.assertIsNotNone(match)
        self.assertEqual(json.loads(match.group(1))['current_path'], '/')

    def testListingMissingDirectory(self):
        response = requests.get(self.url('/list/missing'), timeout=10)
        self.assertEqual(response.status_code, 404)

    def testListingFileIsNotFound(self):
        self.assertEqual(requests.get(self.url('/list/readme.md'), timeout=10).status_code, 404)

    def testTraversalRejected(self):
        # requests would normalize the dot segments away, so send the raw request line
        for target in ('/list/../../etc', '/download/..%2F..%2Fetc%2Fpasswd', '/list/docs/%2E%2E/%2E%2E'):
            with self.subTest(target=target):
                connection = http.client.HTTPConnection('127.0.0.1', self.server.port, timeout=10)
                try:
                    connection.request('GET', target)
                    response = connection.getresponse()
                    body = response.read()
                finally:
                    connection.close()

                self.assertEqual(response.status, 400)
                self.assertNotIn(b'root:', body)

    def testInvalidPercentEncoding(self):
        connection = http.client.HTTPConnection('127.0.0.1', self.server.port, timeout=10)
        try:
            connection.request('GET', '/list/%ff%fe')
            self.assertEqual(connection.getresponse().status, 400)
        finally:
            connection.close()

    def testUnicodeNames(self):
        writeFile(os.path.join(self.rootPath, '資料', '報告 1.txt'), '內容'.encode('utf-8'))

        payload = requests.get(self.url('/list/資料?format=json'), timeout=10).json()
        self.assertEqual(payload['current_path'], '/資料')
        self.assertEqual(payload['entries'][0]['name'], '報告 1.txt')

        response = requests.get(self.url('/download/資料/報告 1.txt'), timeout=10)
        self.assertEqual(response.content.decode('utf-8'), '內容')

    def testAssets(self):
        response = requests.get(self.url('/assets/js/app.js'), timeout=10)
        self.assertEqual(response.status_code, 200)
        self.assertIn('javascript', response.headers['Content-Type'])
        self.assertEqual(response.headers['Cache-Control'], 'no-cache')

        self.assertEqual(requests.get(self.url('/assets/js/missing.js'), timeout=10).status_code, 404)

    def testHeadRequest(self):
        response = requests.head(self.url('/download/readme.md'), timeout=10)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers['Content-Length'], '23')
        self.assertEqual(response.content, b'')


class DownloadTest(LocalShareServerTestBase):

    def testFileDownload(self):
        response = requests.get(self.url('/download/docs/a.txt'), timeout=10)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'hello')
        self.assertEqual(response.headers['Content-Length'], '5')
        self.assertEqual(response.headers['Accept-Ranges'], 'bytes')
        self.assertTrue(response.headers['Content-Type'].startswith('text/plain'))

    def testRangeRequests(self):
        cases = [
            ('bytes=1-3', 206, b'ell', 'bytes 1-3/5'),
            ('bytes=2-', 206, b'llo', 'bytes 2-4/5'),
            ('bytes=-2', 206, b'lo', 'bytes 3-4/5'),
            ('bytes=0-100', 206, b'hello', 'bytes 0-4/5'),
        ]
        for byteRange, status, content, contentRange in cases:
            with self.subTest(byteRange=byteRange):
                response = requests.get(self.url('/download/docs/a.txt'), headers={'Range': byteRange}, timeout=10)
                self.assertEqual(response.status_code, status)
                self.assertEqual(response.content, content)
                self.assertEqual(response.headers['Content-Range'], contentRange)

    def testUnsatisfiableRange(self):
        response = requests.get(self.url('/download/docs/a.txt'), headers={'Range': 'bytes=10-20'}, timeout=10)
        self.assertEqual(response.status_code, 416)
        self.assertEqual(response.headers['Content-Range'], 'bytes */5')

    def testDirectoryDownloadIsZip(self):
        response = requests.get(self.url('/download/docs'), timeout=30)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers['Content-Type'], 'application/zip')
        self.assertEqual(response.headers['Transfer-Encoding'], 'chunked')
        self.assertIn('filename="docs.zip"', response.headers['Content-Disposition'])
        self.assertNotIn('Content-Length', response.headers)

        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            self.assertIsNone(zf.testzip())
            self.assertEqual(sorted(zf.namelist()), ['docs/a.txt', 'docs/sub/b.txt'])
            self.assertEqual(zf.read('docs/a.txt'), b'hello')
            self.assertEqual(zf.read('docs/sub/b.txt'), b'hey')

    def testRootDownloadUsesRootName(self):
        response = requests.get(self.url('/download/'), timeout=30)
        rootName = os.path.basename(self.rootPath)

        self.assertIn(f'filename="{rootName}.zip"', response.headers['Content-Disposition'])
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            names = zf.namelist()

        self.assertIn(f'{rootName}/readme.md', names)
        self.assertIn(f'{rootName}/uploads/', names)
        self.assertTrue(all(name.startswith(f'{rootName}/') for name in names))

    def testLargeDirectoryDownload(self):
        content = os.urandom(300 * ONE_KB)
        writeFile(os.path.join(self.rootPath, 'big', 'random.bin'), content)

        with requests.get(self.url('/download/big'), stream=True, timeout=30) as response:
            data = b''.join(response.iter_content(chunk_size=8192))

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            self.assertEqual(zf.read('big/random.bin'), content)

    def testKeepAliveAfterZipStream(self):
        with requests.Session() as session:
            first = session.get(self.url('/download/docs'), timeout=30)
            second = session.get(self.url('/health'), timeout=10)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.text, 'OK')

    def testClientDisconnectDuringZipStream(self):
        writeFile(os.path.join(self.rootPath, 'big', 'random.bin'), os.urandom(2 * 1024 * ONE_KB))

        sock = socket.create_connection(('127.0.0.1', self.server.port), timeout=10)
        try:
            sock.sendall(b'GET /download/big HTTP/1.1\r\nHost: localhost\r\n\r\n')
            self.assertTrue(sock.recv(1024).startswith(b'HTTP/1.1 200'))
        finally:
            sock.close()

        # The server keeps serving other clients
        self.assertEqual(requests.get(self.url('/health'), timeout=10).text, 'OK')


    def testReadFailureLeavesChunkedBodyIncomplete(self):
        writeFile(os.path.join(self.rootPath, 'docs', 'sub', 'broken.bin'), os.urandom(64 * ONE_KB))

        with patch('localshare.Archiver.open', openFailingOn('broken.bin'), create=True):
            with self.assertRaises(requests.exceptions.ChunkedEncodingError):
                requests.get(self.url('/download/docs'), timeout=30)

        self.assertEqual(requests.get(self.url('/health'), timeout=10).text, 'OK')

    @unittest.skipUnless(hasattr(os, 'symlink'), "symlinks not supported")
    def testLinksLeavingRootNotServed(self):
        outside = os.path.realpath(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, outside, True)
        writeFile(os.path.join(outside, 'passwd'), b'TOP SECRET')
        try:
            os.symlink(outside, os.path.join(self.rootPath, 'docs', 'link'))
        except (OSError, NotImplementedError):
            self.skipTest("Cannot create symlinks here")

        payload = requests.get(self.url('/list/docs?format=json'), timeout=10).json()
        self.assertEqual([entry['name'] for entry in payload['entries']], ['sub', 'a.txt'])

        response = requests.get(self.url('/download/docs'), timeout=30)
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            self.assertEqual(sorted(zf.namelist()), ['docs/a.txt', 'docs/sub/b.txt'])

        self.assertEqual(requests.get(self.url('/download/docs/link/passwd'), timeout=10).status_code, 400)


class UploadTest(LocalShareServerTestBase):

    maxUploadSize = 64 * ONE_KB

    def testUploadIntoDirectory(self):
        files = [
            ('file', ('a.txt', b'first')),
            ('file', ('a.txt', b'second')),
            ('file', ('../../evil.txt', b'nope')),
        ]
        response = requests.post(self.url('/upload?path=/uploads'), files=files, data={'note': 'x'}, timeout=10)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, 'Uploaded 3 file(s)')
        self.assertEqual(sorted(os.listdir(os.path.join(self.rootPath, 'uploads'))), ['a(1).txt', 'a.txt', 'evil.txt'])
        with open(os.path.join(self.rootPath, 'uploads', 'a(1).txt'), 'rb') as f:
            self.assertEqual(f.read(), b'second')

    def testUploadDefaultsToRoot(self):
        response = requests.post(self.url('/upload'), files={'file': ('new.bin', b'\x00\x01')}, timeout=10)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(os.path.isfile(os.path.join(self.rootPath, 'new.bin')))

    def testUploadEvent(self):
        received = []

        def onUpload(path, size, **kwargs):
            received.append((os.path.basename(path), size))

        ShareEvent.uploadCreate.subscribe(onUpload)
        try:
            requests.post(self.url('/upload?path=/uploads'), files={'file': ('e.txt', b'event')}, timeout=10)
        finally:
            ShareEvent.uploadCreate.unsubscribe(onUpload)

        self.assertEqual(received, [('e.txt', 5)])

    def testUploadTooLarge(self):
        files = {'file': ('big.bin', os.urandom(128 * ONE_KB))}
        response = requests.post(self.url('/upload?path=/uploads'), files=files, timeout=10)

        self.assertEqual(response.status_code, 413)
        self.assertEqual(os.listdir(os.path.join(self.rootPath, 'uploads')), [])

    def testUploadTraversalRejected(self):
        response = requests.post(self.url('/upload?path=../..'), files={'file': ('x.txt', b'x')}, timeout=10)
        self.assertEqual(response.status_code, 400)

    def testUploadInvalidPercentEncoding(self):
        response = requests.post(self.url('/upload?path=%ff%fe'), files={'file': ('x.txt', b'x')}, timeout=10)

        self.assertEqual(response.status_code, 400)
        self.assertFalse(os.path.exists(os.path.join(self.rootPath, 'x.txt')))

    def testUploadMissingDirectory(self):
        response = requests.post(self.url('/upload?path=/missing'), files={'file': ('x.txt', b'x')}, timeout=10)
        self.assertEqual(response.status_code, 404)


class ClipboardTest(LocalShareServerTestBase):

    maxUploadSize = 16 * ONE_KB

    def testGetAndSet(self):
        self.assertEqual(requests.get(self.url('/api/clipboard'), timeout=10).text, '')

        response = requests.post(self.url('/api/clipboard'), data='共享文字 shared'.encode('utf-8'), timeout=10)
        self.assertEqual(response.status_code, 200)

        response = requests.get(self.url('/api/clipboard'), timeout=10)
        self.assertEqual(response.content.decode('utf-8'), '共享文字 shared')
        self.assertEqual(self.clipboard.get(), '共享文字 shared')

    def testClear(self):
        self.clipboard.set('old')
        requests.post(self.url('/api/clipboard'), data=b'', timeout=10)
        self.assertEqual(self.clipboard.get(), '')

    def testTooLarge(self):
        response = requests.post(self.url('/api/clipboard'), data=b'x' * (32 * ONE_KB), timeout=10)
        self.assertEqual(response.status_code, 413)
        self.assertEqual(self.clipboard.get(), '')


class AuthTest(LocalShareServerTestBase):

    authUser = 'alice'
    authPassword = 's3cret:pass'

    def testChallengeWithoutCredentials(self):
        for path in ('/health', '/list/', '/download/docs/a.txt', '/api/clipboard'):
            with self.subTest(path=path):
                response = requests.get(self.url(path), timeout=10)
                self.assertEqual(response.status_code, 401)
                self.assertIn('Basic realm="LocalShare"', response.headers['WWW-Authenticate'])

    def testWrongCredentials(self):
        for auth in (('alice', 'wrong'), ('bob', 's3cret:pass')):
            with self.subTest(auth=auth):
                self.assertEqual(requests.get(self.url('/health'), auth=auth, timeout=10).status_code, 401)

    def testMalformedHeader(self):
        for header in ('Basic !!!notbase64', 'Bearer token', 'Basic ' + base64.b64encode(b'nocolon').decode()):
            with self.subTest(header=header):
                response = requests.get(self.url('/health'), headers={'Authorization': header}, timeout=10)
                self.assertEqual(response.status_code, 401)

    def testValidCredentials(self):
        auth = (self.authUser, self.authPassword)
        self.assertEqual(requests.get(self.url('/health'), auth=auth, timeout=10).text, 'OK')

        response = requests.post(
            self.url('/upload?path=/uploads'), files={'file': ('a.txt', b'a')}, auth=auth, timeout=10
        )
        self.assertEqual(response.status_code, 200)

    def testUploadRejectedWithoutCredentials(self):
        response = requests.post(self.url('/upload?path=/uploads'), files={'file': ('a.txt', b'a')}, timeout=10)
        self.assertEqual(response.status_code, 401)
        self.assertEqual(os.listdir(os.path.join(self.rootPath, 'uploads')), [])


class TLSServerTest(LocalShareServerTestBase):

    tls = True

    def testHTTPSWithSelfSignedCertificate(self):
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            response = requests.get(self.url('/health'), verify=False, timeout=10)

        self.assertEqual(response.text, 'OK')
        self.assertTrue(self.server.tls)

    def testPlainHTTPClientDoesNotStopServer(self):
        with self.assertRaises(requests.exceptions.ConnectionError):
            requests.get(f'http://127.0.0.1:{self.server.port}/health', timeout=10)

        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            self.assertEqual(requests.get(self.url('/health'), verify=False, timeout=10).text, 'OK')


if __name__ == '__main__':
    unittest.main()
