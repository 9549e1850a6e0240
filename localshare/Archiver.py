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

import datetime
import os
import queue
import stat
import struct
import threading
import zipfile
import zlib

from typing import Iterator

from localshare.Kernel import getLogger, ShareEvent
from localshare.Paths import isContained
from localshare.Settings import ARCHIVE_CHUNK_SIZE, ARCHIVE_CLOSE_TIMEOUT, ARCHIVE_QUEUE_SLOTS

logger = getLogger(__name__)

ZIP32_LIMIT = 0xFFFFFFFF
ZIP32_ENTRY_LIMIT = 0xFFFF

# How often a producer blocked on a full queue re-checks for cancellation (seconds)
CANCEL_POLL_INTERVAL = 0.1


class ArchiveCancelled(Exception):
    """Raised inside the producer when the consumer has gone away."""
    pass


class ZipStreamWriter:
    """
    Forward-only ZIP writer.

    Entries are written as local header, deflated data and data descriptor, so nothing
    is ever seeked back or held in memory beyond one read block. The central directory
    accumulates one small record per entry and is written by close().

    Notes:
    - Every file entry is deflated (method 8); directory entries are stored empty
    - Names are UTF-8 (flag bit 11) and must use '/' separators
    - ZIP64 records are emitted only when sizes, offsets or entry count need them
    """

    LOCAL_FILE_HEADER_SIGNATURE = struct.unpack('<I', zipfile.stringFileHeader)[0] # 0x04034b50
    CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringCentralDir)[0] # 0x02014b50
    END_OF_CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringEndArchive)[0] # 0x06054b50
    ZIP64_END_OF_CENTRAL_DIR_SIGNATURE = 0x06064b50
    ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE = 0x07064b50
    DATA_DESCRIPTOR_SIGNATURE = 0x08074b50
    ZIP64_EXTRA_TAG = 0x0001

    STORE = zipfile.ZIP_STORED
    DEFLATE = zipfile.ZIP_DEFLATED

    DATA_DESCRIPTOR_FLAG = 0x0008
    UTF8_FLAG = 0x0800

    VERSION_DEFAULT = 20
    VERSION_ZIP64 = 45

    # MS-DOS attributes
    ATTR_DIRECTORY = 0x10
    ATTR_ARCHIVE = 0x20

    def __init__(self, sink, compressLevel=zlib.Z_DEFAULT_COMPRESSION, readSize=ARCHIVE_CHUNK_SIZE):
        """
        Args:
            sink: Callable receiving every produced bytes object, in order
            compressLevel: zlib level for file entries
            readSize: Block size used to read source files
        """
        self._sink = sink
        self._compressLevel = compressLevel
        self._readSize = readSize
        self._offset = 0
        self._centralDir = []
        self._closed = False

    @property
    def bytesWritten(self) -> int:
        return self._offset

    @property
    def entryCount(self) -> int:
        return len(self._centralDir)

    @staticmethod
    def _unixToDosTime(timestamp):
        """
        Convert a Unix timestamp to (dosTime, dosDate).

        DOS time: bits 0-4 seconds/2, 5-10 minutes, 11-15 hours.
        DOS date: bits 0-4 day, 5-8 month, 9-15 year-1980 (clamped to 1980-2107).
        """
        if timestamp is None or timestamp <= 0:
            return 0, (1 << 5) | 1 # 1980-01-01 00:00:00

        try:
            dt = datetime.datetime.fromtimestamp(timestamp)
        except (ValueError, OSError, OverflowError):
            return 0, (1 << 5) | 1

        year = max(1980, min(2107, dt.year))

        dosTime = ((dt.hour & 0x1F) << 11) | ((dt.minute & 0x3F) << 5) | ((dt.second // 2) & 0x1F)
        dosDate = (((year - 1980) & 0x7F) << 9) | ((dt.month & 0x0F) << 5) | (dt.day & 0x1F)
        return dosTime, dosDate

    def _write(self, data):
        if data:
            self._sink(data)
            self._offset += len(data)

    def _checkOpen(self, arcname):
        if self._closed:
            raise ValueError('ZIP stream already closed')

        if not arcname or arcname.startswith('/') or '\\' in arcname:
            raise ValueError(f"Invalid entry name: {arcname!r}")

    def _makeLocalFileHeader(self, arcnameBytes, flags, method, mtime):
        dosTime, dosDate = self._unixToDosTime(mtime)
        versionNeeded = self.VERSION_ZIP64 if self._offset >= ZIP32_LIMIT else self.VERSION_DEFAULT

        # CRC and sizes stay zero here, the data descriptor carries them
        header = struct.pack(
            '<IHHHHHIIIHH',
            self.LOCAL_FILE_HEADER_SIGNATURE,
            versionNeeded,
            flags,
            method,
            dosTime,
            dosDate,
            0, # CRC-32
            0, # Compressed size
            0, # Uncompressed size
            len(arcnameBytes),
            0, # Extra field length
        )
        return header + arcnameBytes

    def _makeDataDescriptor(self, crc, compressedSize, uncompressedSize):
        if compressedSize >= ZIP32_LIMIT or uncompressedSize >= ZIP32_LIMIT:
            return struct.pack(
                '<IIQQ', self.DATA_DESCRIPTOR_SIGNATURE, crc & 0xFFFFFFFF, compressedSize, uncompressedSize
            )

        return struct.pack(
            '<IIII', self.DATA_DESCRIPTOR_SIGNATURE, crc & 0xFFFFFFFF, compressedSize, uncompressedSize
        )

    def _makeCentralDirHeader(self, record):
        compressedSize = record['compressedSize']
        uncompressedSize = record['uncompressedSize']
        offset = record['offset']

        # ZIP64 extra field lists only the overflowing values, in this fixed order
        extraData = b''
        if uncompressedSize >= ZIP32_LIMIT:
            extraData += struct.pack('<Q', uncompressedSize)
        if compressedSize >= ZIP32_LIMIT:
            extraData += struct.pack('<Q', compressedSize)
        if offset >= ZIP32_LIMIT:
            extraData += struct.pack('<Q', offset)

        extraField = b''
        version = self.VERSION_DEFAULT
        if extraData:
            extraField = struct.pack('<HH', self.ZIP64_EXTRA_TAG, len(extraData)) + extraData
            version = self.VERSION_ZIP64

        dosTime, dosDate = self._unixToDosTime(record['mtime'])
        arcnameBytes = record['arcname']

        header = struct.pack(
            '<IHHHHHHIIIHHHHHII',
            self.CENTRAL_DIR_SIGNATURE,
            version, # Version made by
            version, # Version needed to extract
            record['flags'],
            record['method'],
            dosTime,
            dosDate,
            record['crc'] & 0xFFFFFFFF,
            min(compressedSize, ZIP32_LIMIT),
            min(uncompressedSize, ZIP32_LIMIT),
            len(arcnameBytes),
            len(extraField),
            0, # File comment length
            0, # Disk number start
            0, # Internal file attributes
            self.ATTR_DIRECTORY if record['isDir'] else self.ATTR_ARCHIVE,
            min(offset, ZIP32_LIMIT),
        )
        return header + arcnameBytes + extraField

    def addDirectory(self, arcname, mtime=None):
        """Add an empty directory entry; a trailing '/' is appended when missing."""
        if not arcname.endswith('/'):
            arcname += '/'
        self._checkOpen(arcname)

        arcnameBytes = arcname.encode('utf-8')
        offset = self._offset
        self._write(self._makeLocalFileHeader(arcnameBytes, self.UTF8_FLAG, self.STORE, mtime))

        self._centralDir.append({
            'arcname': arcnameBytes,
            'offset': offset,
            'flags': self.UTF8_FLAG,
            'method': self.STORE,
            'crc': 0,
            'compressedSize': 0,
            'uncompressedSize': 0,
            'isDir': True,
            'mtime': mtime,
        })

    def addFile(self, arcname, fileObj, mtime=None):
        """
        Deflate the whole content of an open binary file object into a new entry.

        The local header is written before the first read, so an OSError raised by the
        file object leaves a partial entry behind; the caller must stop writing then.

        Returns:
            tuple: (uncompressedSize, compressedSize)
        """
        self._checkOpen(arcname)

        arcnameBytes = arcname.encode('utf-8')
        flags = self.DATA_DESCRIPTOR_FLAG | self.UTF8_FLAG
        offset = self._offset
        self._write(self._makeLocalFileHeader(arcnameBytes, flags, self.DEFLATE, mtime))

        compressor = zlib.compressobj(self._compressLevel, zlib.DEFLATED, -zlib.MAX_WBITS)
        crc = 0
        uncompressedSize = 0
        compressedSize = 0

        while True:
            data = fileObj.read(self._readSize)
            if not data:
                break

            crc = zlib.crc32(data, crc)
            uncompressedSize += len(data)

            compressed = compressor.compress(data)
            if compressed:
                compressedSize += len(compressed)
                self._write(compressed)

        compressed = compressor.flush()
        compressedSize += len(compressed)
        self._write(compressed)

        self._write(self._makeDataDescriptor(crc, compressedSize, uncompressedSize))

        self._centralDir.append({
            'arcname': arcnameBytes,
            'offset': offset,
            'flags': flags,
            'method': self.DEFLATE,
            'crc': crc,
            'compressedSize': compressedSize,
            'uncompressedSize': uncompressedSize,
            'isDir': False,
            'mtime': mtime,
        })

        return uncompressedSize, compressedSize

    def close(self):
        """Write the central directory and the end records. Idempotent."""
        if self._closed:
            return
        self._closed = True

        centralDirStart = self._offset
        for record in self._centralDir:
            self._write(self._makeCentralDirHeader(record))
        centralDirSize = self._offset - centralDirStart

        entryCount = len(self._centralDir)
        needsZip64 = (
            entryCount >= ZIP32_ENTRY_LIMIT or centralDirSize >= ZIP32_LIMIT or centralDirStart >= ZIP32_LIMIT
        )

        if needsZip64:
            zip64EocdOffset = self._offset
            self._write(
                struct.pack(
                    '<IQHHIIQQQQ',
                    self.ZIP64_END_OF_CENTRAL_DIR_SIGNATURE,
                    44, # Size of the remaining record
                    self.VERSION_ZIP64,
                    self.VERSION_ZIP64,
                    0, # Number of this disk
                    0, # Disk where central directory starts
                    entryCount,
                    entryCount,
                    centralDirSize,
                    centralDirStart,
                )
            )
            self._write(
                struct.pack('<IIQI', self.ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE, 0, zip64EocdOffset, 1)
            )

        self._write(
            struct.pack(
                '<IHHHHIIH',
                self.END_OF_CENTRAL_DIR_SIGNATURE,
                0,
                0,
                min(entryCount, ZIP32_ENTRY_LIMIT),
                min(entryCount, ZIP32_ENTRY_LIMIT),
                min(centralDirSize, ZIP32_LIMIT),
                min(centralDirStart, ZIP32_LIMIT),
                0, # Comment length
            )
        )


class ArchiveJob:
    """
    One directory-to-ZIP stream.

    A producer thread walks the tree and feeds fixed-size chunks into a bounded queue;
    iterating the job drains it. A full queue blocks the producer, so at most
    queueSlots * chunkSize bytes of output exist at any time. close() cancels the walk
    and joins the producer (bounded by a timeout); it is safe to call at any point, more than once.

    Only regular files are archived. Symlinks are followed to files that stay below sharedRoot,
    directory symlinks are not descended.
    """

    _END = object()

    def __init__(self, rootPath, archiveRootName, chunkSize=ARCHIVE_CHUNK_SIZE, queueSlots=ARCHIVE_QUEUE_SLOTS,
                 sharedRoot=None):
        self.rootPath = rootPath
        # Links resolving outside sharedRoot are left out of the archive
        self.sharedRoot = os.path.realpath(sharedRoot or rootPath)
        self.archiveRootName = archiveRootName
        self.chunkSize = chunkSize

        self._queue = queue.Queue(maxsize=queueSlots)
        self._cancelled = threading.Event()
        self._buffer = bytearray()
        self._thread = None
        self._writer = None
        self._completed = False

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    @property
    def completed(self):
        """True once the central directory has been produced, i.e. the archive is whole."""
        return self._completed

    @property
    def writer(self):
        return self._writer

    def start(self):
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._run, name=f'archive-{self.archiveRootName}', daemon=True
            )
            self._thread.start()

    def __iter__(self) -> Iterator[bytes]:
        self.start()

        while True:
            chunk = self._queue.get()
            if chunk is self._END:
                return
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()

    def close(self, timeout=ARCHIVE_CLOSE_TIMEOUT):
        self._cancelled.set()

        if self._thread is None:
            return

        # Free a slot so a producer blocked in put() notices the flag immediately
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning(f"Archive producer for {self.rootPath} still busy after {timeout}s, abandoning it")

    def _put(self, item):
        while True:
            if self._cancelled.is_set():
                raise ArchiveCancelled()

            try:
                self._queue.put(item, timeout=CANCEL_POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def _sink(self, data):
        self._buffer.extend(data)

        while len(self._buffer) >= self.chunkSize:
            chunk = bytes(self._buffer[:self.chunkSize])
            del self._buffer[:self.chunkSize]
            self._put(chunk)

    def _flush(self):
        if self._buffer:
            chunk = bytes(self._buffer)
            self._buffer.clear()
            self._put(chunk)

    def _entryPrefix(self, dirPath):
        if dirPath == self.rootPath:
            return self.archiveRootName

        relative = os.path.relpath(dirPath, self.rootPath).replace(os.sep, '/')
        return f'{self.archiveRootName}/{relative}'

    def _archiveFile(self, dirEntry, arcname):
        try:
            fileStat = dirEntry.stat()
        except FileNotFoundError:
            logger.warning(f"Skipping file removed during archiving: {dirEntry.path}")
            return

        # FIFOs, sockets and devices could block open() or never end
        if not stat.S_ISREG(fileStat.st_mode):
            logger.warning(f"Skipping special file: {dirEntry.path}")
            return

        try:
            f = open(dirEntry.path, 'rb')
        except FileNotFoundError:
            logger.warning(f"Skipping file removed during archiving: {dirEntry.path}")
            return

        with f:
            self._writer.addFile(arcname, f, mtime=fileStat.st_mtime)

    def _walk(self):
        stack = [self.rootPath]

        while stack:
            if self._cancelled.is_set():
                raise ArchiveCancelled()

            dirPath = stack.pop()
            prefix = self._entryPrefix(dirPath)

            try:
                with os.scandir(dirPath) as it:
                    children = list(it)
            except FileNotFoundError:
                if dirPath == self.rootPath:
                    raise
                logger.warning(f"Skipping directory removed during archiving: {dirPath}")
                continue

            if not children:
                try:
                    mtime = os.stat(dirPath).st_mtime
                except OSError:
                    mtime = None
                self._writer.addDirectory(f'{prefix}/', mtime=mtime)
                continue

            for child in children:
                if child.is_symlink():
                    if not isContained(self.sharedRoot, child.path):
                        logger.warning(f"Skipping link leaving the shared root: {child.path}")
                        continue

                    if child.is_dir():
                        # Not descended, a link to an ancestor would never end
                        logger.debug(f"Skipping directory link: {child.path}")
                        continue

                if child.is_dir(follow_symlinks=False):
                    stack.append(child.path)
                else:
                    self._archiveFile(child, f'{prefix}/{child.name}')

    def _run(self):
        self._writer = ZipStreamWriter(self._sink, readSize=self.chunkSize)

        try:
            self._walk()
            self._writer.close()
            self._flush()
            self._completed = True
        except ArchiveCancelled:
            logger.info(f"Archive of {self.rootPath} cancelled after {self._writer.bytesWritten} bytes")
            return
        except OSError as e:
            # Bytes are already on the wire, so the stream is simply cut short.
            logger.error(f"Archive of {self.rootPath} truncated: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error while archiving {self.rootPath}: {e}")
        else:
            logger.debug(
                f"Archive of {self.rootPath} done: {self._writer.entryCount} entries, "
                f"{self._writer.bytesWritten} bytes"
            )
            ShareEvent.archiveCreate.trigger(
                path=self.rootPath,
                name=self.archiveRootName,
                entries=self._writer.entryCount,
                size=self._writer.bytesWritten,
            )

        try:
            self._flush()
            self._put(self._END)
        except ArchiveCancelled:
            pass


def archiveDirectory(rootPath, archiveRootName, chunkSize=ARCHIVE_CHUNK_SIZE,
                     queueSlots=ARCHIVE_QUEUE_SLOTS, sharedRoot=None) -> Iterator[bytes]:
    """
    Lazily produce a ZIP of rootPath whose single top-level folder is archiveRootName.

    Closing the returned generator (or abandoning it) cancels the producer thread.
    """
    job = ArchiveJob(rootPath, archiveRootName, chunkSize=chunkSize, queueSlots=queueSlots, sharedRoot=sharedRoot)
    try:
        yield from job
    finally:
        job.close()
