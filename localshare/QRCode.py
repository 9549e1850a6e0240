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

import io

import qrcode

WHITE = b'\xff\xff\xff'
BLACK = b'\x00\x00\x00'


def _buildMatrix(content):
    """Module matrix without quiet zone; True is a dark module."""
    qr = qrcode.QRCode(border=0, error_correction=qrcode.constants.ERROR_CORRECT_M)
    qr.add_data(content)
    qr.make(fit=True)
    return qr.get_matrix()


def generateAsciiQR(content):
    """Terminal rendering of content as a QR code, with quiet zone."""
    qr = qrcode.QRCode(border=2, error_correction=qrcode.constants.ERROR_CORRECT_M)
    qr.add_data(content)
    qr.make(fit=True)

    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()


def generateQRImage(content, scale=4, quietZone=2):
    """
    Raw RGB raster of content as a QR code.

    Args:
        content: Text to encode
        scale: Pixels per module side
        quietZone: White border width, in modules

    Returns:
        tuple: (width, height, rgbBytes) with 3 bytes per pixel, rows top to bottom
    """
    if scale < 1 or quietZone < 0:
        raise ValueError(f"Invalid QR raster geometry: {scale=} {quietZone=}")

    matrix = _buildMatrix(content)
    modules = len(matrix) + 2 * quietZone
    width = height = modules * scale

    buffer = bytearray()
    quietRow = WHITE * width

    for _ in range(quietZone * scale):
        buffer += quietRow

    margin = WHITE * (quietZone * scale)
    for row in matrix:
        line = margin + b''.join((BLACK if dark else WHITE) * scale for dark in row) + margin
        for _ in range(scale):
            buffer += line

    for _ in range(quietZone * scale):
        buffer += quietRow

    return width, height, bytes(buffer)
