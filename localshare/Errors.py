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

from http import HTTPStatus


class AppError(Exception):
    """
    Base of the errors a request handler turns into an HTTP status.

    The message is what the client sees, so it must never carry filesystem paths
    or OS error text; the real cause travels in __cause__ and is only logged.
    """

    status = HTTPStatus.INTERNAL_SERVER_ERROR
    message = 'Internal server error'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    @classmethod
    def fromOSError(cls, error):
        """Map a filesystem error onto the taxonomy, keeping the original as cause."""
        if isinstance(error, (FileNotFoundError, NotADirectoryError)):
            appError = NotFoundError()
        elif isinstance(error, PermissionError):
            appError = PermissionDeniedError()
        else:
            appError = InternalServerError()

        appError.__cause__ = error
        return appError


class NotFoundError(AppError):
    """Raised when the requested path does not exist (404)"""
    status = HTTPStatus.NOT_FOUND
    message = 'Resource not found'


class PermissionDeniedError(AppError):
    """Raised when the filesystem refuses access (403)"""
    status = HTTPStatus.FORBIDDEN
    message = 'Permission denied'


class BadRequestError(AppError):
    """Raised when a request is malformed (400)"""
    status = HTTPStatus.BAD_REQUEST
    message = 'Bad request'


class InvalidPathError(BadRequestError):
    """Raised when a client-supplied path tries to leave the shared root (400)"""
    status = HTTPStatus.BAD_REQUEST
    message = 'Invalid or unsafe path'


class PayloadTooLargeError(AppError):
    """Raised when a request body exceeds the configured upload ceiling (413)"""
    status = HTTPStatus.REQUEST_ENTITY_TOO_LARGE
    message = 'Request body too large'


class InternalServerError(AppError):
    """Any other I/O, encoding or parsing failure (500)"""
    pass
