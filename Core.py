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
import signal
import sys

from localshare.CLI import (
    buildSettings, configureCLIParser, configureLogging, loadEnvFile, showVersion, subscribeNotifications
)
from localshare.Discovery import ServiceAdvertiser
from localshare.Kernel import getLogger
from localshare.Network import buildConnectionURL, getLocalIP
from localshare.QRCode import generateAsciiQR
from localshare.Server import createServer
from localshare.Settings import DEFAULT_HOST
from localshare.Utils import flushPrint, formatSize, sendException

logger = getLogger(__name__)


def setupGracefulShutdown():
    """Setup signal handlers for graceful shutdown on multiple Ctrl+C"""
    context = {'shutdownInProgress': False}

    def signalHandler(signum, frame):
        if context['shutdownInProgress']:
            # Second Ctrl+C - force immediate exit without cleanup messages
            os._exit(0)
        else:
            context['shutdownInProgress'] = True
            raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, signalHandler)
    if hasattr(signal, 'SIGTERM'):
        signal.signal(signal.SIGTERM, signalHandler)


def getAdvertisedIP(settings):
    if settings.host in (DEFAULT_HOST, '', '::'):
        return getLocalIP()
    return settings.host


def printBanner(server, settings, ip, showQR=True, includeCredentials=False):
    url = buildConnectionURL(
        server.tls,
        ip,
        server.port,
        username=settings.authUser,
        password=settings.authPassword,
        includeCredentials=includeCredentials,
    )

    flushPrint(f"Sharing {settings.rootPath}")
    flushPrint(f"Maximum upload size: {formatSize(settings.maxUploadSize)}")
    if settings.isAuthEnabled():
        flushPrint(f"Basic authentication enabled for user '{settings.authUser}'")
    flushPrint(f"Open {url} in your browser")

    if showQR:
        flushPrint(generateAsciiQR(url))

    return url


def runServer(args):
    try:
        settings = buildSettings(args)
    except ValueError as e:
        sendException(logger, e, action='Please check the arguments and try again.', errorPrefix='Error')
        return 1

    ip = getAdvertisedIP(settings)

    try:
        server = createServer(settings, extraIPs=(ip,))
    except OSError as e:
        sendException(
            logger, e, action=f'Unable to listen on {settings.host}:{settings.port}.', errorPrefix='Error'
        )
        return 1

    subscribeNotifications()
    printBanner(server, settings, ip, showQR=args.qr, includeCredentials=args.qrCredentials)

    advertiser = None
    if settings.mdns:
        advertiser = ServiceAdvertiser(server.port, ip, tls=server.tls)
        advertiser.start()

    try:
        server.start()
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
    finally:
        if advertiser is not None:
            advertiser.stop()
        server.server_close()

    return 0


def main(argv=None):
    loadEnvFile()

    parser = configureCLIParser()
    args = parser.parse_args(argv)

    if args.version:
        showVersion()
        return 0

    configureLogging(args.logLevel)
    setupGracefulShutdown()

    return runServer(args)


if __name__ == '__main__':
    try:
        exitCode = main()
        sys.exit(exitCode or 0)
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        sys.exit(0)
    except PermissionError as e:
        sendException(logger, e, errorPrefix='Permission denied')
        sys.exit(1)
    except Exception as e:
        sendException(logger, e)
        sys.exit(1)
