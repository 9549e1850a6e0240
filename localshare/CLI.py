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

import argparse
import json
import os
import logging
import logging.config
import platform

from localshare.Kernel import PUBLIC_VERSION, LOG_LEVEL_MAPPING, ShareEvent, configureGlobalLogLevel, getLogger
from localshare.Settings import DEFAULT_HOST, DEFAULT_MAX_UPLOAD_MB, DEFAULT_PORT, ShareSettings
from localshare.Utils import flushPrint, formatSize, getEnv

ENV_FILE_NAME = '.env'

logger = getLogger(__name__)


def loadEnvFile(envFilePath=None):
    """
    Load environment variables from a .env file (default: ./.env).
    Only sets variables that are not already defined in os.environ.

    Returns:
        int: Number of variables loaded
    """
    if envFilePath is None:
        envFilePath = os.path.join(os.getcwd(), ENV_FILE_NAME)

    if not os.path.isfile(envFilePath):
        return 0

    loadedCount = 0
    try:
        with open(envFilePath, 'r', encoding='utf-8') as f:
            for lineNum, line in enumerate(f, 1):
                line = line.strip()

                if not line or line.startswith('#'):
                    continue

                if '=' not in line:
                    flushPrint(f'Warning: .env line {lineNum}: Invalid format (missing =): {line}')
                    continue

                key, _, value = line.partition('=')
                key = key.strip()
                value = value.strip()

                if not key:
                    flushPrint(f'Warning: .env line {lineNum}: Empty key')
                    continue

                if (value.startswith('"') and value.endswith('"')) or \
                   (value.startswith("'") and value.endswith("'")):
                    value = value[1:-1]

                # Environment takes precedence
                if key not in os.environ:
                    os.environ[key] = value
                    loadedCount += 1
                else:
                    logger.debug(f'.env: Skipped {key} (already set in environment)')

    except (OSError, UnicodeDecodeError) as e:
        flushPrint(f'Error: Unable to load .env file {envFilePath}: {e}')
        logger.error(f'Unable to load .env file {envFilePath}: {e}')
        return loadedCount

    logger.debug(f'Loaded {loadedCount} environment variables from {envFilePath}')
    return loadedCount


def configureLogging(logLevel):
    """Configure logging from a level name or a logging configuration JSON file

    Priority order:
    1. logLevel parameter (from --log-level CLI argument)
    2. LOCALSHARE_LOGGING_LEVEL environment variable
    3. Default to None (no configuration change)
    """

    def suppressNoisyLogger():
        logging.getLogger('zeroconf').setLevel(logging.WARNING)
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    if logLevel is None:
        logLevel = getEnv('LOCALSHARE_LOGGING_LEVEL', None)

    if logLevel is None:
        suppressNoisyLogger()
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel

        except (json.JSONDecodeError, ValueError, KeyError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")

    level = LOG_LEVEL_MAPPING.get(logLevel.upper())
    if level is not None:
        configureGlobalLogLevel(level)
        logger.info(f"Logging level set to {logLevel}")
    else:
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")
        configureGlobalLogLevel(logging.WARNING)

    suppressNoisyLogger()

    return logLevel


def showVersion():
    flushPrint(f"LocalShare v{PUBLIC_VERSION}")
    uname = platform.uname()
    flushPrint(f"Architecture: {uname.system} {uname.release} {uname.machine}")
    flushPrint(f"Python: {platform.python_version()}")


def configureCLIParser():
    """Configure the argument parser; defaults can be overridden by LOCALSHARE_* environment variables"""

    def validatePort(portStr):
        try:
            port = int(portStr)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid port number: {portStr}")

        if not (0 <= port <= 65535):
            raise argparse.ArgumentTypeError(f"Port {port} is out of valid range (0-65535)")
        return port

    def validateUploadSize(sizeStr):
        try:
            size = float(sizeStr)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid upload size: {sizeStr}")

        if size <= 0:
            raise argparse.ArgumentTypeError(f"Upload size must be positive, got {sizeStr}")
        return size

    def validateLogLevel(logLevel):
        # Allow file paths (they'll be validated later)
        if os.path.exists(logLevel):
            return logLevel

        validLevels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if logLevel.upper() not in validLevels:
            raise argparse.ArgumentTypeError(
                f"Invalid log level '{logLevel}'. Valid levels are: {', '.join(validLevels)}"
            )
        return logLevel.upper()

    parser = argparse.ArgumentParser(
        prog='localshare',
        description="LocalShare serves a folder to your local network for browsing, download and upload.",
    )
    parser.add_argument("--version", action="store_true", help="Show version information")
    parser.add_argument(
        "-p", "--path", default='.', metavar="DIR", help="Directory to share (default: current directory)"
    )
    parser.add_argument(
        "-P",
        "--port",
        type=validatePort,
        default=getEnv('LOCALSHARE_PORT', DEFAULT_PORT),
        metavar="PORT",
        help=f"Port to listen on (default: {DEFAULT_PORT}, 0 picks a free port)"
    )
    parser.add_argument(
        "-S",
        "--max-upload-size",
        type=validateUploadSize,
        default=getEnv('LOCALSHARE_MAX_UPLOAD_SIZE', float(DEFAULT_MAX_UPLOAD_MB)),
        metavar="MB",
        dest="maxUploadSize",
        help=f"Maximum upload body size in megabytes (default: {DEFAULT_MAX_UPLOAD_MB})"
    )
    parser.add_argument(
        "--host",
        default=getEnv('LOCALSHARE_HOST', DEFAULT_HOST),
        help=f"Address to bind (default: {DEFAULT_HOST})"
    )
    parser.add_argument(
        "--tls",
        action="store_true",
        default=False,
        help="Serve over HTTPS; a self-signed certificate is generated unless --cert/--key are given"
    )
    parser.add_argument("--cert", metavar="FILE", dest="certFile", help="TLS certificate file (PEM)")
    parser.add_argument("--key", metavar="FILE", dest="keyFile", help="TLS private key file (PEM)")
    parser.add_argument(
        "-u",
        "--username",
        default=getEnv('LOCALSHARE_USERNAME', None),
        metavar="USERNAME",
        help="Username for HTTP Basic Authentication"
    )
    parser.add_argument(
        "-w",
        "--password",
        default=getEnv('LOCALSHARE_PASSWORD', None),
        metavar="PASSWORD",
        help="Password for HTTP Basic Authentication (enables auth together with --username)"
    )
    parser.add_argument(
        "--theme", metavar="DIR", dest="themeDir", help="Directory whose files override the built-in assets"
    )
    parser.add_argument(
        "--no-mdns", action="store_false", dest="mdns", help="Do not advertise the server with mDNS"
    )
    parser.add_argument("--no-qr", action="store_false", dest="qr", help="Do not print a QR code of the URL")
    parser.add_argument(
        "--qr-credentials",
        action="store_true",
        default=False,
        dest="qrCredentials",
        help="Embed the Basic auth credentials in the printed URL and QR code"
    )
    parser.add_argument(
        "--log-level",
        type=validateLogLevel,
        metavar="LEVEL_OR_FILE",
        dest="logLevel",
        help="Set logging level (DEBUG, INFO, WARNING, ERROR) or path to logging config JSON file (default: WARNING)"
    )
    return parser


def buildSettings(args):
    """ShareSettings from parsed arguments; raises ValueError on invalid input."""
    return ShareSettings.build(
        path=args.path,
        maxUploadMB=args.maxUploadSize,
        host=args.host,
        port=args.port,
        username=args.username,
        password=args.password,
        tls=args.tls,
        certFile=args.certFile,
        keyFile=args.keyFile,
        themeDir=args.themeDir,
        mdns=args.mdns,
    )


def _onServerStart(server, **kwargs):
    flushPrint(f"Listening on port {server.port}, press Ctrl+C to stop")


def _onUploadCreate(path, size, **kwargs):
    flushPrint(f"Received {os.path.basename(path)} ({formatSize(size)})")


def _onArchiveCreate(name, entries, size, **kwargs):
    flushPrint(f"Sent {name}.zip ({entries} entries, {formatSize(size)})")


def subscribeNotifications():
    ShareEvent.serverStart.subscribe(_onServerStart)
    ShareEvent.uploadCreate.subscribe(_onUploadCreate)
    ShareEvent.archiveCreate.subscribe(_onArchiveCreate)


def unsubscribeNotifications():
    ShareEvent.serverStart.unsubscribe(_onServerStart)
    ShareEvent.uploadCreate.unsubscribe(_onUploadCreate)
    ShareEvent.archiveCreate.unsubscribe(_onArchiveCreate)
