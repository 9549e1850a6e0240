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
import logging
import threading

# Error reporting is disabled unless LOCALSHARE_SENTRY_DSN is set explicitly.
import sentry_sdk

from signalslot import Signal

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration
from sentry_sdk.integrations import atexit as sentryAtexit

PUBLIC_VERSION = '0.1.0'

SENTRY_DSN_ENV = 'LOCALSHARE_SENTRY_DSN'

# Map string levels to logging constants for standard level names
LOG_LEVEL_MAPPING = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}


def configureGlobalLogLevel(logLevel):
    """
    Configure the global logging level for the application.
    This affects all loggers created via getLogger().

    Args:
        logLevel: Logging level (logging.DEBUG, logging.INFO, etc.)
    """
    rootLogger = logging.getLogger()
    rootLogger.setLevel(logLevel)

    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    # Add console handler if none exists
    if not rootLogger.handlers:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(logLevel)
        consoleHandler.setFormatter(formatter)
        rootLogger.addHandler(consoleHandler)
    else:
        # Update existing handlers
        for handler in rootLogger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, SentryHandler):
                handler.setLevel(logLevel)
                handler.setFormatter(formatter)


if os.getenv('LOCALSHARE_LOGGING_LEVEL'):
    envLevel = LOG_LEVEL_MAPPING.get(os.getenv('LOCALSHARE_LOGGING_LEVEL').upper())
    if envLevel is not None:
        configureGlobalLogLevel(envLevel)


def _initSentry():
    sentryDsn = os.getenv(SENTRY_DSN_ENV)
    if not sentryDsn:
        return False

    # Suppress "sentry is attempting to send pending events..." on exit
    sentryAtexit.default_callback = lambda pending, timeout: None

    sentry_sdk.init(
        dsn=sentryDsn,
        release=PUBLIC_VERSION,
        default_integrations=False,
        integrations=[
            LoggingIntegration(),
            sentryAtexit.AtexitIntegration(),
        ],
    )
    return True


def getLogger(name, version=PUBLIC_VERSION):
    """
    Get a logger with Sentry integration. Sentry itself is only initialized when a DSN
    is configured, so by default the SentryHandler is inert.

    Args:
        name: Logger name
        version: Version string attached to every record
    """
    try:
        client = sentry_sdk.get_client()
        if not client.is_active():
            _initSentry()

        logger = logging.getLogger(name)

        if not any(isinstance(h, SentryHandler) for h in logger.handlers):
            syslog = SentryHandler()
            syslog.setFormatter(logging.Formatter('%(asctime)s version[%(version)s] : %(message)s'))
            logger.addHandler(syslog)

        return logging.LoggerAdapter(logger, {'version': version or 'unknown'})

    except Exception as e:
        fallbackLogger = logging.getLogger(name)

        # If Sentry setup fails, continue with standard logging
        fallbackLogger.warning(f"Failed to initialize Sentry: {e}")

        return fallbackLogger


class Singleton:
    """
    Thread-safe singleton base class. Subclasses override initialize() instead of __init__.
    """

    _instances = {}
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        if cls not in cls._instances:
            with cls._lock:
                if cls not in cls._instances:
                    cls._instances[cls] = super().__new__(cls)
        return cls._instances[cls]

    def __init__(self, *args, **kwargs):
        if not hasattr(self, '_initialized'):
            self.initialize(*args, **kwargs)
            self._initialized = True

    def initialize(self, *args, **kwargs):
        pass

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            cls()
        return cls._instances[cls]


class EventService(Singleton):
    """
    Dispatches application events to subscribed observers.
    Backed by 'signalslot', so observers must accept **kwargs.
    """

    def initialize(self):
        self.signals = {}
        self._signalsLock = threading.Lock()

    def reset(self):
        """
        Clears all registered signals. Only meant for test isolation.
        """
        with self._signalsLock:
            self.signals.clear()

    def isRegistered(self, event):
        return event in self.signals

    def register(self, event):
        with self._signalsLock:
            if event in self.signals:
                return False
            self.signals[event] = Signal()
            return True

    def unregister(self, event):
        with self._signalsLock:
            signal = self.signals.pop(event, None)

        if signal is None:
            return False

        for slot in list(signal._slots):
            signal.disconnect(slot)
        return True

    def subscribe(self, event, observer):
        if not self.isRegistered(event):
            raise KeyError(f"You must register event '{event}' first.")

        signal = self.signals[event]
        if observer not in signal._slots:
            signal.connect(observer)

    def unsubscribe(self, event, observer):
        signal = self.signals.get(event)
        if signal is not None and observer in signal._slots:
            signal.disconnect(observer)

    def trigger(self, event, **kwargs):
        """
        Emit an event. Request handlers run on server threads, so an observer raising
        must not break the request that triggered it.
        """
        signal = self.signals.get(event)
        if signal is None:
            return

        try:
            signal.emit(**kwargs)
        except Exception as e:
            logging.getLogger(__name__).exception(f"Observer of '{event}' failed: {e}")


class Event:
    """Simple event wrapper bound to the EventService singleton"""

    def __init__(self, key):
        self.key = key

    def subscribe(self, observer):
        EventService.getInstance().subscribe(self.key, observer)

    def unsubscribe(self, observer):
        EventService.getInstance().unsubscribe(self.key, observer)

    def trigger(self, **kwargs):
        EventService.getInstance().trigger(self.key, **kwargs)


# Event pattern: RESTful + /[action]
class ShareEvent:
    serverStart = Event('/server/start')
    uploadCreate = Event('/upload/file/create')
    archiveCreate = Event('/download/archive/create')


def registerEvents():
    eventService = EventService.getInstance()
    for event in (ShareEvent.serverStart, ShareEvent.uploadCreate, ShareEvent.archiveCreate):
        eventService.register(event.key)


registerEvents()
