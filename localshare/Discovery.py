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

import socket

from zeroconf import ServiceInfo, Zeroconf

from localshare.Kernel import PUBLIC_VERSION, getLogger
from localshare.Settings import MDNS_SERVICE_NAME, MDNS_SERVICE_TYPE

logger = getLogger(__name__)


class ServiceAdvertiser:
    """
    Announces the server as an _http._tcp service on the local network.

    Advertising is best effort: failures are logged and never stop the server.
    """

    def __init__(self, port, ip, tls=False, instanceName=None, zeroconfClass=Zeroconf):
        self.port = port
        self.ip = ip
        self.tls = tls
        self.instanceName = instanceName or f'{MDNS_SERVICE_NAME} ({socket.gethostname()})'

        self._zeroconfClass = zeroconfClass
        self._zeroconf = None
        self._serviceInfo = None

    @property
    def registered(self):
        return self._serviceInfo is not None

    def buildServiceInfo(self):
        return ServiceInfo(
            MDNS_SERVICE_TYPE,
            f'{self.instanceName}.{MDNS_SERVICE_TYPE}',
            addresses=[socket.inet_aton(self.ip)],
            port=self.port,
            properties={
                'version': PUBLIC_VERSION,
                'tls': str(self.tls).lower(),
                'path': '/',
            },
        )

    def start(self):
        if self.registered:
            return True

        try:
            serviceInfo = self.buildServiceInfo()
            self._zeroconf = self._zeroconfClass()
            self._zeroconf.register_service(serviceInfo)
            self._serviceInfo = serviceInfo
        except Exception as e:
            logger.error(f"Failed to register mDNS service: {e}")
            self._closeZeroconf()
            return False

        logger.info(f"mDNS service registered: {self.instanceName}.{MDNS_SERVICE_TYPE}")
        return True

    def stop(self):
        if self._zeroconf is None:
            return

        try:
            if self._serviceInfo is not None:
                self._zeroconf.unregister_service(self._serviceInfo)
        except Exception as e:
            logger.warning(f"Failed to unregister mDNS service: {e}")
        finally:
            self._serviceInfo = None
            self._closeZeroconf()

    def _closeZeroconf(self):
        if self._zeroconf is None:
            return

        try:
            self._zeroconf.close()
        except Exception as e:
            logger.debug(f"Error closing zeroconf: {e}")
        finally:
            self._zeroconf = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, excType, excValue, traceback):
        self.stop()
