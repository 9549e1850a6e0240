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

import threading


class SharedText:
    """A single text value shared by all clients of one server. Last writer wins."""

    def __init__(self, text=''):
        self._text = text
        self._lock = threading.Lock()

    def get(self):
        with self._lock:
            return self._text

    def set(self, text):
        with self._lock:
            self._text = text

    def __len__(self):
        with self._lock:
            return len(self._text)
