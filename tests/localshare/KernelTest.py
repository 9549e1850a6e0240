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

import logging
import unittest

from localshare.Kernel import EventService, Event, ShareEvent, Singleton, getLogger, registerEvents


class EventServiceTest(unittest.TestCase):
    """
    Test case for the singleton, signalslot-based EventService.
    """

    def setUp(self):
        self.e = EventService.getInstance()
        self.e.reset()

    def tearDown(self):
        # Other modules rely on the application events being registered
        self.e.reset()
        registerEvents()

    def testIsSingleton(self):
        e1 = EventService.getInstance()
        e2 = EventService.getInstance()
        self.assertIs(e1, e2)
        self.assertIs(self.e, e1)

    def testSubscribeTriggerUnsubscribe(self):
        log = []

        def observer1(value, **kwargs):
            log.append(('observer1', value))

        def observer2(value, **kwargs):
            log.append(('observer2', value))

        self.assertTrue(self.e.register('E'))
        self.assertFalse(self.e.register('E'))

        self.e.subscribe('E', observer1)
        self.e.subscribe('E', observer1)
        self.e.subscribe('E', observer2)
        self.e.trigger('E', value=1)
        self.assertEqual(log, [('observer1', 1), ('observer2', 1)])

        log.clear()
        self.e.unsubscribe('E', observer1)
        self.e.trigger('E', value=2)
        self.assertEqual(log, [('observer2', 2)])

    def testSubscribeUnregisteredEventRaises(self):

        def observer(**kwargs):
            pass

        with self.assertRaises(KeyError):
            self.e.subscribe('Unknown', observer)

    def testTriggerUnregisteredEventIsNoop(self):
        self.e.trigger('Unknown', value=1)

    def testFailingObserverDoesNotPropagate(self):

        def failing(**kwargs):
            raise RuntimeError('observer failure')

        self.e.register('E')
        self.e.subscribe('E', failing)

        with self.assertLogs('localshare.Kernel', level=logging.ERROR):
            self.e.trigger('E', value=1)

    def testUnregister(self):

        def observer(**kwargs):
            pass

        self.e.register('E')
        self.e.subscribe('E', observer)
        self.assertTrue(self.e.unregister('E'))
        self.assertFalse(self.e.isRegistered('E'))
        self.assertFalse(self.e.unregister('E'))

    def testEventWrapper(self):
        received = []

        def observer(path, size, **kwargs):
            received.append((path, size))

        event = Event('/test/event')
        self.e.register(event.key)
        event.subscribe(observer)
        event.trigger(path='/tmp/x', size=3)
        event.unsubscribe(observer)
        event.trigger(path='/tmp/y', size=4)

        self.assertEqual(received, [('/tmp/x', 3)])

    def testApplicationEventsRegistered(self):
        registerEvents()
        for event in (ShareEvent.serverStart, ShareEvent.uploadCreate, ShareEvent.archiveCreate):
            self.assertTrue(self.e.isRegistered(event.key))


class SingletonTest(unittest.TestCase):

    def testInitializeCalledOnce(self):

        class Counter(Singleton):

            def initialize(self):
                self.count = getattr(self, 'count', 0) + 1

        self.assertIs(Counter(), Counter.getInstance())
        self.assertEqual(Counter.getInstance().count, 1)


class GetLoggerTest(unittest.TestCase):

    def testVersionAttached(self):
        logger = getLogger('localshare.test', version='9.9.9')
        self.assertEqual(logger.extra['version'], '9.9.9')

        with self.assertLogs('localshare.test', level=logging.INFO) as captured:
            logger.info('hello')

        self.assertEqual(captured.records[0].version, '9.9.9')


if __name__ == '__main__':
    unittest.main()
