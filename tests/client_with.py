# Copyright (c) 2009-2010 Six Apart Ltd.
# All rights reserved.
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
# * Redistributions of source code must retain the above copyright notice,
#   this list of conditions and the following disclaimer.
#
# * Redistributions in binary form must reproduce the above copyright notice,
#   this list of conditions and the following disclaimer in the documentation
#   and/or other materials provided with the distribution.
#
# * Neither the name of Six Apart Ltd. nor the names of its contributors may
#   be used to endorse or promote products derived from this software without
#   specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

import unittest

from multihttp.client import Manager
from multihttp.errors import ProtocolInvariantViolation
from multihttp.transfer import Handle
from tests import utils
from tests.fakes import FakeMulti, Recorder


class TestManagerWithSyntax(unittest.TestCase):

    def start(self, manager, callback, count=3):
        requests = []
        for i in range(count):
            req = manager.new_request('http://example.com/%d' % i)
            req.set_callback(callback).set_try_limit(2)
            manager.start_request(req)
            requests.append(req)
        return requests

    def test_with(self):
        multi = FakeMulti()
        callback = Recorder(lambda request: request.get_tries() == 1
                            and request.get_target().endswith('/0'))

        with Manager(2, multi=multi) as manager:
            self.assertTrue(isinstance(manager, Manager))
            requests = self.start(manager, callback)

        # Everything finished, retries included, and the manager let go of
        # its multiplexer.
        self.assertEqual(len(callback.calls), 4)
        self.assertEqual(requests[0].get_tries(), 2)
        self.assertEqual(manager.requests, {})
        self.assertEqual(manager.retries, [])
        self.assertTrue(multi.closed)

    def test_with_exception(self):
        multi = FakeMulti()
        callback = Recorder()

        def broken():
            with Manager(multi=multi) as manager:
                self.start(manager, callback)
                raise KeyError('oops')

        self.assertRaises(KeyError, broken)
        self.assertEqual(len(callback.calls), 3)
        self.assertTrue(multi.closed)

    def test_with_violation(self):
        multi = FakeMulti()
        callback = Recorder()

        def broken():
            with Manager(multi=multi) as manager:
                requests = self.start(manager, callback)
                multi.inject(Handle({'uri': 'http://example.com/stray'}))
                manager.finish_all_requests()
            return requests

        self.assertRaises(ProtocolInvariantViolation, broken)
        self.assertEqual(callback.calls, [])
        self.assertEqual(multi.handles, [])
        self.assertTrue(multi.closed)

    def test_violation_while_finishing(self):
        multi = FakeMulti()
        callback = Recorder()
        self.requests = []

        def broken():
            with Manager(multi=multi) as manager:
                self.requests = self.start(manager, callback)
                multi.inject(Handle({'uri': 'http://example.com/stray'}))

        self.assertRaises(ProtocolInvariantViolation, broken)
        self.assertEqual(callback.calls, [])
        self.assertTrue(all(req.handle.closed for req in self.requests))
        self.assertTrue(multi.closed)


if __name__ == '__main__':
    utils.log()
    unittest.main()
