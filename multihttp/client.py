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

"""

The multi HTTP client provides a `Manager` for performing many HTTP
requests in parallel, dispatching each response to its request's callback
and retrying the requests the callbacks ask to have retried.

"""

import inspect
import logging
import time

from multihttp.errors import (InvalidConfiguration,
    ProtocolInvariantViolation)
from multihttp.transfer import Handle, Multi

log = logging.getLogger(__name__)


class Request(object):

    """An HTTP request to perform through a `Manager`.

    A `Request` wraps the transfer options for one logical call, the
    callback that handles its response, and how many times it may be tried.
    Each time an attempt finishes, the `Manager` calls `process()`, which
    records the attempt's outcome and calls the callback. The callback can
    call `request_retry()` to have the request made again, as long as the
    request has tries left.

    Callbacks should expect two positional parameters:

    * the `Request` instance itself, from which the callback can read the
      outcome with `get_content()`, `get_info()`, `get_error()` and
      `get_error_code()`
    * the `Manager` performing the request

    Create requests with `Manager.new_request()`.

    """

    def __init__(self, target):
        self.tries = 0
        self.tries_max = 1
        self.retry = False
        self.handle = None
        self.options = {'uri': target}
        self.callback = None

        self.content = None
        self.info = {}
        self.error = None
        self.errno = None

    def __repr__(self):
        return '<Request %s (tried %d of %d)>' % (self.get_target(),
            self.tries, self.tries_max)

    def get_target(self):
        return self.options['uri']

    def get_info(self, key=None):
        """Returns information about the last attempt at this request.

        With no `key`, the whole mapping is returned (empty before the first
        attempt finishes). With a `key`, only that value is returned, or
        `None` if there's no such information.

        """
        if key is not None:
            return self.info.get(key)
        return self.info

    def get_content(self):
        """Returns the response body of the last attempt, as bytes."""
        return self.content

    def get_error(self):
        """Returns the transport error message of the last attempt, or
        `None` if the attempt got a response."""
        return self.error

    def get_error_code(self):
        """Returns the transport error code of the last attempt.

        This is `multihttp.transfer.E_OK` if the attempt got a response, and
        `None` before any attempt has finished.

        """
        return self.errno

    def get_tries(self):
        return self.tries

    def get_try_limit(self):
        return self.tries_max

    def request_retry(self):
        """Marks this request to be performed again.

        Only has an effect when called from the request's callback; the mark
        is cleared before each new attempt's callback runs. If the request
        has already been tried as many times as its try limit allows, it is
        not retried anyway.

        """
        self.retry = True
        return self

    def set_try_limit(self, number):
        """Sets the maximum number of times to try this request.

        If `number` is not a positive integer, or the request has already
        been tried, an `InvalidConfiguration` is raised.

        """
        if isinstance(number, bool) or not isinstance(number, int) or number < 1:
            raise InvalidConfiguration('Invalid try limit given: %r' % (number,))
        if self.tries:
            raise InvalidConfiguration('Try limit of %s is fixed once it has been tried'
                % self.get_target())
        self.tries_max = number
        return self

    def set_callback(self, callback):
        """Sets the callable to call once each attempt at this request
        finishes.

        If `callback` is not callable, or can't be called with a request and
        a manager, an `InvalidConfiguration` is raised.

        """
        if not callable(callback):
            raise InvalidConfiguration('No callable callback given')
        try:
            inspect.signature(callback).bind(self, None)
        except TypeError:
            raise InvalidConfiguration('Callback %r cannot be called with a request and a manager'
                % (callback,))
        except ValueError:
            # Some builtins have no signature to check.
            pass
        self.callback = callback
        return self

    def set_option(self, key, value=None):
        """Sets transfer option `key` for this request.

        Options set here win over the `Manager`'s options of the same name.
        The ``uri`` option is the request's target and can't be changed.

        """
        if key == 'uri':
            raise InvalidConfiguration("A request's target can't be changed")
        self.options[key] = value
        return self

    def get_handle(self, new=False):
        """Returns the transfer `Handle` for this request.

        A new handle is made if there isn't one, the old one is closed, or
        `new` is true.

        """
        if new and self.handle is not None:
            self.handle.close()
            self.handle = None
        if self.handle is None or self.handle.closed:
            self.handle = Handle(self.options)
        return self.handle

    def process(self, manager=None):
        """Records the outcome of the finished attempt and dispatches it to
        the callback."""
        handle = self.handle

        self.tries += 1
        self.retry = False

        self.content = handle.getcontent()
        self.info = handle.getinfo()
        self.error = handle.error
        self.errno = handle.errno

        if self.callback is not None:
            self.callback(self, manager)

    def should_retry(self):
        """Returns whether this request should be performed again."""
        if self.tries >= self.tries_max:
            return False
        return self.retry


class Manager(object):

    """Performs `Request` instances in parallel.

    At most `concurrency_limit` requests are in flight at once (zero means
    no limit). Starting a request when the limit is reached waits for
    another request to finish first. Finished requests are dispatched to
    their callbacks one at a time, in the order they finish, from the
    thread that drives the manager.

    Requests whose callbacks ask to be retried are held back until
    `finish_all_requests()`, which performs them again once everything in
    flight has finished, and returns only when no requests or retries are
    left.

    A `Manager` can be used with the ``with`` statement::

    >>> with Manager(concurrency_limit=4) as manager:
    ...     manager.start_request(manager.new_request(uri).set_callback(cb))

    All requests are finished at the end of the ``with`` block, whether or
    not it raised an exception. After a `ProtocolInvariantViolation` the
    remaining requests are abandoned instead.

    """

    def __init__(self, concurrency_limit=None, select_timeout=1.0,
                 yield_interval=0.0, multi=None):
        """Configures the `Manager` instance.

        Parameter `concurrency_limit` is the number of requests to perform
        at once. `select_timeout` is the longest time in seconds a wait for
        requests to finish may block before polling again, and
        `yield_interval` how long to sleep between collecting finished
        transfers. `multi` replaces the multiplexer with one of your own.

        If the multiplexer can't be created, a `ResourceInitFailure` is
        raised.

        """
        self.concurrency_limit = 0
        self.options = {}
        self.requests = {}
        self.retries = []

        if concurrency_limit is not None:
            self.set_concurrency_limit(concurrency_limit)
        if select_timeout < 0:
            raise InvalidConfiguration('Select timeout has to be >= 0')
        if yield_interval < 0:
            raise InvalidConfiguration('Yield interval has to be >= 0')
        self.select_timeout = select_timeout
        self.yield_interval = yield_interval

        if multi is None:
            multi = Multi()
        self.multi = multi

    def new_request(self, target):
        """Returns a new `Request` for the URI `target`."""
        return Request(target)

    def set_option(self, key, value):
        """Sets transfer option `key` for every request this manager
        starts."""
        self.options[key] = value
        return self

    def set_concurrency_limit(self, limit):
        """Sets the maximum number of requests to perform at once.

        Zero means no limit. If `limit` is not an integer of zero or more,
        an `InvalidConfiguration` is raised.

        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise InvalidConfiguration('Concurrency limit has to be an integer >= 0')
        self.concurrency_limit = limit
        return self

    def get_concurrency_limit(self):
        return self.concurrency_limit

    def start_request(self, request, new_handle=False):
        """Starts performing `request`, first waiting for a free slot if the
        concurrency limit has been reached.

        Returns once the request is in flight, not once it has finished. If
        `new_handle` is true, the request gets a fresh transfer handle.

        If the request's transfer can't be set up, a `ResourceInitFailure`
        is raised and the request is not started.

        """
        handle = request.handle
        if not new_handle and handle is not None and handle.id in self.requests:
            raise InvalidConfiguration('%r is already in flight' % (request,))

        if self.concurrency_limit > 0:
            self.wait_for_max_active(self.concurrency_limit - 1)

        handle = request.get_handle(new_handle)
        handle.set_defaults(self.options)

        self.requests[handle.id] = request
        try:
            self.multi.add_handle(handle)
        except Exception:
            del self.requests[handle.id]
            handle.close()
            raise
        log.debug('Started %r on transfer %d', request, handle.id)

        self.process_requests(0)
        return self

    def finish_all_requests(self):
        """Waits for all requests to finish, performing retries until none
        are left."""
        while True:
            self.wait_for_max_active(0)

            # Swap the backlog out so retries queued while these start go
            # into the next pass.
            retries, self.retries = self.retries, []
            if not retries:
                break

            log.debug('Retrying %d requests', len(retries))
            for i, request in enumerate(retries):
                try:
                    self.start_request(request, True)
                except Exception:
                    # Put back the retries that never got started.
                    self.retries[:0] = retries[i + 1:]
                    raise

        return self

    def process_requests(self, timeout=None):
        """Makes one pass at the in-flight requests, dispatching any that
        have finished.

        Waits up to `timeout` seconds (by default, the manager's select
        timeout) for a request to finish. If the multiplexer reports a
        finished transfer that doesn't belong to an active request, a
        `ProtocolInvariantViolation` is raised.

        """
        if timeout is None:
            timeout = self.select_timeout

        if self.multi.select(timeout) == -1:
            # Nothing in flight.
            if self.requests:
                raise ProtocolInvariantViolation(
                    '%d requests are active but no transfers are in flight'
                    % len(self.requests))
            return self

        while True:
            call_again = self.multi.perform()[0]
            if not call_again:
                break
            time.sleep(self.yield_interval)

        drained = 0
        while True:
            handle = self.multi.info_read()
            if handle is None:
                break
            drained += 1
            self._finish(handle)

        if drained:
            log.debug('Finished %d requests, %d still active', drained,
                      len(self.requests))
        return self

    def _finish(self, handle):
        request = self.requests.pop(handle.id, None)
        self.multi.remove_handle(handle)
        if request is None:
            handle.close()
            raise ProtocolInvariantViolation('Unknown transfer handle: %d' % handle.id)

        # The request is out of the active table while its callback runs, so
        # the callback may start more requests.
        try:
            request.process(self)
        finally:
            handle.close()

        if request.should_retry():
            log.debug('Queueing %r for retry', request)
            self.retries.append(request)
        elif request.retry:
            log.warning('Not retrying %r: try limit reached', request)

    def wait_for_max_active(self, max_active):
        """Makes passes at the in-flight requests until no more than
        `max_active` are left."""
        while len(self.requests) > max_active:
            self.process_requests()
        return self

    def abort(self):
        """Abandons all active and queued requests without dispatching
        them."""
        requests, self.requests = self.requests, {}
        self.retries = []
        for request in requests.values():
            self.multi.remove_handle(request.handle)
            request.handle.close()
        if requests:
            log.warning('Abandoned %d active requests', len(requests))
        return self

    def close(self):
        """Releases the manager's multiplexer."""
        self.multi.close()

    def __len__(self):
        """Returns the number of requests in flight."""
        return len(self.requests)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        try:
            if isinstance(exc_value, ProtocolInvariantViolation):
                self.abort()
            else:
                try:
                    self.finish_all_requests()
                except ProtocolInvariantViolation:
                    self.abort()
                    raise
        finally:
            self.close()
