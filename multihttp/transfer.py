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

The transfer layer performs the individual HTTP requests a `Manager` starts.

Each attempt at a request gets its own `Handle`, which carries the request's
options and wraps one `pycurl.Curl` easy handle. A `Multi` wraps a
`pycurl.CurlMulti`, which keeps many handles in flight at once on the single
thread that polls it, and hands finished handles back to that thread.

Response headers are parsed into an `httplib2.Response`, so callbacks see
the same lower-cased header mapping an `httplib2.Http` request would give
them.

"""

from collections import deque
import email
from io import BytesIO
import itertools
import logging
import time

import httplib2
import pycurl

from multihttp.errors import ResourceInitFailure

log = logging.getLogger(__name__)


# Transport error codes. These are libcurl's own CURLE_* numbers, as reported
# by `pycurl`.
E_OK = 0
E_COULDNT_RESOLVE_HOST = 6
E_COULDNT_CONNECT = 7
E_OPERATION_TIMEDOUT = 28
E_SSL_CONNECT_ERROR = 35
E_TOO_MANY_REDIRECTS = 47
E_RECV_ERROR = 56

# Supported transfer options.
OPTIONS = ('uri', 'method', 'body', 'headers', 'redirections',
           'follow_redirects', 'timeout', 'connect_timeout', 'proxy',
           'ca_certs', 'disable_ssl_certificate_validation', 'credentials',
           'user_agent')

# Longest wait in seconds when curl has no socket to wait on yet and no
# timer of its own.
IDLE_WAIT = 0.1


class Handle(object):

    """A single attempt at an HTTP transfer.

    A `Handle` is configured with transfer options (see `OPTIONS`), prepared
    into a `pycurl.Curl` easy handle, performed once by a `Multi`, and
    closed. Every handle is issued an integer `id` unique within the
    process, which the `Manager` uses to find the request a finished handle
    belongs to.

    A handle can't be performed a second time; retries use a new handle.

    """

    _ids = itertools.count(1)

    def __init__(self, options=None):
        self.id = next(Handle._ids)
        self.options = {}
        self.curl = None
        self.closed = False

        self.buffer = None
        self.header_lines = []

        self.response = None
        self.content = None
        self.error = None
        self.errno = E_OK
        self.effective_url = None
        self.redirect_count = 0
        self.total_time = 0.0

        if options:
            self.setopt_dict(options)

    def __repr__(self):
        return '<Handle %d %s>' % (self.id, self.options.get('uri'))

    def setopt(self, key, value):
        """Sets transfer option `key` to `value`.

        If `key` is not a supported option or the handle is already closed, a
        `ResourceInitFailure` is raised.

        """
        if self.closed:
            raise ResourceInitFailure('Transfer handle %d is closed' % self.id)
        if key not in OPTIONS:
            raise ResourceInitFailure('Unsupported transfer option %r' % (key,))
        self.options[key] = value

    def setopt_dict(self, options):
        for key, value in options.items():
            self.setopt(key, value)

    def set_defaults(self, options):
        """Sets the options in mapping `options` that this handle does not
        already have a value for."""
        for key, value in options.items():
            if key not in self.options:
                self.setopt(key, value)

    def prepare(self):
        """Builds the `pycurl.Curl` easy handle that will perform this
        transfer.

        Preparing an already prepared handle does nothing. If the handle has
        no ``uri`` option, or curl rejects one of its options, a
        `ResourceInitFailure` is raised.

        """
        if self.closed:
            raise ResourceInitFailure('Transfer handle %d is closed' % self.id)
        if self.curl is not None:
            return self.curl
        if not self.options.get('uri'):
            raise ResourceInitFailure('Transfer handle %d has no uri' % self.id)

        self.buffer = BytesIO()
        self.header_lines = []
        try:
            curl = pycurl.Curl()
        except pycurl.error as exc:
            raise ResourceInitFailure('Could not create transfer %d: %s' % (self.id, exc))
        try:
            self._configure(curl)
        except (pycurl.error, TypeError, ValueError) as exc:
            curl.close()
            raise ResourceInitFailure('Could not set up transfer %d: %s' % (self.id, exc))
        # Lets the multiplexer map a finished easy handle back to us.
        curl.transfer = self
        self.curl = curl

        req_log = logging.getLogger('.'.join((__name__, 'request')))
        if req_log.isEnabledFor(logging.DEBUG):
            headers = self.options.get('headers') or {}
            req_log.debug('Transfer %d making request:\n%s %s\n%s\n\n%s', self.id,
                self.options.get('method', 'GET'), self.options['uri'],
                '\n'.join([
                    '%s: %s' % (k, v) for k, v in headers.items()
                ]), self.options.get('body') or '')

        return curl

    def _configure(self, curl):
        options = self.options
        curl.setopt(pycurl.URL, options['uri'])
        curl.setopt(pycurl.NOSIGNAL, 1)
        curl.setopt(pycurl.WRITEDATA, self.buffer)
        curl.setopt(pycurl.HEADERFUNCTION, self.header)

        method = options.get('method', 'GET').upper()
        if method == 'HEAD':
            curl.setopt(pycurl.NOBODY, 1)
        elif method != 'GET':
            curl.setopt(pycurl.CUSTOMREQUEST, method)
        if options.get('body') is not None:
            curl.setopt(pycurl.POSTFIELDS, options['body'])
        if options.get('headers'):
            curl.setopt(pycurl.HTTPHEADER, ['%s: %s' % (k, v)
                for k, v in options['headers'].items()])

        # Follow redirects unless told otherwise, as httplib2 does.
        curl.setopt(pycurl.FOLLOWLOCATION, 1 if options.get('follow_redirects', True) else 0)
        curl.setopt(pycurl.MAXREDIRS, options.get('redirections', httplib2.DEFAULT_MAX_REDIRECTS))

        if options.get('timeout') is not None:
            curl.setopt(pycurl.TIMEOUT_MS, int(options['timeout'] * 1000))
        if options.get('connect_timeout') is not None:
            curl.setopt(pycurl.CONNECTTIMEOUT_MS, int(options['connect_timeout'] * 1000))
        if options.get('proxy') is not None:
            # An empty string turns off proxies from the environment too.
            curl.setopt(pycurl.PROXY, options['proxy'])
        if options.get('ca_certs'):
            curl.setopt(pycurl.CAINFO, options['ca_certs'])
        if options.get('disable_ssl_certificate_validation'):
            curl.setopt(pycurl.SSL_VERIFYPEER, 0)
            curl.setopt(pycurl.SSL_VERIFYHOST, 0)
        if options.get('credentials'):
            name, password = options['credentials']
            curl.setopt(pycurl.USERPWD, '%s:%s' % (name, password))
        if options.get('user_agent'):
            curl.setopt(pycurl.USERAGENT, options['user_agent'])

    def header(self, line):
        """Collects one response header line from curl."""
        line = line.decode('iso-8859-1')
        if line.startswith('HTTP/'):
            # A status line starts a new response: after a redirect or a
            # 100 Continue, only the last response's headers count.
            self.header_lines = []
            return
        self.header_lines.append(line)

    def parse_response(self, status):
        """Returns the collected headers as an `httplib2.Response` with
        status `status`."""
        message = email.message_from_string(''.join(self.header_lines))
        message['status'] = str(status)
        response = httplib2.Response(message)
        # Match the lower case keys of a response httplib2 made itself.
        for k, v in list(response.items()):
            del response[k]
            response[k.lower()] = v
        return response

    def finish(self, errno=E_OK, error=None):
        """Records the outcome of the finished curl transfer.

        `errno` and `error` are the curl error code and message the
        multiplexer reported for it.

        """
        curl = self.curl
        status = curl.getinfo(pycurl.RESPONSE_CODE)
        self.effective_url = curl.getinfo(pycurl.EFFECTIVE_URL)
        self.redirect_count = curl.getinfo(pycurl.REDIRECT_COUNT)
        self.total_time = curl.getinfo(pycurl.TOTAL_TIME)

        response = self.parse_response(status) if status else None
        if errno == E_OK:
            self.record(response, self.buffer.getvalue())
        else:
            self.record_error(errno, error, response)

        resp_log = logging.getLogger('.'.join((__name__, 'response')))
        if resp_log.isEnabledFor(logging.DEBUG) and response is not None:
            resp_log.debug('Transfer %d got response:\n%s\n\n%s', self.id,
                '\n'.join([
                    '%s: %s' % (k, v) for k, v in response.items()
                ]), self.content)

    def record(self, response, content):
        """Records `response` (an `httplib2.Response`) and its `content` as
        the outcome of this transfer."""
        self.response = response
        self.content = content
        self.error = None
        self.errno = E_OK

    def record_error(self, errno, error=None, response=None):
        """Records transport failure `errno` as the outcome of this
        transfer."""
        log.debug('Transfer %d to %s failed (%d): %s', self.id,
                  self.options.get('uri'), errno, error)
        self.response = response
        self.content = None
        self.error = error or 'Transfer failed with error %d' % errno
        self.errno = errno

    def getcontent(self):
        return self.content

    def getinfo(self):
        """Returns a mapping describing the finished transfer."""
        url = self.options.get('uri')
        info = {
            'url': url,
            'effective_url': self.effective_url or url,
            'http_code': 0,
            'content_type': None,
            'headers': {},
            'redirect_count': self.redirect_count,
            'size_download': 0,
            'total_time': self.total_time,
        }
        response = self.response
        if response is not None:
            info['http_code'] = response.status
            info['content_type'] = response.get('content-type')
            info['headers'] = dict((k, v) for k, v in response.items()
                                   if k != 'status')
        if self.content is not None:
            info['size_download'] = len(self.content)
        return info

    def close(self):
        """Closes the handle, releasing its curl handle. Closing a closed
        handle does nothing."""
        if self.closed:
            return
        self.closed = True
        if self.curl is not None:
            self.curl.transfer = None
            self.curl.close()
            self.curl = None


class Multi(object):

    """A multiplexer keeping many `Handle` transfers in flight at once.

    This is a thin layer over `pycurl.CurlMulti`. The polling thread waits
    for socket activity with `select()`, drives the transfers with
    `perform()`, and reads finished handles off one at a time with
    `info_read()`.

    """

    def __init__(self):
        try:
            self.multi = pycurl.CurlMulti()
        except pycurl.error as exc:
            raise ResourceInitFailure('Could not create transfer multiplexer: %s' % (exc,))
        self.handles = {}
        self.messages = deque()

    def __len__(self):
        """Returns the number of handles added and not yet removed."""
        return len(self.handles)

    def add_handle(self, handle):
        """Starts performing `handle`.

        If the handle is already added, can't be prepared, or curl won't
        take it, a `ResourceInitFailure` is raised.

        """
        if handle.id in self.handles:
            raise ResourceInitFailure('Transfer handle %d was already added' % handle.id)
        curl = handle.prepare()
        try:
            self.multi.add_handle(curl)
        except pycurl.error as exc:
            raise ResourceInitFailure('Could not start transfer %d: %s' % (handle.id, exc))
        self.handles[handle.id] = handle

    def remove_handle(self, handle):
        """Stops tracking `handle`, abandoning its transfer if it is still
        running."""
        if self.handles.pop(handle.id, None) is None:
            return
        if handle in self.messages:
            self.messages.remove(handle)
        if handle.curl is not None:
            self.multi.remove_handle(handle.curl)

    def select(self, timeout):
        """Waits up to `timeout` seconds for socket activity on the
        transfers.

        Returns the number of sockets ready (zero on timeout), or -1 at once
        if no transfers are in flight at all.

        """
        if not self.handles:
            return -1
        if self.messages:
            return len(self.messages)

        # Don't sleep past curl's own timers.
        wanted = self.multi.timeout()
        if wanted >= 0:
            timeout = min(timeout, wanted / 1000.0)

        read, write, error = self.multi.fdset()
        if not (read or write or error):
            # Curl has no socket open yet, e.g. while it resolves a name.
            time.sleep(min(timeout, IDLE_WAIT))
            return 0
        return max(self.multi.select(timeout), 0)

    def perform(self):
        """Drives the transfers as far as they'll go without blocking.

        Returns a tuple of whether curl asks to be called again right away,
        and the number of transfers still running.

        """
        ret, running = self.multi.perform()
        return ret == pycurl.E_CALL_MULTI_PERFORM, running

    def _read_messages(self):
        while True:
            queued, ok_list, err_list = self.multi.info_read()
            for curl in ok_list:
                curl.transfer.finish()
                self.messages.append(curl.transfer)
            for curl, errno, error in err_list:
                curl.transfer.finish(errno, error)
                self.messages.append(curl.transfer)
            if not queued:
                break

    def info_read(self):
        """Returns the next finished `Handle`, or `None` if there isn't
        one."""
        if not self.messages:
            self._read_messages()
        if self.messages:
            return self.messages.popleft()
        return None

    def close(self):
        """Closes the curl multi handle. Transfers still in flight are
        abandoned."""
        self.multi.close()
