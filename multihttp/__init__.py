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

multihttp performs many HTTP requests in parallel, handing each response to
a callback and retrying the requests the callback asks to have retried.

This package's `Manager` keeps a bounded number of requests in flight at a
time. Transfers are run by libcurl through `pycurl`, all of them on the one
thread that polls the manager, so callbacks never run concurrently.

To make requests, create a `Manager`, ask it for new `Request` instances,
give each a callback, and start them. Once all requests are started, finish
the manager; it returns when every request, including any retries, is done.

    >>> with Manager(concurrency_limit=2) as manager:
    ...     for url in urls:
    ...         request = manager.new_request(url)
    ...         request.set_callback(handle_result).set_try_limit(3)
    ...         manager.start_request(request)

"""

__version__ = '1.2'
__date__ = '19 October 2026'
__author__ = 'Six Apart Ltd.'
__credits__ = """Brad Choate
Mike Malone
Mark Paschal"""

from multihttp.errors import (MultiError, InvalidConfiguration,
    ProtocolInvariantViolation, ResourceInitFailure)
from multihttp.client import Manager, Request

__all__ = ['Manager', 'Request', 'MultiError', 'InvalidConfiguration',
           'ProtocolInvariantViolation', 'ResourceInitFailure']
