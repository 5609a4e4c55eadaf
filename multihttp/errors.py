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

Exceptions raised by the multihttp `Manager`, its `Request` instances, and
the transfer layer beneath them.

Transport failures (timeouts, refused connections, bad hosts) are not
exceptions here. They are recorded on the request for its callback to read
through `Request.get_error()` and `Request.get_error_code()`.

"""


class MultiError(Exception):
    """An Exception raised when a `Manager` or `Request` cannot be
    configured or a batch of requests cannot be carried out."""
    pass


class InvalidConfiguration(MultiError):
    """An exception raised when a setter is given a value it can't accept.

    The object being configured is left unchanged.

    """
    pass


class ProtocolInvariantViolation(MultiError):
    """An exception raised when the `Manager` finds its table of active
    requests out of step with the multiplexer, as when a finished transfer
    has no registered request.

    The batch can't safely continue after this; a `Manager` used as a
    context manager abandons its remaining requests when it sees one.

    """
    pass


class ResourceInitFailure(MultiError):
    """An exception raised when a transfer handle or the multiplexer can't
    be created or can't accept a transfer."""
    pass
