# log_utils.py -- Logging utilities for gitodb
# Copyright (C) 2010 Google, Inc.
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# gitodb is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#


"""Logging utilities for gitodb.

gitodb is used as a library, so its loggers carry a null handler and stay
silent until the application configures logging. Modules only need
getLogger, which this module re-exports.

Set GITODB_TRACE to "1" or "true" to trace to stderr, or to an absolute
path to append trace output to that file.
"""

__all__ = [
    "default_logging_config",
    "getLogger",
    "remove_null_handler",
]

import logging
import os
import sys

getLogger = logging.getLogger


class _NullHandler(logging.Handler):
    """No-op logging handler to avoid unexpected logging warnings."""

    def emit(self, record: logging.LogRecord) -> None:
        pass


_NULL_HANDLER = _NullHandler()
_GITODB_LOGGER = getLogger("gitodb")
_GITODB_LOGGER.addHandler(_NULL_HANDLER)

TRACE_ENVIRONMENT_VARIABLE = "GITODB_TRACE"

_TRACE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def _trace_handler() -> logging.Handler | None:
    """Return the handler GITODB_TRACE asks for, or None if tracing is off.

    Values other than "1", "true" or an absolute path turn tracing off. A
    trace file that cannot be opened is reported on stderr.
    """
    value = os.environ.get(TRACE_ENVIRONMENT_VARIABLE, "")
    if value.lower() in ("1", "true"):
        return logging.StreamHandler(sys.stderr)
    if not os.path.isabs(value):
        return None
    try:
        return logging.FileHandler(value, mode="a")
    except OSError as e:
        sys.stderr.write(
            f"Warning: cannot open {TRACE_ENVIRONMENT_VARIABLE} file {value}: {e}\n"
        )
        return None


def default_logging_config() -> None:
    """Set up the default gitodb loggers.

    With GITODB_TRACE set, everything from DEBUG up goes to the trace target;
    otherwise INFO and above goes to stderr.
    """
    remove_null_handler()

    handler = _trace_handler()
    if handler is None:
        logging.basicConfig(
            level=logging.INFO,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s: %(message)s",
        )
        return
    handler.setFormatter(logging.Formatter(_TRACE_FORMAT))
    logging.basicConfig(level=logging.DEBUG, handlers=[handler])


def remove_null_handler() -> None:
    """Remove the null handler from the gitodb loggers.

    Callers that configure logging themselves can call this first so records
    are not also passed to the null handler.
    """
    _GITODB_LOGGER.removeHandler(_NULL_HANDLER)
