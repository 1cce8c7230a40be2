#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package; intended for "from .internal_types import *" """

from __future__ import annotations

from typing import (
    Any, Dict, List, Optional, Set, Tuple, Union, Callable, Awaitable,
    Iterable, Iterator, Mapping, MutableMapping, Sequence,
    AsyncIterable, AsyncIterator, AsyncContextManager, Deque,
    TYPE_CHECKING,
  )

from types import TracebackType

from typing_extensions import Self, TypeAlias

HostAndPort: TypeAlias = Tuple[str, int]
"""An (ip_address, port) tuple as used by the socket module"""

Jsonable: TypeAlias = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A value that can be serialized with json.dumps"""

JsonableDict: TypeAlias = Dict[str, Jsonable]
"""A dict that can be serialized with json.dumps"""

__all__ = [
    'Any', 'Dict', 'List', 'Optional', 'Set', 'Tuple', 'Union', 'Callable', 'Awaitable',
    'Iterable', 'Iterator', 'Mapping', 'MutableMapping', 'Sequence',
    'AsyncIterable', 'AsyncIterator', 'AsyncContextManager', 'Deque',
    'TYPE_CHECKING', 'TracebackType', 'Self', 'TypeAlias',
    'HostAndPort', 'Jsonable', 'JsonableDict',
]
