#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#

import uuid
from typing import Optional


def generate_random_id() -> str:
    return str(uuid.uuid4())


class State:
    def __init__(self, run_id: str = None) -> None:
        self._run_id: str = run_id or generate_random_id()
        self._trace_id: Optional[str] = None

    def set_trace_id(self, trace_id: Optional[str]) -> None:
        self._trace_id = trace_id

    def init_new_trace(self) -> str:
        trace_id = generate_random_id()
        self.set_trace_id(trace_id)
        return trace_id

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def trace_id(self) -> Optional[str]:
        return self._trace_id


_state: Optional[State] = None


def init_state(run_id: str = None) -> State:
    global _state
    _state = State(run_id=run_id)
    return _state


def get_state() -> State:
    # The library can be used without going through main(), so the state is created lazily.
    global _state
    if _state is None:
        _state = State()
    return _state
