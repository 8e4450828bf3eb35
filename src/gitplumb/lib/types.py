"""Stable identifier newtypes."""

from typing import NewType

TraceId = NewType("TraceId", str)
RuntimeId = NewType("RuntimeId", str)
CommandName = NewType("CommandName", str)
