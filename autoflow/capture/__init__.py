"""Action capture, selector synthesis, codegen and replay."""

from autoflow.capture.channel import (
    CallbackChannel,
    MessageChannel,
    MessageType,
    RecordingController,
    RecordingMessage,
)
from autoflow.capture.codegen import ScriptGenerator, generate_script
from autoflow.capture.recorder import ActionRecorder
from autoflow.capture.replay import ActionReplayer, ReplayResult, StepResult
from autoflow.capture.selectors import SelectorSynthesizer, synthesize_selector
from autoflow.capture.store import JSONFileStore, KeyValueStore, MemoryStore
from autoflow.capture.surface import CaptureSurface, HostSurface, PlaywrightSurface
from autoflow.capture.types import (
    Action,
    ActionKind,
    CaptureEvent,
    Coordinates,
    ElementDescription,
    EventType,
    Session,
    sort_actions,
)

__all__ = [
    "Action",
    "ActionKind",
    "ActionRecorder",
    "ActionReplayer",
    "CallbackChannel",
    "CaptureEvent",
    "CaptureSurface",
    "Coordinates",
    "ElementDescription",
    "EventType",
    "HostSurface",
    "JSONFileStore",
    "KeyValueStore",
    "MemoryStore",
    "MessageChannel",
    "MessageType",
    "PlaywrightSurface",
    "RecordingController",
    "RecordingMessage",
    "ReplayResult",
    "ScriptGenerator",
    "SelectorSynthesizer",
    "Session",
    "StepResult",
    "generate_script",
    "sort_actions",
    "synthesize_selector",
]
