from __future__ import annotations
from typing import Iterable, List, Optional

import pytest

from extensions import RuntimeServices
from interpreter import LoopSignal, Runtime, run_program
from messages import SILENT, MessageSink
from source import ScriptSource


class ScriptedInput:
    """Input provider answering prompts from a fixed list."""

    def __init__(self, answers: Iterable[str] = ()) -> None:
        self.answers: List[str] = list(answers)
        self.prompts: List[str] = []

    def read_line(self, prompt: str = "") -> str:
        self.prompts.append(prompt)
        if not self.answers:
            return ""
        return self.answers.pop(0)

    def confirm(self, prompt: str) -> bool:
        return self.read_line(prompt).strip().lower() in ("y", "yes")


class Harness:
    def __init__(
        self,
        *,
        extended: bool = False,
        graphics: bool = False,
        inputs: Iterable[str] = (),
        max_depth: int = 100,
        max_args: int = 64,
        services: Optional[RuntimeServices] = None,
    ) -> None:
        self.output: List[str] = []
        self.inputs = ScriptedInput(inputs)
        self.messages = MessageSink(min_level=SILENT, writer=lambda text: None)
        self.runtime = Runtime(
            messages=self.messages,
            input_provider=self.inputs,
            output_sink=self.output.append,
            services=services,
            extended=extended,
            graphics=graphics,
            max_depth=max_depth,
            max_args=max_args,
            seed=1234,
        )
        self.source: Optional[ScriptSource] = None

    def run(self, *lines: str, entry: str = "main") -> LoopSignal:
        self.source = ScriptSource("\n".join(lines))
        return run_program(self.runtime, self.source, entry)

    @property
    def text(self) -> str:
        return "".join(self.output)

    @property
    def codes(self) -> List[int]:
        return self.messages.codes


@pytest.fixture
def vsb() -> Harness:
    return Harness()


@pytest.fixture
def mrt() -> Harness:
    return Harness(extended=True)


@pytest.fixture
def make_harness():
    return Harness


@pytest.fixture
def scripted_input():
    return ScriptedInput
