"""Multi-step compute strategies (medium and high compute levels).

Both strategies talk to the selected model through :class:`AIClient`,
report cumulative progress through ``on_update(text, False)`` and finish
with exactly one ``on_update(answer, True)``. Failures raise; the engine
turns them into the terminal error turn.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Callable, List, Sequence

from ..ai.client import AIClient, ClientSettings
from .cancellation import CancellationScope
from .collaborators import AuthContext, UpdateCallback
from .types import ApiMessage

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import ModelConfig, Settings

LOGGER = logging.getLogger(__name__)

__all__ = [
    "ClientFactory",
    "parse_numbered_list",
    "MediumComputeStrategy",
    "HighComputeStrategy",
]

ClientFactory = Callable[[ClientSettings], AIClient]

_LIST_ITEM = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+(.*\S)\s*$")

_DECOMPOSE_PROMPT = (
    "Break the following task into at most {limit} self-contained sub-questions that together "
    "answer it. Reply with a numbered list and nothing else.\n\nTask: {task}"
)
_PLAN_PROMPT = (
    "Plan how to answer the following task in at most {limit} stages. Each stage should build "
    "on the previous ones. Reply with a numbered list of stage goals and nothing else.\n\nTask: {task}"
)
_STEPS_PROMPT = (
    "Overall task: {task}\nCurrent stage: {stage}\n\nBreak the current stage into at most {limit} "
    "concrete steps. Reply with a numbered list and nothing else."
)
_ANSWER_PROMPT = "Overall task: {task}\n\nAnswer this concisely and accurately: {question}"
_STAGE_SYNTHESIS_PROMPT = (
    "Overall task: {task}\nStage: {stage}\n\nStep results:\n{results}\n\n"
    "Summarize what this stage established."
)
_FINAL_SYNTHESIS_PROMPT = (
    "Task: {task}\n\nUse the following intermediate results to write the final answer. "
    "Do not mention the intermediate steps.\n\n{results}"
)


def parse_numbered_list(text: str, limit: int) -> List[str]:
    """Extract up to ``limit`` list items from a model's reply.

    Lines without a list marker are used as-is when no marked lines exist.
    """
    lines = [line for line in (text or "").splitlines() if line.strip()]
    items = [match.group(1) for match in map(_LIST_ITEM.match, lines) if match]
    if not items:
        items = [line.strip() for line in lines]
    return items[:limit]


def _format_results(pairs: Sequence[tuple[str, str]]) -> str:
    return "\n\n".join(f"{index}. {question}\n{answer}" for index, (question, answer) in enumerate(pairs, 1))


class _ModelStrategy:
    """Shared plumbing: client construction and scoped completions."""

    def __init__(self, *, client_factory: ClientFactory | None = None, max_tokens: int | None = None) -> None:
        self._client_factory = client_factory or AIClient
        self._max_tokens = max_tokens

    def _client(self, settings: Settings, model: ModelConfig, auth: AuthContext) -> AIClient:
        return self._client_factory(ClientSettings.for_model(settings, model, auth))

    async def _ask(
        self,
        client: AIClient,
        scope: CancellationScope,
        prompt: str,
        history: Sequence[ApiMessage] = (),
        temperature: float | None = None,
    ) -> str:
        scope.raise_if_cancelled()
        messages: List[ApiMessage] = [dict(item) for item in history]
        messages.append({"role": "user", "content": prompt})
        kwargs = {"max_tokens": self._max_tokens}
        if temperature is not None:
            kwargs["temperature"] = temperature
        answer = await scope.run(client.complete(messages, **kwargs))
        return answer.strip()


class MediumComputeStrategy(_ModelStrategy):
    """Decompose into sub-questions, answer each, then synthesize."""

    def __init__(
        self,
        *,
        client_factory: ClientFactory | None = None,
        max_subquestions: int = 3,
        max_tokens: int | None = None,
    ) -> None:
        super().__init__(client_factory=client_factory, max_tokens=max_tokens)
        self._max_subquestions = max(1, max_subquestions)

    async def run(
        self,
        message: str,
        history: Sequence[ApiMessage],
        settings: Settings,
        model: ModelConfig,
        auth: AuthContext,
        on_update: UpdateCallback,
        scope: CancellationScope,
    ) -> None:
        client = self._client(settings, model, auth)
        try:
            on_update("Breaking the task into sub-questions...", False)
            plan = await self._ask(
                client,
                scope,
                _DECOMPOSE_PROMPT.format(limit=self._max_subquestions, task=message),
                history,
                temperature=settings.temperature,
            )
            questions = parse_numbered_list(plan, self._max_subquestions) or [message]
            LOGGER.debug("Medium compute: %d sub-question(s)", len(questions))

            answers: List[tuple[str, str]] = []
            progress = ""
            for index, question in enumerate(questions, 1):
                progress += f"**Sub-question {index}/{len(questions)}:** {question}\n\n"
                on_update(progress, False)
                answer = await self._ask(client, scope, _ANSWER_PROMPT.format(task=message, question=question))
                answers.append((question, answer))

            on_update(progress + "Synthesizing the final answer...", False)
            final = await self._ask(
                client,
                scope,
                _FINAL_SYNTHESIS_PROMPT.format(task=message, results=_format_results(answers)),
                history,
                temperature=settings.temperature,
            )
            scope.raise_if_cancelled()
            on_update(final, True)
        finally:
            await client.aclose()


class HighComputeStrategy(_ModelStrategy):
    """Plan stages, split each into steps, execute, then synthesize per stage and overall."""

    def __init__(
        self,
        *,
        client_factory: ClientFactory | None = None,
        max_stages: int = 3,
        max_steps: int = 3,
        max_tokens: int | None = None,
    ) -> None:
        super().__init__(client_factory=client_factory, max_tokens=max_tokens)
        self._max_stages = max(1, max_stages)
        self._max_steps = max(1, max_steps)

    async def run(
        self,
        message: str,
        history: Sequence[ApiMessage],
        settings: Settings,
        model: ModelConfig,
        auth: AuthContext,
        on_update: UpdateCallback,
        scope: CancellationScope,
    ) -> None:
        client = self._client(settings, model, auth)
        try:
            on_update("Planning stages...", False)
            plan = await self._ask(
                client,
                scope,
                _PLAN_PROMPT.format(limit=self._max_stages, task=message),
                history,
                temperature=settings.temperature,
            )
            stages = parse_numbered_list(plan, self._max_stages) or [message]
            LOGGER.debug("High compute: %d stage(s)", len(stages))

            stage_summaries: List[tuple[str, str]] = []
            progress = ""
            for stage_index, stage in enumerate(stages, 1):
                progress += f"**Stage {stage_index}/{len(stages)}:** {stage}\n\n"
                on_update(progress, False)
                steps_text = await self._ask(
                    client,
                    scope,
                    _STEPS_PROMPT.format(task=message, stage=stage, limit=self._max_steps),
                )
                steps = parse_numbered_list(steps_text, self._max_steps) or [stage]

                step_results: List[tuple[str, str]] = []
                for step_index, step in enumerate(steps, 1):
                    progress += f"- Step {stage_index}.{step_index}: {step}\n"
                    on_update(progress, False)
                    result = await self._ask(client, scope, _ANSWER_PROMPT.format(task=message, question=step))
                    step_results.append((step, result))

                summary = await self._ask(
                    client,
                    scope,
                    _STAGE_SYNTHESIS_PROMPT.format(task=message, stage=stage, results=_format_results(step_results)),
                )
                stage_summaries.append((stage, summary))
                progress += "\n"

            on_update(progress + "Synthesizing the final answer...", False)
            final = await self._ask(
                client,
                scope,
                _FINAL_SYNTHESIS_PROMPT.format(task=message, results=_format_results(stage_summaries)),
                history,
                temperature=settings.temperature,
            )
            scope.raise_if_cancelled()
            on_update(final, True)
        finally:
            await client.aclose()
