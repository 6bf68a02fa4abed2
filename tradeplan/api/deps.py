"""Dependencies for the plan API.

Services live on ``app.state.services`` so tests can swap in fakes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Annotated

from fastapi import Depends, Request

from tradeplan.config.settings import Settings
from tradeplan.llm_client.base import LLMClient
from tradeplan.pipeline.worker import PlanWorker
from tradeplan.prompts.manager import PromptSet
from tradeplan.storage.job_store import JobStore
from tradeplan.storage.state_store import MongoStateStore, StateStore


@dataclass(slots=True)
class AppServices:
    settings: Settings
    job_store: JobStore
    llm_client: LLMClient
    prompt_set: PromptSet
    state_store: StateStore | None = None
    _state_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def build_worker(self) -> PlanWorker:
        return PlanWorker(
            job_store=self.job_store,
            llm_client=self.llm_client,
            prompt_set=self.prompt_set,
            stage_a_timeout_seconds=self.settings.stage_a_timeout_seconds,
            stage_b_timeout_seconds=self.settings.stage_b_timeout_seconds,
            stale_after_seconds=self.settings.job_stale_after_seconds,
            preview_chars=self.settings.preview_chars,
        )

    def resolve_state_store(self) -> StateStore:
        with self._state_lock:
            if self.state_store is None:
                self.state_store = MongoStateStore.from_uri(
                    uri=self.settings.mongo_uri,
                    db=self.settings.mongo_db,
                    collection=self.settings.mongo_collection,
                    doc_id=self.settings.state_doc_id,
                )
            return self.state_store


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_request_id(request: Request) -> str:
    return request.state.request_id


Services = Annotated[AppServices, Depends(get_services)]
RequestId = Annotated[str, Depends(get_request_id)]
