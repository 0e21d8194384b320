"""Pipeline orchestrator: quality/axis -> 5 detections per side -> merge -> synthesis.

Fail-fast: the first error moves the run to FAILED and is re-raised; nothing
partial is reported. With ``max_concurrency`` 1 every call runs in a fixed
order (R stage 1, R x5, L stage 1, L x5, synthesis). Above 1 the two sides and
each side's five detections are fanned out on thread pools, and a semaphore
caps the model calls in flight. The first failure sets a per-run abort flag:
calls not yet sent are skipped, calls already in flight are left to finish.
"""
from __future__ import annotations
import concurrent.futures
import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx

from iris_backend.config import REPORT_FILENAME
from iris_backend.coord_map import compress_coord_map, load_coord_map
from iris_backend.errors import ConfigurationError, InputError, RunAbortedError
from iris_backend.llm_clients.base import LLMVisionClient
from iris_backend.llm_clients.factory import create_vision_client
from iris_backend.pipeline.merge import (
    SideResult,
    merge_detections,
    parse_detection_result,
    parse_quality_result,
    parse_synthesis_report,
)
from iris_backend.pipeline.questionnaire import Questionnaire
from iris_backend.prompts.builder import (
    REPORT_LANGUAGE,
    build_detection_prompt,
    build_quality_axis_prompt,
    build_synthesis_prompt,
)
from iris_backend.schema import (
    DETECTION_GROUPS,
    SIDES,
    DetectionResult,
    ImageInput,
    ProviderConfig,
    StageRequest,
    SynthesisReport,
)
from iris_backend.utils.run_log import RunLog

LogFn = Callable[..., None]


class RunState(str, Enum):
    IDLE = "Idle"
    COLLECTING_INPUTS = "CollectingInputs"
    SIDE1_QUALITY = "Side1Quality"
    SIDE1_DETECTION = "Side1Detection"
    SIDE2_QUALITY = "Side2Quality"
    SIDE2_DETECTION = "Side2Detection"
    MERGING = "Merging"
    SYNTHESIZING = "Synthesizing"
    REPORTING = "Reporting"
    FAILED = "Failed"


_QUALITY_STATE = {SIDES[0]: RunState.SIDE1_QUALITY, SIDES[1]: RunState.SIDE2_QUALITY}
_DETECTION_STATE = {SIDES[0]: RunState.SIDE1_DETECTION, SIDES[1]: RunState.SIDE2_DETECTION}


@dataclass
class PipelineResult:
    report: SynthesisReport
    history: List[RunState] = field(default_factory=list)

    def to_export_dict(self) -> Dict[str, Any]:
        return self.report.to_export_dict()


class IrisPipeline:
    """One pipeline run per ``run()`` call; no state shared across instances."""

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[LLMVisionClient] = None,
        coord_map: Any = None,
        log: Optional[LogFn] = None,
        language: str = REPORT_LANGUAGE,
        http_client: Optional[httpx.Client] = None,
    ):
        # Snapshot: later edits to the caller's settings do not reach this run
        self.config = config.model_copy(deep=True)
        self._client = client
        self._http_client = http_client
        self.coord_map = coord_map
        self.log: LogFn = log or RunLog()
        self.language = language
        self.state = RunState.IDLE
        self.history: List[RunState] = [RunState.IDLE]
        self._state_lock = threading.Lock()
        self._sem = threading.BoundedSemaphore(self.config.max_concurrency)
        self._abort = threading.Event()

    # ----------------------------------------------------------------------
    def _set_state(self, state: RunState) -> None:
        with self._state_lock:
            self.state = state
            self.history.append(state)

    def _check_inputs(self, images: Dict[str, Optional[ImageInput]]) -> None:
        missing = [s for s in SIDES if images.get(s) is None]
        if missing:
            self.log("Upload both irises (R and L).", "warn")
            raise InputError(f"Missing image for side(s): {', '.join(missing)}")
        if not self.config.model_id:
            self.log("Missing model id.", "warn")
            raise ConfigurationError("Missing model id.")
        if self.config.transport_mode == "direct" and not self.config.credential():
            self.log(f"Direct mode: enter the {self.config.provider} API key.", "warn")
            raise ConfigurationError(f"Direct mode: missing {self.config.provider} API key.")

    def _call(self, client: LLMVisionClient, req: StageRequest) -> dict:
        if self._abort.is_set():
            raise RunAbortedError(f"{req.stage_id} skipped: run already failed.")
        with self._sem:
            # Calls queued on the semaphore while another one failed are dropped too
            if self._abort.is_set():
                raise RunAbortedError(f"{req.stage_id} skipped: run already failed.")
            return client.invoke(req.instruction, req.task, req.image)

    def _guarded(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a fan-out task; its failure stops every other task of the run."""
        try:
            return fn(*args)
        except BaseException:
            self._abort.set()
            raise

    def _join(self, futures: List[concurrent.futures.Future]) -> List[Any]:
        """Results in submission order, or the first real error of the batch."""
        errors = [f.exception() for f in futures if not f.cancelled() and f.exception() is not None]
        if errors:
            primary = [e for e in errors if not isinstance(e, RunAbortedError)]
            raise (primary or errors)[0]
        if any(f.cancelled() for f in futures):
            raise RunAbortedError("Run aborted before all calls were made.")
        return [f.result() for f in futures]

    def _fan_out(self, workers: int, tasks: List[Tuple[Callable[..., Any], Tuple[Any, ...]]]) -> List[Any]:
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self._guarded, fn, *args) for fn, args in tasks]
            _, pending = concurrent.futures.wait(futures, return_when=concurrent.futures.FIRST_EXCEPTION)
            if pending and self._abort.is_set():
                for f in pending:
                    f.cancel()
        return self._join(futures)

    # ----------------------------------------------------------------------
    def _detect(self, client: LLMVisionClient, side: str, group: str, image: ImageInput) -> DetectionResult:
        self.log(f"{side}: Stage 2 ({group})")
        p = build_detection_prompt(side, group, language=self.language)
        raw = self._call(client, StageRequest("stage2", p.instruction, p.task, side=side, group=group, image=image))
        result = parse_detection_result(raw, side, group, log=self.log)
        self.log(f"{side}: Stage 2 {group} OK (findings={len(result.findings)})", "ok")
        return result

    def _run_detections(self, client: LLMVisionClient, side: str, image: ImageInput) -> List[DetectionResult]:
        if self.config.max_concurrency <= 1:
            return [self._detect(client, side, g, image) for g in DETECTION_GROUPS]
        workers = min(self.config.max_concurrency, len(DETECTION_GROUPS))
        return self._fan_out(workers, [(self._detect, (client, side, g, image)) for g in DETECTION_GROUPS])

    def _run_side(self, client: LLMVisionClient, side: str, image: ImageInput) -> SideResult:
        self._set_state(_QUALITY_STATE[side])
        self.log(f"{side}: Stage 1 (quality + axes)")
        p = build_quality_axis_prompt(side)
        raw = self._call(client, StageRequest("stage1", p.instruction, p.task, side=side, image=image))
        quality = parse_quality_result(raw, side, log=self.log)
        self.log(f"{side}: Stage 1 OK (ok={quality.quality.ok})", "ok")

        self._set_state(_DETECTION_STATE[side])
        detections = self._run_detections(client, side, image)
        return SideResult(side=side, quality=quality, detections=detections)

    def _run_sides(self, client: LLMVisionClient, images: Dict[str, ImageInput]) -> List[SideResult]:
        if self.config.max_concurrency <= 1:
            return [self._run_side(client, s, images[s]) for s in SIDES]
        # Join barrier: both sides complete before merging
        return self._fan_out(len(SIDES), [(self._run_side, (client, s, images[s])) for s in SIDES])

    def _synthesize(self, client: LLMVisionClient, side_results: List[SideResult], questionnaire: Questionnaire) -> SynthesisReport:
        self._set_state(RunState.MERGING)
        bundle = merge_detections(side_results)
        coord = self.coord_map if self.coord_map is not None else load_coord_map()

        self._set_state(RunState.SYNTHESIZING)
        self.log("Stage 5 (synthesis + report)")
        p = build_synthesis_prompt(
            compress_coord_map(coord),
            questionnaire.to_prompt_text(),
            bundle.to_prompt_json(),
            language=self.language,
        )
        raw = self._call(client, StageRequest("stage5", p.instruction, p.task))
        return parse_synthesis_report(raw)

    # ----------------------------------------------------------------------
    def run(
        self,
        images: Dict[str, Optional[ImageInput]],
        questionnaire: Optional[Questionnaire] = None,
    ) -> PipelineResult:
        """Run all stages; raises the first error after moving to FAILED."""
        self._set_state(RunState.COLLECTING_INPUTS)
        self._check_inputs(images)
        questionnaire = questionnaire or Questionnaire()
        self._abort = threading.Event()
        # A client built here is closed here; an injected one belongs to the caller
        owned: Optional[LLMVisionClient] = None
        try:
            client = self._client
            if client is None:
                client = owned = create_vision_client(
                    self.config, http_client=self._http_client, log=self.log
                )
            side_results = self._run_sides(client, {s: images[s] for s in SIDES})
            report = self._synthesize(client, side_results, questionnaire)
        except Exception as e:
            self._set_state(RunState.FAILED)
            self.log(f"Error: {e}", "err")
            raise
        finally:
            if owned is not None:
                owned.close()
        self._set_state(RunState.REPORTING)
        self.log("Done.", "ok")
        return PipelineResult(report=report, history=list(self.history))


def run_pipeline(
    config: ProviderConfig,
    right: Optional[ImageInput],
    left: Optional[ImageInput],
    questionnaire: Optional[Questionnaire] = None,
    **kwargs: Any,
) -> PipelineResult:
    return IrisPipeline(config, **kwargs).run({"R": right, "L": left}, questionnaire)


def export_report(report: Union[SynthesisReport, PipelineResult], out_dir: Union[str, Path] = ".") -> Path:
    """Write the report as the downloadable ``iris_report.json``."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    path = out / REPORT_FILENAME
    path.write_text(json.dumps(report.to_export_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
    return path
