#!/usr/bin/env python3
"""Run the iris pipeline on two images and write iris_report.json.

Usage:
 python -m iris_backend.generate_iris_report --right R.jpg --left L.jpg \
        --provider gemini --model gemini-2.0-flash --complaints "bloating" --out_dir out/

Provider, model and transport are remembered between runs (API keys only with
--remember_credentials). In the default "local" transport the relay
(`iris-relay`) must be running and holds the keys.
"""
from __future__ import annotations
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from iris_backend import config
from iris_backend.coord_map import load_coord_map
from iris_backend.errors import ConfigurationError, InputError, IrisPipelineError
from iris_backend.pipeline.images import load_image
from iris_backend.pipeline.orchestrator import IrisPipeline, export_report
from iris_backend.pipeline.questionnaire import Questionnaire
from iris_backend.prompts.builder import REPORT_LANGUAGE
from iris_backend.schema import ProviderConfig
from iris_backend.settings_store import load_settings, save_settings
from iris_backend.utils.run_log import RunLog


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Iris analysis report via vision LLMs")
    ap.add_argument("--right", help="Right iris image (R)")
    ap.add_argument("--left", help="Left iris image (L)")
    ap.add_argument("--out_dir", default=".", help=f"Directory for {config.REPORT_FILENAME}")
    ap.add_argument("--provider", choices=["openai", "gemini"])
    ap.add_argument("--model", help="Model id, e.g. gpt-4o or gemini-2.0-flash")
    ap.add_argument("--transport", choices=["local", "direct"], help="local = via relay, direct = own key")
    ap.add_argument("--relay_url", default=config.RELAY_URL)
    ap.add_argument("--openai_key", help="OpenAI key for direct transport")
    ap.add_argument("--gemini_key", help="Gemini key for direct transport")
    ap.add_argument("--remember_credentials", action="store_true", help="Also save the API keys")
    ap.add_argument("--settings", default=str(config.SETTINGS_PATH), help="Settings file")
    ap.add_argument("--age", default=0)
    ap.add_argument("--gender", default="")
    ap.add_argument("--complaints", default="")
    ap.add_argument("--habits", default="")
    ap.add_argument("--coord_map", help="Zone map JSON (default: bundled v9 map)")
    ap.add_argument("--concurrency", type=int, default=config.MAX_CONCURRENCY,
                    help="Max model calls in flight (1 = sequential)")
    ap.add_argument("--max_image_px", type=int, default=config.MAX_IMAGE_PX,
                    help="Downscale larger uploads to this size (0 = off)")
    ap.add_argument("--language", default=REPORT_LANGUAGE, help="Language of report strings")
    ap.add_argument("--quiet", action="store_true")
    return ap


def resolve_config(args: argparse.Namespace) -> ProviderConfig:
    """CLI flags override saved settings, which override defaults."""
    saved = load_settings(args.settings)
    provider = args.provider or saved.get("provider") or config.DEFAULT_PROVIDER
    model = args.model
    if not model:
        if saved.get("provider", provider) == provider:
            model = saved.get("model_id")
        model = model or config.DEFAULT_MODELS.get(provider, "")
    return ProviderConfig(
        transport_mode=args.transport or saved.get("transport_mode") or config.DEFAULT_TRANSPORT,
        provider=provider,
        model_id=model,
        openai_api_key=args.openai_key or saved.get("openai_api_key"),
        gemini_api_key=args.gemini_key or saved.get("gemini_api_key"),
        relay_url=args.relay_url,
        max_concurrency=max(1, args.concurrency),
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = resolve_config(args)
    remember = args.remember_credentials or bool(load_settings(args.settings).get("remember_credentials"))
    save_settings(cfg, remember_credentials=remember, path=args.settings)

    log = RunLog(echo=not args.quiet)
    log(f"Provider={cfg.provider} model={cfg.model_id} transport={cfg.transport_mode}")
    try:
        code = _run(args, cfg, log)
    finally:
        write_run_log(log, args.out_dir)
    return code


def write_run_log(log: RunLog, out_dir: str) -> Path:
    """Save the run log beside the report, also for failed runs."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    path = out / config.RUN_LOG_FILENAME
    path.write_text(log.text() + "\n", encoding="utf-8")
    return path


def _run(args: argparse.Namespace, cfg: ProviderConfig, log: RunLog) -> int:
    try:
        images = {
            "R": load_image(args.right, max_px=args.max_image_px),
            "L": load_image(args.left, max_px=args.max_image_px),
        }
        coord = load_coord_map(args.coord_map)
        questionnaire = Questionnaire(
            age=args.age, gender=args.gender, complaints=args.complaints, habits=args.habits
        )
        pipeline = IrisPipeline(cfg, coord_map=coord, log=log, language=args.language)
        result = pipeline.run(images, questionnaire)
    except (InputError, ConfigurationError) as e:
        print(f"⚠ {e}", file=sys.stderr)
        return 2
    except IrisPipelineError as e:
        print(f"✖ Error: {e}", file=sys.stderr)
        return 1

    out = export_report(result, args.out_dir)
    print(f"Final report written to {out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
