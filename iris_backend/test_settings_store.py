"""Persisted settings and the report CLI built on them."""
from __future__ import annotations
import json

from iris_backend import generate_iris_report
from iris_backend.conftest import ScriptedClient, png_bytes
from iris_backend.schema import ProviderConfig
from iris_backend.settings_store import STORAGE_KEY, load_settings, save_settings


def test_credentials_not_saved_unless_opted_in(tmp_path):
    path = tmp_path / "settings.json"
    cfg = ProviderConfig(provider="gemini", model_id="gemini-2.0-flash", transport_mode="direct",
                         gemini_api_key="g-secret")

    save_settings(cfg, remember_credentials=False, path=path)

    raw = path.read_text(encoding="utf-8")
    assert "g-secret" not in raw
    blob = json.loads(raw)[STORAGE_KEY]
    assert blob == {"transport_mode": "direct", "provider": "gemini", "model_id": "gemini-2.0-flash",
                    "remember_credentials": False}


def test_credentials_saved_when_remembered(tmp_path):
    path = tmp_path / "settings.json"
    cfg = ProviderConfig(provider="openai", model_id="gpt-4o", openai_api_key="sk-secret")

    save_settings(cfg, remember_credentials=True, path=path)
    loaded = load_settings(path)

    assert loaded["openai_api_key"] == "sk-secret"
    assert "gemini_api_key" not in loaded
    assert loaded["remember_credentials"] is True


def test_other_keys_in_store_survive_a_save(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"something_else": {"x": 1}}), encoding="utf-8")

    save_settings(ProviderConfig(model_id="gpt-4o"), path=path)

    assert json.loads(path.read_text(encoding="utf-8"))["something_else"] == {"x": 1}


def test_missing_or_unreadable_store_loads_empty(tmp_path, capsys):
    assert load_settings(tmp_path / "absent.json") == {}
    bad = tmp_path / "bad.json"
    bad.write_text("{oops", encoding="utf-8")
    assert load_settings(bad) == {}
    assert "⚠" in capsys.readouterr().out


# ---------------------------------------------------------------- CLI
def _args(tmp_path, *extra):
    return ["--settings", str(tmp_path / "settings.json"), "--quiet", *extra]


def test_cli_flags_override_saved_settings(tmp_path):
    save_settings(ProviderConfig(provider="openai", model_id="gpt-4o-mini", transport_mode="direct"),
                  path=tmp_path / "settings.json")
    parser = generate_iris_report.build_parser()

    cfg = generate_iris_report.resolve_config(parser.parse_args(_args(tmp_path)))
    assert (cfg.provider, cfg.model_id, cfg.transport_mode) == ("openai", "gpt-4o-mini", "direct")

    # Switching provider must not reuse the other provider's saved model
    cfg = generate_iris_report.resolve_config(parser.parse_args(_args(tmp_path, "--provider", "gemini")))
    assert cfg.provider == "gemini"
    assert cfg.model_id == "gemini-2.0-flash"


def test_cli_missing_image_exits_with_warning(tmp_path, capsys):
    right = tmp_path / "r.png"
    right.write_bytes(png_bytes())

    code = generate_iris_report.main(_args(tmp_path, "--right", str(right), "--out_dir", str(tmp_path)))

    assert code == 2
    assert "⚠" in capsys.readouterr().err
    assert not (tmp_path / "iris_report.json").exists()
    assert (tmp_path / "settings.json").exists()
    run_log = (tmp_path / "iris_run.log").read_text(encoding="utf-8")
    assert "Upload both irises" in run_log


def test_cli_writes_report(tmp_path, monkeypatch, capsys):
    client = ScriptedClient()
    monkeypatch.setattr(
        "iris_backend.pipeline.orchestrator.create_vision_client",
        lambda config, http_client=None, log=None: client,
    )
    for name in ("r.png", "l.png"):
        (tmp_path / name).write_bytes(png_bytes())

    code = generate_iris_report.main(_args(
        tmp_path,
        "--right", str(tmp_path / "r.png"),
        "--left", str(tmp_path / "l.png"),
        "--model", "gpt-4o",
        "--provider", "openai",
        "--complaints", "fatigue",
        "--out_dir", str(tmp_path / "out"),
    ))

    assert code == 0
    assert len(client.calls) == 13
    assert "complaints=fatigue" in client.tasks[-1]
    report = json.loads((tmp_path / "out" / "iris_report.json").read_text(encoding="utf-8"))
    assert report["analysis"]["overallHealth"] == 72
    assert "iris_report.json" in capsys.readouterr().out
    run_log = (tmp_path / "out" / "iris_run.log").read_text(encoding="utf-8")
    assert "Provider=openai model=gpt-4o" in run_log
    assert "Done." in run_log
