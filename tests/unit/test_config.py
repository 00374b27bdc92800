import pytest

from aptscan.main import AppConfig, build_pipeline, load_config


def test_missing_file_uses_defaults(tmp_path):
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg == AppConfig()
    assert cfg.scan.min_interval_s == pytest.approx(0.333)
    assert cfg.filter.city_substrings == ["lauderdale"]


def test_loads_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "scan:\n"
        "  min_interval_s: 0.5\n"
        "  max_busy_s: 4\n"
        "  parallel: true\n"
        "filter:\n"
        "  city_substrings: [miami]\n"
        "  zip_codes: ['33130']\n"
        "  street_substrings: ['500']\n"
        "camera:\n"
        "  mount: portrait\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.scan.min_interval_s == 0.5
    assert cfg.scan.parallel is True
    assert cfg.camera.mount == "portrait"

    coord = build_pipeline(cfg, lambda address, unit: None, recognize=lambda image, orientation: "")
    try:
        assert coord.throttler.min_interval_s == 0.5
        assert coord.throttler.max_busy_s == 4.0
        assert coord.scanner.parallel is True
        assert coord.scanner.matcher.filter.city_substrings == ("miami",)
    finally:
        coord.shutdown()


def test_env_var_points_at_config(tmp_path, monkeypatch):
    path = tmp_path / "alt.yaml"
    path.write_text("ocr:\n  lang: deu\n", encoding="utf-8")
    monkeypatch.setenv("APTSCAN_CONFIG", str(path))
    assert load_config().ocr.lang == "deu"


def test_invalid_file_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("scan:\n  min_interval_s: fast\n", encoding="utf-8")
    with pytest.raises(RuntimeError, match="Invalid config.yaml"):
        load_config(path)
