from typer.testing import CliRunner

from modelworks.model_store import cli as cli_module

runner = CliRunner()


def _use_config(monkeypatch, config):
    monkeypatch.setattr(cli_module, "get_config", lambda: config)


def test_classify_command(tmp_path, make_model):
    folder = make_model(
        tmp_path / "SDXLTurbo", "Unet.mlmodelc", "TextEncoder.mlmodelc", "TextEncoder2.mlmodelc"
    )

    result = runner.invoke(cli_module.app, ["classify", str(folder)])

    assert result.exit_code == 0
    assert "variant-b" in result.stdout


def test_classify_rejects_missing_path(tmp_path):
    result = runner.invoke(cli_module.app, ["classify", str(tmp_path / "missing")])
    assert result.exit_code == 1


def test_scan_command_lists_models(monkeypatch, store_config, make_model):
    _use_config(monkeypatch, store_config)
    make_model(store_config.models_root / "SD15", "Unet.mlmodelc", "VAE.mlmodelc")

    result = runner.invoke(cli_module.app, ["scan", "--no-sizes"])

    assert result.exit_code == 0
    assert "SD15" in result.stdout
    assert "legacy" in result.stdout


def test_download_command_installs_archive(monkeypatch, store_config, fake_http, legacy_zip):
    _use_config(monkeypatch, store_config)
    fake_http.respond(legacy_zip)

    result = runner.invoke(
        cli_module.app, ["download", "CliModel", "https://example.com/CliModel.zip"]
    )

    assert result.exit_code == 0, result.stdout
    assert (store_config.models_root / "CliModel" / "Unet.mlmodelc").is_dir()


def test_download_command_skips_installed(monkeypatch, store_config):
    _use_config(monkeypatch, store_config)
    (store_config.models_root / "Have").mkdir()

    result = runner.invoke(cli_module.app, ["download", "Have", "https://example.com/Have.zip"])

    assert result.exit_code == 0
    assert "already installed" in result.stdout


def test_download_command_reports_failure(monkeypatch, store_config, fake_http):
    _use_config(monkeypatch, store_config)
    fake_http.respond(b"", status=500)

    result = runner.invoke(cli_module.app, ["download", "Bad", "https://example.com/Bad.zip"])

    assert result.exit_code == 1
    assert "Download failed" in result.stdout


def test_delete_command(monkeypatch, store_config, make_model):
    _use_config(monkeypatch, store_config)
    make_model(store_config.models_root / "Old", "Unet.mlmodelc", "VAE.mlmodelc")

    result = runner.invoke(cli_module.app, ["delete", "Old", "--yes"])

    assert result.exit_code == 0
    assert not (store_config.models_root / "Old").exists()

    missing = runner.invoke(cli_module.app, ["delete", "Old", "--yes"])
    assert missing.exit_code == 1


def test_estop_command(monkeypatch, store_config):
    _use_config(monkeypatch, store_config)
    (store_config.models_root / "left.zip").write_bytes(b"x")

    result = runner.invoke(cli_module.app, ["estop"])

    assert result.exit_code == 0
    assert "Emergency stop" in result.stdout
    assert not (store_config.models_root / "left.zip").exists()


def test_purge_hf_cache_command(tmp_path):
    cache = tmp_path / "hub"
    (cache / "models--org--x" / "blobs").mkdir(parents=True)
    (cache / "models--org--x" / "blobs" / "a").write_bytes(b"1" * 1000)

    result = runner.invoke(cli_module.app, ["purge-hf-cache", "--location", str(cache)])

    assert result.exit_code == 0
    assert "Freed" in result.stdout
    assert not cache.exists()


def test_download_command_when_job_vanishes(monkeypatch, store_config):
    _use_config(monkeypatch, store_config)
    monkeypatch.setattr(cli_module.ModelStore, "download", lambda self, name, source: "gone")

    result = runner.invoke(cli_module.app, ["download", "Ghost", "https://example.com/Ghost.zip"])

    assert result.exit_code == 1
    assert "Download cancelled" in result.stdout
