from typer.testing import CliRunner

from backup_dash import cli, entry, util
from backup_dash.dash.models import SERVICE_NAME, Completed, Failed


runner = CliRunner()


def test_missing_systemctl_aborts_before_dashboard(monkeypatch):
    monkeypatch.setattr(util.shutil, "which", lambda name: None)

    def boom(**kwargs):
        raise AssertionError("dashboard must not start")

    monkeypatch.setattr("backup_dash.dash.app.run_dash", boom)
    result = runner.invoke(cli.app, [])
    assert result.exit_code == 1
    assert "systemctl not found" in result.output


def test_one_shot_logs(monkeypatch):
    monkeypatch.setattr(util.shutil, "which", lambda name: f"/usr/bin/{name}")
    seen = {}

    async def fake_execute(op, **kwargs):
        seen["op"] = op
        return Completed("last journal line\n")

    monkeypatch.setattr(cli, "execute", fake_execute)
    result = runner.invoke(cli.app, ["logs", "service"])
    assert result.exit_code == 0
    assert "last journal line" in result.output
    assert seen["op"].unit.name == SERVICE_NAME


def test_one_shot_failure_exits_one(monkeypatch):
    monkeypatch.setattr(util.shutil, "which", lambda name: f"/usr/bin/{name}")

    async def fake_execute(op, **kwargs):
        return Failed("exit status 5", "Unit not found.\n")

    monkeypatch.setattr(cli, "execute", fake_execute)
    result = runner.invoke(cli.app, ["start", "timer"])
    assert result.exit_code == 1
    assert "Unit not found." in result.output


def test_unknown_unit_exits_two():
    result = runner.invoke(cli.app, ["status", "cron.service"])
    assert result.exit_code == 2
    assert "Unknown unit" in result.output


def test_resolve_unit_accepts_kind_and_full_name():
    assert cli.resolve_unit("service").name == SERVICE_NAME
    assert cli.resolve_unit(SERVICE_NAME).name == SERVICE_NAME


def test_version_flag(capsys):
    entry.main(["--version"])
    assert capsys.readouterr().out.strip()


def test_unit_first_shorthand(monkeypatch):
    calls = []
    monkeypatch.setattr(entry, "app", lambda args, prog_name: calls.append(args))
    entry.main(["timer", "toggle"])
    entry.main(["service", "log"])
    assert calls == [["toggle", "timer"], ["logs", "service"]]


def _fake_bus(ok):
    async def system_bus_ok():
        return ok

    return system_bus_ok


def test_doctor_missing_systemctl_exits_one(monkeypatch):
    monkeypatch.setattr(util.shutil, "which", lambda name: None if name == "systemctl" else f"/usr/bin/{name}")
    monkeypatch.setattr("backup_dash.systemd_bus.system_bus_ok", _fake_bus(False))
    result = runner.invoke(cli.app, ["doctor"])
    assert result.exit_code == 1
    assert "systemctl: FAIL" in result.output
    assert "journalctl: ok" in result.output
    assert "system D-Bus: FAIL" in result.output


def test_doctor_without_bus_still_passes(monkeypatch):
    monkeypatch.setattr(util.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr("backup_dash.systemd_bus.system_bus_ok", _fake_bus(False))
    result = runner.invoke(cli.app, ["doctor"])
    assert result.exit_code == 0
    assert "systemctl: ok" in result.output
    assert "system D-Bus: FAIL" in result.output
