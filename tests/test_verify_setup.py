import importlib.util
import sys
from pathlib import Path

from config.env_config import SINKS

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "verify_setup.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("verify_setup", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_missing_dotenv_is_reported_not_raised(monkeypatch, capsys) -> None:
    monkeypatch.setitem(sys.modules, "dotenv", None)
    monkeypatch.delitem(sys.modules, "config.env_config", raising=False)

    verify_setup = _load_script()

    assert verify_setup.main() == 1
    assert "Missing: python-dotenv" in capsys.readouterr().out


def test_every_sink_has_a_connection_check() -> None:
    assert set(_load_script().SINK_CHECKS) == set(SINKS)
