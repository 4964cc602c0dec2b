# tests/test_app.py
"""
bus_sequencer.appモジュールの単体テスト。
コマンドラインの出力と終了コードを検証します。
"""
from unittest.mock import patch

import pytest

from bus_sequencer.app import main, EXIT_DONE, EXIT_ERROR, EXIT_LOAD_FAILED, EXIT_WATCHDOG, HISTORY_LIMIT
from bus_sequencer.debugger.debugger import Debugger

# @intent:test_suite スクリプトと構成ファイルを受け取り、実行結果を終了コードで返すCLIの検証。

CONFIG = """
bus:
  regions:
    - {start: 0x00, end: 0x0F, type: RAM}
    - {start: 0x10, type: SCRIPTED, values: [0, 1]}
    - {start: 0x20, type: ERROR}
"""


@pytest.fixture
def workspace(tmp_path):
    config = tmp_path / "system.yaml"
    config.write_text(CONFIG, encoding="utf-8")

    def script(text: str) -> str:
        path = tmp_path / "script.seq"
        path.write_text(text, encoding="utf-8")
        return str(path)

    return script, str(config)


# @intent:test_case_done ポーリングが完走するとトランザクション一覧とDONEを出力し0を返すことを検証します。
def test_done_exit_code(workspace, capsys):
    script, config = workspace
    code = main([script("wait: read 10\nbranch wait 0\nwrite 01 AA\n"), "--config", config])
    out = capsys.readouterr().out
    assert code == EXIT_DONE
    assert "WRITE 0x0001 0x000000aa" in out
    assert "Status: DONE" in out


def test_slave_error_exit_code(workspace, capsys):
    script, config = workspace
    code = main([script("write 20 1\n"), "-c", config])
    out = capsys.readouterr().out
    assert code == EXIT_ERROR
    assert "SLVERR" in out
    assert "Status: ERROR: SlaveError(0x0020)" in out


def test_strict_load_failure(workspace, capsys):
    script, config = workspace
    code = main([script("bogus\n"), "--config", config, "--strict"])
    assert code == EXIT_LOAD_FAILED
    assert "Load failed" in capsys.readouterr().out


# @intent:test_case_load_failure 読めないスクリプトや不正な構成はトレースバックではなく終了コード2になることを検証します。
def test_missing_script(tmp_path, capsys):
    code = main([str(tmp_path / "nope.seq")])
    assert code == EXIT_LOAD_FAILED
    assert "Load failed" in capsys.readouterr().out


def test_missing_config(workspace, tmp_path, capsys):
    script, _ = workspace
    code = main([script("write 10 1\n"), "-c", str(tmp_path / "absent.yaml")])
    assert code == EXIT_LOAD_FAILED
    assert "Load failed" in capsys.readouterr().out


@pytest.mark.parametrize("config_text", [
    "sequencer:\n  branch_mode: bogus\n",
    "sequencer:\n  invalid_policy: explode\n",
    "bus:\n  regions: [\n",
    "bus:\n  regions:\n    - {start: 0, end: 1, type: FLASH}\n",
])
def test_invalid_config(workspace, tmp_path, capsys, config_text):
    script, _ = workspace
    config = tmp_path / "bad.yaml"
    config.write_text(config_text, encoding="utf-8")
    code = main([script("write 10 1\n"), "--config", str(config)])
    assert code == EXIT_LOAD_FAILED
    assert "Load failed" in capsys.readouterr().out


def test_watchdog(workspace, capsys):
    script, config = workspace
    code = main([script("spin: goto spin\n"), "--config", config, "--max-ticks", "20"])
    assert code == EXIT_WATCHDOG
    assert "Watchdog" in capsys.readouterr().out


# @intent:test_case_history_limit CLIはデバッガの履歴を上限付きで保持することを検証します。
def test_debugger_history_is_bounded(workspace, capsys):
    script, config = workspace
    with patch("bus_sequencer.app.Debugger", wraps=Debugger) as debugger_cls:
        main([script("spin: goto spin\n"), "--config", config, "--max-ticks", "500"])
    assert debugger_cls.call_args.kwargs["history_limit"] == HISTORY_LIMIT


def test_trace_without_config(workspace, capsys):
    script, _ = workspace
    code = main([script("write 10 1\n"), "--trace"])
    out = capsys.readouterr().out
    assert code == EXIT_DONE
    assert "SETUP" in out
    assert "[0] WRITE $10, $1" in out


def test_trace_watchdog(workspace, capsys):
    script, _ = workspace
    code = main([script("spin: goto spin\n"), "--trace", "--max-ticks", "5"])
    assert code == EXIT_WATCHDOG
