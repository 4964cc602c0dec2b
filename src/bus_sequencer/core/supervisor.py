# bus_sequencer/core/supervisor.py
"""
Core Layer (停止/障害スーパーバイザ)

実行の終了状態（DONE / ERROR）を記録し、ハーネスに公開します。
一度確定した終了状態は変化しません。
"""
import logging
from typing import Optional

from bus_sequencer.core.state import RunStatus, RunState, RunError

logger = logging.getLogger(__name__)


# @intent:responsibility 終了状態をハーネス側で例外として扱うための例外型。
class RunFaultError(RuntimeError):
    def __init__(self, reason: RunError):
        super().__init__(f"Run halted with error: {reason.describe()}")
        self.reason = reason


# @intent:responsibility RunStatusの確定と参照を一元管理します。
class HaltSupervisor:
    """
    ExecutionEngineがティックの最後に commit() で確定したステータスを保持します。
    終了状態は吸収的であり、以降の commit() は無視されます。
    """
    def __init__(self):
        self._status = RunStatus.running()

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def is_halted(self) -> bool:
        return self._status.is_terminal

    @property
    def reason(self) -> Optional[RunError]:
        return self._status.reason

    # @intent:responsibility ステータスを確定します。既に終了状態の場合は何もしません。
    def commit(self, status: RunStatus) -> None:
        if self._status.is_terminal or status == self._status:
            return
        self._status = status
        if status.state is RunState.DONE:
            logger.info("Run completed")
        elif status.state is RunState.ERROR:
            logger.warning("Run halted: %s", status.reason.describe())

    # @intent:responsibility ERROR で停止していれば RunFaultError を送出します。
    def raise_for_status(self) -> None:
        if self._status.state is RunState.ERROR:
            raise RunFaultError(self._status.reason)
