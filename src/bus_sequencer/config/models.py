from dataclasses import dataclass, field
from typing import Dict, List

@dataclass
class BusRegion:
    start: int
    end: int
    type: str  # "RAM", "ROM", "SCRIPTED", "ERROR"
    label: str = ""
    wait_states: int = 0
    values: List[int] = field(default_factory=list)  # SCRIPTED の読み出し値
    initial_values: Dict[int, int] = field(default_factory=dict)  # 絶対アドレス -> 初期値

@dataclass
class BusConfig:
    data_width: int = 32
    regions: List[BusRegion] = field(default_factory=list)

@dataclass
class SequencerOptions:
    branch_mode: str = "equal"  # "equal", "nonzero"
    invalid_policy: str = "skip"  # "skip", "halt"
    default_radix: int = 16
    strict_load: bool = False
    max_ticks: int = 100000  # ハーネス側のウォッチドッグ

@dataclass
class SystemConfig:
    sequencer: SequencerOptions = field(default_factory=SequencerOptions)
    bus: BusConfig = field(default_factory=BusConfig)
