import yaml
from typing import Dict, Any, Optional
from bus_sequencer.core.engine import BranchMode, InvalidPolicy
from .models import SystemConfig, SequencerOptions, BusConfig, BusRegion

class ConfigLoader:
    def load_from_file(self, path: str) -> SystemConfig:
        with open(path, 'r', encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return self._parse_config(data or {})

    def load_from_string(self, text: str) -> SystemConfig:
        return self._parse_config(yaml.safe_load(text) or {})

    def _parse_config(self, data: Dict[str, Any]) -> SystemConfig:
        if not isinstance(data, dict):
            raise ValueError("Configuration root must be a mapping.")

        seq_data = data.get("sequencer", {}) or {}
        sequencer = SequencerOptions(
            branch_mode=self._parse_choice(seq_data.get("branch_mode", "equal"), BranchMode, "branch_mode"),
            invalid_policy=self._parse_choice(seq_data.get("invalid_policy", "skip"), InvalidPolicy, "invalid_policy"),
            default_radix=self._parse_int(seq_data.get("default_radix", 16)),
            strict_load=bool(seq_data.get("strict_load", False)),
            max_ticks=self._parse_int(seq_data.get("max_ticks", 100000)),
        )

        # Parse Bus Regions
        bus_data = data.get("bus", {}) or {}
        regions = []
        for region_data in bus_data.get("regions", []) or []:
            start = self._parse_int(region_data.get("start"))
            end = self._parse_int(region_data.get("end", start))
            regions.append(BusRegion(
                start=start,
                end=end,
                type=str(region_data.get("type", "RAM")).upper(),
                label=str(region_data.get("label", "")),
                wait_states=self._parse_int(region_data.get("wait_states", 0)),
                values=[self._parse_int(v) for v in region_data.get("values", []) or []],
                initial_values={
                    self._parse_int(addr): self._parse_int(value)
                    for addr, value in (region_data.get("initial_values", {}) or {}).items()
                },
            ))

        return SystemConfig(
            sequencer=sequencer,
            bus=BusConfig(
                data_width=self._parse_int(bus_data.get("data_width", 32)),
                regions=regions,
            ),
        )

    def _parse_choice(self, value: Any, choices, key: str) -> str:
        text = str(value).lower()
        allowed = [c.value for c in choices]
        if text not in allowed:
            raise ValueError(f"Invalid {key} '{value}': expected one of {', '.join(allowed)}")
        return text

    def _parse_int(self, value: Optional[Any]) -> int:
        if isinstance(value, bool):
            raise ValueError(f"Invalid integer format: {value}")
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            if value.lower().startswith("0x"):
                return int(value, 16)
            return int(value)
        raise ValueError(f"Invalid integer format: {value}")
