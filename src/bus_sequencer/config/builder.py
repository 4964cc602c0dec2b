from typing import Tuple
import logging

from bus_sequencer.transport.bus import Bus, Device, RAM, ROM, ScriptedDevice, ErrorDevice
from bus_sequencer.core.engine import ExecutionEngine, BranchMode, InvalidPolicy
from bus_sequencer.loader.loader import ProgramLoader, LoadedProgram
from .models import SystemConfig, BusRegion

logger = logging.getLogger(__name__)

# リージョン未指定時に接続する既定のRAM
DEFAULT_RAM_END = 0xFFFF

# @intent:responsibility システム構成（Config）に基づいて、Bus、Device、ExecutionEngineを生成・接続します。
class SystemBuilder:
    def build_loader(self, config: SystemConfig) -> ProgramLoader:
        return ProgramLoader(
            default_radix=config.sequencer.default_radix,
            strict=config.sequencer.strict_load,
        )

    def build_bus(self, config: SystemConfig) -> Bus:
        bus = Bus()
        width = config.bus.data_width

        if not config.bus.regions:
            logger.info("No bus regions configured, mapping RAM at 0x0000-%#06x", DEFAULT_RAM_END)
            bus.register_device(0, DEFAULT_RAM_END, RAM(DEFAULT_RAM_END + 1, width))
            return bus

        for region in config.bus.regions:
            device = self._create_device(region, width)
            bus.register_device(region.start, region.end, device, region.label)
            for address, value in region.initial_values.items():
                bus.load(address, value)
        return bus

    def _create_device(self, region: BusRegion, data_width: int) -> Device:
        size = region.end - region.start + 1
        if region.type == "RAM":
            return RAM(size, data_width, region.wait_states)
        elif region.type == "ROM":
            return ROM(size, data_width, region.wait_states)
        elif region.type == "SCRIPTED":
            return ScriptedDevice(region.values, region.wait_states)
        elif region.type == "ERROR":
            return ErrorDevice()
        raise ValueError(f"Unknown device type '{region.type}' for range {region.start:04X}-{region.end:04X}")

    def build_engine(self, config: SystemConfig, loaded: LoadedProgram, bus: Bus) -> ExecutionEngine:
        return ExecutionEngine.from_loaded(
            loaded,
            bus,
            branch_mode=BranchMode(config.sequencer.branch_mode),
            invalid_policy=InvalidPolicy(config.sequencer.invalid_policy),
        )

    def build_system(self, config: SystemConfig, loaded: LoadedProgram) -> Tuple[ExecutionEngine, Bus]:
        bus = self.build_bus(config)
        return self.build_engine(config, loaded, bus), bus
