"""Cloud SQL machine types, editions and the scaling catalog.

Static tiers are looked up in MACHINE_TYPES. Custom tiers (``db-custom-<cpu>-<mb>``)
are synthesized from their name, and performance-optimized tiers
(``db-perf-optimized-N-<cpu>``) come from a fixed ordered sequence.
"""

import math
import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from .errors import AutoscalerError


class Edition(str, Enum):
    ENTERPRISE = "ENTERPRISE"
    ENTERPRISE_PLUS = "ENTERPRISE_PLUS"

    @classmethod
    def parse(cls, value):
        if isinstance(value, Edition):
            return value
        if value and str(value).upper() == "ENTERPRISE_PLUS":
            return cls.ENTERPRISE_PLUS
        # Unknown editions get the stricter Enterprise rules
        return cls.ENTERPRISE


@dataclass(frozen=True)
class ScalingConstraints:
    min_upscale_interval: timedelta
    min_downscale_interval: timedelta
    downtime_on_scale: bool


def get_scaling_constraints(edition):
    if Edition.parse(edition) == Edition.ENTERPRISE_PLUS:
        # Near-zero downtime outside the intervals
        return ScalingConstraints(
            min_upscale_interval=timedelta(minutes=30),
            min_downscale_interval=timedelta(hours=3),
            downtime_on_scale=False,
        )
    return ScalingConstraints(
        min_upscale_interval=timedelta(0),
        min_downscale_interval=timedelta(0),
        downtime_on_scale=True,
    )


class MachineTypeError(AutoscalerError):
    pass


class MachineTypeNotFound(MachineTypeError, LookupError):
    pass


class NoLargerMachineType(MachineTypeError):
    pass


class NoSmallerMachineType(MachineTypeError):
    pass


@dataclass(frozen=True)
class MachineType:
    name: str
    cpu: int
    memory_gb: float
    series: str       # family, e.g. "n1", "e2", "custom", "perf-optimized"
    tier: str         # size class within the family, e.g. "standard", "highmem"

    @property
    def memory_per_cpu(self):
        return self.memory_gb / self.cpu if self.cpu else 0.0


def _series(prefix, series, tier, sizes):
    return {
        f"db-{prefix}-{cpu}": MachineType(f"db-{prefix}-{cpu}", cpu, mem, series, tier)
        for cpu, mem in sizes
    }


MACHINE_TYPES = {
    # Shared-core
    "db-f1-micro": MachineType("db-f1-micro", 1, 0.6, "f1", "micro"),
    "db-g1-small": MachineType("db-g1-small", 1, 1.7, "g1", "small"),
}
MACHINE_TYPES.update(_series("n1-standard", "n1", "standard", [
    (1, 3.75), (2, 7.5), (4, 15), (8, 30), (16, 60), (32, 120), (64, 240), (96, 360),
]))
MACHINE_TYPES.update(_series("n1-highmem", "n1", "highmem", [
    (2, 13), (4, 26), (8, 52), (16, 104), (32, 208), (64, 416), (96, 624),
]))
MACHINE_TYPES.update(_series("n2-standard", "n2", "standard", [
    (2, 8), (4, 16), (8, 32), (16, 64), (32, 128), (48, 192), (64, 256), (80, 320), (96, 384), (128, 512),
]))
MACHINE_TYPES.update(_series("n2-highmem", "n2", "highmem", [
    (2, 16), (4, 32), (8, 64), (16, 128), (32, 256), (48, 384), (64, 512), (80, 640), (96, 768), (128, 864),
]))
# E2 is the cost-optimized line
MACHINE_TYPES.update(_series("e2-standard", "e2", "standard", [
    (2, 8), (4, 16), (8, 32), (16, 64), (32, 128),
]))
MACHINE_TYPES.update(_series("e2-highmem", "e2", "highmem", [
    (2, 16), (4, 32), (8, 64), (16, 128),
]))

PERF_OPTIMIZED_SIZES = [
    (2, 16), (4, 32), (8, 64), (16, 128), (32, 256), (48, 384), (64, 512), (80, 640), (96, 768), (128, 864),
]

CUSTOM_PATTERN = re.compile(r"^db-custom-(\d+)-(\d+)$")
PERF_OPTIMIZED_PATTERN = re.compile(r"^db-perf-optimized-N-(\d+)$")

# Custom machine limits
MIN_MEMORY_PER_CPU_GB = 0.9
MAX_MEMORY_PER_CPU_GB = 6.5
HIGHMEM_RATIO_GB = 4.0
MEMORY_STEP_MB = 256
MAX_CUSTOM_CPU = 96
MAX_CUSTOM_MEMORY_MB = 624 * 1024
CUSTOM_CPU_STEP = 1
CUSTOM_MEMORY_STEP_MB = 1024
GROWTH_FACTOR = 0.5
SHRINK_FACTOR = 2 / 3


def custom_name(cpu, memory_mb):
    return f"db-custom-{cpu}-{memory_mb}"


class MachineCatalog:
    """Resolves tier names and walks to the next larger/smaller compatible tier.

    The static registry is never mutated after construction, so one catalog can be
    shared between threads.
    """

    def __init__(self, registry=None):
        self._registry = dict(MACHINE_TYPES if registry is None else registry)

    def get(self, name):
        mt = self._registry.get(name)
        if mt is not None:
            return mt

        match = CUSTOM_PATTERN.match(name or "")
        if match:
            return self._parse_custom(name, int(match.group(1)), int(match.group(2)))

        match = PERF_OPTIMIZED_PATTERN.match(name or "")
        if match:
            cpu = int(match.group(1))
            for size_cpu, mem in PERF_OPTIMIZED_SIZES:
                if size_cpu == cpu:
                    return MachineType(name, cpu, mem, "perf-optimized", "N")

        raise MachineTypeNotFound(f"machine type {name} not found")

    def __contains__(self, name):
        try:
            self.get(name)
        except MachineTypeNotFound:
            return False
        return True

    def _parse_custom(self, name, cpu, memory_mb):
        if cpu < 1:
            raise MachineTypeNotFound(f"machine type {name} not found: custom types need at least 1 vCPU")
        memory_gb = memory_mb / 1024
        ratio = memory_gb / cpu
        if ratio < MIN_MEMORY_PER_CPU_GB or ratio > MAX_MEMORY_PER_CPU_GB:
            raise MachineTypeNotFound(
                f"machine type {name} not found: {ratio:.2f} GB per vCPU is outside "
                f"{MIN_MEMORY_PER_CPU_GB}-{MAX_MEMORY_PER_CPU_GB}"
            )
        tier = "highmem" if ratio > HIGHMEM_RATIO_GB else "standard"
        return MachineType(name, cpu, memory_gb, "custom", tier)

    def next_larger(self, name):
        current = self.get(name)
        if current.series == "custom":
            return self._resize_custom(current, larger=True)
        if current.series == "perf-optimized":
            return self._step_perf_optimized(current, 1)

        # Smallest strict superset in the same series and tier
        candidates = [
            mt for mt in self._registry.values()
            if mt.series == current.series and mt.tier == current.tier
            and mt.cpu > current.cpu and mt.memory_gb > current.memory_gb
        ]
        best = None
        for mt in candidates:
            if best is None or (mt.cpu < best.cpu and mt.memory_gb >= current.memory_gb):
                best = mt
        if best is None:
            raise NoLargerMachineType(f"no larger machine type available for {name}")
        return best.name

    def next_smaller(self, name):
        current = self.get(name)
        if current.series == "custom":
            return self._resize_custom(current, larger=False)
        if current.series == "perf-optimized":
            return self._step_perf_optimized(current, -1)

        candidates = [
            mt for mt in self._registry.values()
            if mt.series == current.series and mt.tier == current.tier
            and mt.cpu < current.cpu and mt.memory_gb < current.memory_gb
        ]
        best = None
        for mt in candidates:
            if best is None or mt.cpu > best.cpu:
                best = mt
        if best is None:
            raise NoSmallerMachineType(f"no smaller machine type available for {name}")
        return best.name

    def _step_perf_optimized(self, current, step):
        sizes = [cpu for cpu, _ in PERF_OPTIMIZED_SIZES]
        idx = sizes.index(current.cpu) + step
        if idx < 0:
            raise NoSmallerMachineType(f"no smaller machine type available for {current.name}")
        if idx >= len(sizes):
            raise NoLargerMachineType(f"no larger machine type available for {current.name}")
        return f"db-perf-optimized-N-{sizes[idx]}"

    def _resize_custom(self, current, larger):
        cpu = current.cpu
        memory_mb = int(round(current.memory_gb * 1024))

        if larger:
            new_cpu, new_mem = cpu, memory_mb
            # Grow whichever dimension is the bottleneck
            if current.memory_per_cpu > HIGHMEM_RATIO_GB:
                new_cpu = min(cpu + max(1, math.ceil(cpu * GROWTH_FACTOR)), MAX_CUSTOM_CPU)
            else:
                new_mem = min(memory_mb + max(MEMORY_STEP_MB, math.ceil(memory_mb * GROWTH_FACTOR)),
                              MAX_CUSTOM_MEMORY_MB)
            if new_cpu <= cpu and new_mem <= memory_mb:
                new_cpu = min(cpu + CUSTOM_CPU_STEP, MAX_CUSTOM_CPU)
                new_mem = min(memory_mb + CUSTOM_MEMORY_STEP_MB, MAX_CUSTOM_MEMORY_MB)
        else:
            new_cpu = max(1, int(round(cpu * SHRINK_FACTOR)))
            new_mem = max(1024, int(memory_mb * SHRINK_FACTOR))

        new_mem = fit_custom_memory(new_cpu, new_mem)

        changed = (new_cpu, new_mem) != (cpu, memory_mb)
        if larger and (not changed or new_cpu < cpu or new_mem < memory_mb):
            raise NoLargerMachineType(f"no larger machine type available for {current.name}")
        if not larger and (not changed or new_cpu > cpu or new_mem > memory_mb):
            raise NoSmallerMachineType(f"no smaller machine type available for {current.name}")
        return custom_name(new_cpu, new_mem)


def fit_custom_memory(cpu, memory_mb):
    """Clamp memory into the valid GB-per-vCPU band, on a 256 MB boundary."""
    lowest = math.ceil(MIN_MEMORY_PER_CPU_GB * cpu * 1024 / MEMORY_STEP_MB) * MEMORY_STEP_MB
    highest = math.floor(min(MAX_MEMORY_PER_CPU_GB * cpu * 1024, MAX_CUSTOM_MEMORY_MB) / MEMORY_STEP_MB) * MEMORY_STEP_MB
    rounded = int(round(memory_mb / MEMORY_STEP_MB)) * MEMORY_STEP_MB
    return max(lowest, min(rounded, highest))


CATALOG = MachineCatalog()


def get_machine_type(name):
    return CATALOG.get(name)

def get_next_larger_machine_type(name):
    return CATALOG.next_larger(name)

def get_next_smaller_machine_type(name):
    return CATALOG.next_smaller(name)
