"""Built-in functions for the CalcMark calculation language.

This module registers all built-in functions with the FunctionRegistry.
The package registers them on import; call register_all_builtins() again
after FunctionRegistry.clear().

Categories:
- Math: avg, sqrt
- Rate: accumulate, convert_rate
- Capacity: capacity, requires
- Reliability: downtime
- Network: rtt, throughput, transfer_time
- Storage: read, seek
- Compression: compress
"""

from collections.abc import Mapping
from decimal import ROUND_CEILING, Decimal
from types import MappingProxyType

from calcmark import units
from calcmark.errors import EvaluationError
from calcmark.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
    FunctionRegistry,
)
from calcmark.operators import accumulate_rate
from calcmark.values import (
    Currency,
    Duration,
    Napkin,
    Number,
    Quantity,
    Rate,
    Value,
    numeric_value,
    type_name,
)


def register_all_builtins() -> None:
    """Register all built-in functions with the FunctionRegistry."""
    _register_math_functions()
    _register_rate_functions()
    _register_capacity_functions()
    _register_reliability_functions()
    _register_network_functions()
    _register_storage_functions()
    _register_compression_functions()


def _plain(value: Value) -> Value:
    if isinstance(value, Napkin):
        return Number(value.value)
    return value


# -----------------------------------------------------------------------------
# Math Functions
# -----------------------------------------------------------------------------


def _avg(*values: Value) -> Value:
    """Arithmetic mean; identical units are kept, mixed units give a Number."""
    values = tuple(_plain(v) for v in values)
    amounts = []
    for value in values:
        amount = numeric_value(value)
        if amount is None or isinstance(value, Rate):
            raise EvaluationError(f"avg() cannot average a {type_name(value)}")
        amounts.append(amount)
    mean = sum(amounts, Decimal(0)) / len(amounts)

    first = values[0]
    if isinstance(first, Currency) and all(
        isinstance(v, Currency) and v.code == first.code for v in values
    ):
        return Currency(mean, first.symbol, first.code)
    if isinstance(first, Quantity) and all(
        isinstance(v, Quantity) and v.unit == first.unit for v in values
    ):
        return Quantity(mean, first.unit)
    if isinstance(first, Duration) and all(
        isinstance(v, Duration) and v.unit == first.unit for v in values
    ):
        return Duration(mean, first.unit)
    return Number(mean)


def _sqrt(value: Value) -> Value:
    """Square root, keeping the unit of a single operand."""
    value = _plain(value)
    amount = numeric_value(value)
    if amount is None or isinstance(value, Rate):
        raise EvaluationError(f"sqrt() requires a numeric value, got {type_name(value)}")
    if amount < 0:
        raise EvaluationError("sqrt() of a negative number")
    root = amount.sqrt()

    if isinstance(value, Currency):
        return Currency(root, value.symbol, value.code)
    if isinstance(value, Quantity):
        return Quantity(root, value.unit)
    if isinstance(value, Duration):
        return Duration(root, value.unit)
    return Number(root)


def _register_math_functions() -> None:
    FunctionRegistry.register(FunctionDefinition(
        name="avg",
        description="Average of one or more values",
        category=FunctionCategory.MATH,
        parameters=[
            FunctionParameter("values", "any", "Values to average", variadic=True),
        ],
        return_type="any",
        examples=["avg(1, 2, 3)", "average of $10, $20"],
        implementation=_avg,
    ))
    FunctionRegistry.register(FunctionDefinition(
        name="sqrt",
        description="Square root of a value",
        category=FunctionCategory.MATH,
        parameters=[
            FunctionParameter("value", "any", "Non-negative value"),
        ],
        return_type="any",
        examples=["sqrt(16)", "square root of 2"],
        implementation=_sqrt,
    ))


# -----------------------------------------------------------------------------
# Rate Functions
# -----------------------------------------------------------------------------


def _time_unit(unit: str, function: str) -> str:
    normalized = units.normalize_time_unit(unit)
    if normalized is None:
        raise EvaluationError(f"{function}() expects a time unit, got '{unit}'")
    return normalized


def _accumulate(rate: Value, duration: Value) -> Value:
    """Total amount produced by a rate over a duration."""
    if not isinstance(rate, Rate):
        raise EvaluationError(f"accumulate() requires a rate, got {type_name(rate)}")
    if not isinstance(duration, Duration):
        raise EvaluationError(
            f"accumulate() requires a duration, got {type_name(duration)}"
        )
    return accumulate_rate(rate, duration)


def _convert_rate(rate: Value, unit: str) -> Rate:
    """Express a rate per a different time unit (1000 req/s per hour)."""
    if not isinstance(rate, Rate):
        raise EvaluationError(f"convert_rate() requires a rate, got {type_name(rate)}")
    target = _time_unit(unit, "convert_rate")
    factor = units.time_unit_seconds(target) / units.time_unit_seconds(rate.per_unit)
    return Rate(Quantity(rate.amount.value * factor, rate.amount.unit), target)


def _register_rate_functions() -> None:
    FunctionRegistry.register(FunctionDefinition(
        name="accumulate",
        description="Total amount a rate produces over a duration",
        category=FunctionCategory.RATE,
        parameters=[
            FunctionParameter("rate", "rate", "Amount per time unit"),
            FunctionParameter("duration", "duration", "Period to accumulate over"),
        ],
        return_type="quantity",
        examples=["100 MB/s over 1 day", "accumulate($0.10/hour, 30 days)"],
        implementation=_accumulate,
    ))
    FunctionRegistry.register(FunctionDefinition(
        name="convert_rate",
        description="Express a rate per a different time unit",
        category=FunctionCategory.RATE,
        parameters=[
            FunctionParameter("rate", "rate", "Rate to convert"),
            FunctionParameter("unit", "unit", "Target time unit"),
        ],
        return_type="rate",
        examples=["1000 req/s per hour", "convert_rate(5 GB/day, hour)"],
        implementation=_convert_rate,
    ))


# -----------------------------------------------------------------------------
# Capacity Functions
# -----------------------------------------------------------------------------


def _buffer_fraction(buffer: Value | None, function: str) -> Decimal:
    if buffer is None:
        return Decimal(0)
    buffer = _plain(buffer)
    if not isinstance(buffer, Number):
        raise EvaluationError(f"{function}() buffer must be a percentage")
    if buffer.value < 0:
        raise EvaluationError(f"{function}() buffer percentage cannot be negative")
    return buffer.value


def _convert_or_raw(value: Decimal, from_unit: str, to_unit: str) -> Decimal:
    """Convert between compatible units; arbitrary units are compared as-is."""
    if units.are_compatible(to_unit, from_unit):
        return units.convert(value, from_unit, to_unit)
    return value


def _normalize_demand(demand: Value, capacity: Value, function: str) -> tuple[Decimal, Decimal]:
    """Reduce demand and capacity to decimals in the same units."""
    demand, capacity = _plain(demand), _plain(capacity)
    if not isinstance(capacity, (Number, Quantity, Rate, Currency)):
        raise EvaluationError(
            f"{function}() capacity must be a number, quantity, or rate, "
            f"got {type_name(capacity)}"
        )

    if isinstance(demand, Rate):
        if isinstance(capacity, Rate):
            per_second = _convert_or_raw(
                demand.per_second(), demand.amount.unit, capacity.amount.unit
            )
            return per_second, capacity.per_second()
        if isinstance(capacity, Quantity):
            return (
                _convert_or_raw(demand.amount.value, demand.amount.unit, capacity.unit),
                capacity.value,
            )
        return demand.amount.value, capacity.value

    if isinstance(demand, Quantity):
        if isinstance(capacity, Quantity):
            return _convert_or_raw(demand.value, demand.unit, capacity.unit), capacity.value
        if isinstance(capacity, Rate):
            return demand.value, capacity.amount.value
        return demand.value, capacity.value

    if isinstance(demand, (Number, Currency)):
        if isinstance(capacity, Rate):
            return demand.value, capacity.amount.value
        return demand.value, capacity.value

    raise EvaluationError(
        f"{function}() demand must be a number, quantity, or rate, got {type_name(demand)}"
    )


def _units_needed(
    demand: Value, capacity: Value, buffer: Value | None, function: str
) -> Decimal:
    """ceil(demand * (1 + buffer) / capacity)."""
    demand_value, capacity_value = _normalize_demand(demand, capacity, function)
    if capacity_value == 0:
        raise EvaluationError(f"{function}() cannot divide by zero capacity")
    if capacity_value < 0:
        raise EvaluationError(f"{function}() capacity must be positive")
    fraction = _buffer_fraction(buffer, function)
    needed = demand_value * (1 + fraction) / capacity_value
    return needed.to_integral_value(rounding=ROUND_CEILING)


def _capacity(
    demand: Value, capacity: Value, unit: str, buffer: Value | None = None
) -> Quantity:
    """Units of capacity needed for a demand (10 TB at 2 TB per disk -> 5 disk)."""
    return Quantity(_units_needed(demand, capacity, buffer, "capacity"), unit)


def _requires(load: Value, capacity: Value, buffer: Value | None = None) -> Number:
    """Count of capacity units needed for a load (10000 req/s with 450 req/s)."""
    return Number(_units_needed(load, capacity, buffer, "requires"))


def _register_capacity_functions() -> None:
    FunctionRegistry.register(FunctionDefinition(
        name="capacity",
        description="Units of capacity needed to serve a demand, rounded up",
        category=FunctionCategory.CAPACITY,
        parameters=[
            FunctionParameter("demand", "any", "Total demand"),
            FunctionParameter("capacity", "any", "Capacity of one unit"),
            FunctionParameter("unit", "unit", "Name of the capacity unit"),
            FunctionParameter("buffer", "number", "Headroom as a fraction", required=False),
        ],
        return_type="quantity",
        examples=[
            "10 TB at 2 TB per disk",
            "10000 req/s at 450 req/s per server with 20% buffer",
        ],
        implementation=_capacity,
    ))
    FunctionRegistry.register(FunctionDefinition(
        name="requires",
        description="Number of capacity units a load requires, rounded up",
        category=FunctionCategory.CAPACITY,
        parameters=[
            FunctionParameter("load", "any", "Total load"),
            FunctionParameter("capacity", "any", "Capacity of one unit"),
            FunctionParameter("buffer", "number", "Headroom as a fraction", required=False),
        ],
        return_type="number",
        examples=["10000 req/s with 450 req/s capacity", "requires(10000, 450, 20%)"],
        implementation=_requires,
    ))


# -----------------------------------------------------------------------------
# Reliability Functions
# -----------------------------------------------------------------------------


def _downtime(availability: Value, unit: str) -> Duration:
    """Allowed downtime per period for an availability (99.9% per month)."""
    availability = _plain(availability)
    if not isinstance(availability, Number):
        raise EvaluationError(
            f"downtime() requires a percentage, got {type_name(availability)}"
        )
    if not 0 <= availability.value <= 1:
        raise EvaluationError("downtime() availability must be between 0% and 100%")

    period = units.time_unit_seconds(_time_unit(unit, "downtime"))
    seconds = (1 - availability.value) * period
    if seconds < 60:
        return Duration(seconds, "second")
    if seconds < 3600:
        return Duration(seconds / 60, "minute")
    return Duration(seconds / 3600, "hour")


def _register_reliability_functions() -> None:
    FunctionRegistry.register(FunctionDefinition(
        name="downtime",
        description="Allowed downtime per period for an availability target",
        category=FunctionCategory.RELIABILITY,
        parameters=[
            FunctionParameter("availability", "number", "Availability percentage"),
            FunctionParameter("unit", "unit", "Period time unit"),
        ],
        return_type="duration",
        examples=["99.9% downtime per month", "downtime(99.99%, year)"],
        implementation=_downtime,
    ))


# -----------------------------------------------------------------------------
# Network Functions
# -----------------------------------------------------------------------------

# Typical round-trip times in milliseconds
NETWORK_RTT_MS = MappingProxyType({
    "local": Decimal("0.5"),
    "regional": Decimal(10),
    "continental": Decimal(50),
    "global": Decimal(150),
})

# Typical sustained throughput in MB/s
NETWORK_THROUGHPUT_MBPS = MappingProxyType({
    "gigabit": Decimal(125),
    "ten_gig": Decimal(1250),
    "hundred_gig": Decimal(12500),
    "wifi": Decimal("12.5"),
    "four_g": Decimal("2.5"),
    "five_g": Decimal(50),
})


def _lookup(table: Mapping[str, Decimal], name: str, kind: str, plural: str) -> Decimal:
    try:
        return table[name.lower()]
    except KeyError:
        valid = ", ".join(table)
        raise EvaluationError(
            f"unknown {kind} '{name}' (valid {plural}: {valid})"
        ) from None


def _megabytes(size: Value, function: str) -> Decimal:
    """Size of a data quantity in MB."""
    size = _plain(size)
    if not isinstance(size, Quantity) or units.dimension(size.unit) != "data":
        raise EvaluationError(
            f"{function}() requires a data size (1 GB, 500 MB), got {type_name(size)}"
        )
    return units.convert(size.value, size.unit, "MB")


def _elapsed(seconds: Decimal) -> Duration:
    if seconds < 60:
        return Duration(seconds, "second")
    return Duration(seconds / 60, "minute")


def _rtt(scope: str) -> Duration:
    """Typical round-trip time for a network scope (rtt(regional) -> 0.01 second)."""
    milliseconds = _lookup(NETWORK_RTT_MS, scope, "network scope", "scopes")
    return Duration(milliseconds / 1000, "second")


def _throughput(network: str) -> Rate:
    megabytes = _lookup(NETWORK_THROUGHPUT_MBPS, network, "network type", "types")
    return Rate(Quantity(megabytes, "MB"), "second")


def _transfer_time(size: Value, scope: str, network: str) -> Duration:
    """One round trip plus the time to push `size` through the link."""
    megabytes = _megabytes(size, "transfer_time")
    latency = _lookup(NETWORK_RTT_MS, scope, "network scope", "scopes") / 1000
    throughput = _lookup(NETWORK_THROUGHPUT_MBPS, network, "network type", "types")
    return _elapsed(latency + megabytes / throughput)


def _register_network_functions() -> None:
    FunctionRegistry.register(FunctionDefinition(
        name="rtt",
        description="Typical round-trip time for a network scope",
        category=FunctionCategory.NETWORK,
        parameters=[
            FunctionParameter("scope", "unit", "local, regional, continental or global"),
        ],
        return_type="duration",
        examples=["rtt(regional)", "rtt(global)"],
        implementation=_rtt,
    ))
    FunctionRegistry.register(FunctionDefinition(
        name="throughput",
        description="Typical sustained throughput of a network link",
        category=FunctionCategory.NETWORK,
        parameters=[
            FunctionParameter("network", "unit", "Link type (gigabit, ten_gig, wifi, ...)"),
        ],
        return_type="rate",
        examples=["throughput(gigabit)", "throughput(five_g)"],
        implementation=_throughput,
    ))
    FunctionRegistry.register(FunctionDefinition(
        name="transfer_time",
        description="Time to send data over a network, including one round trip",
        category=FunctionCategory.NETWORK,
        parameters=[
            FunctionParameter("size", "any", "Data size"),
            FunctionParameter("scope", "unit", "Network scope"),
            FunctionParameter("network", "unit", "Link type"),
        ],
        return_type="duration",
        examples=["transfer_time(1 GB, regional, gigabit)"],
        implementation=_transfer_time,
    ))


# -----------------------------------------------------------------------------
# Storage Functions
# -----------------------------------------------------------------------------

# Sequential read throughput in MB/s
STORAGE_THROUGHPUT_MBPS = MappingProxyType({
    "ssd": Decimal(550),
    "sata_ssd": Decimal(550),
    "nvme": Decimal(3500),
    "pcie_ssd": Decimal(7000),
    "hdd": Decimal(150),
})

# Average seek latency in milliseconds
STORAGE_SEEK_MS = MappingProxyType({
    "hdd": Decimal(10),
    "sata_ssd": Decimal("0.1"),
    "ssd": Decimal("0.1"),
    "nvme": Decimal("0.01"),
    "pcie_ssd": Decimal("0.01"),
})


def _read(size: Value, storage: str) -> Duration:
    """Time to read `size` sequentially from a storage device."""
    megabytes = _megabytes(size, "read")
    throughput = _lookup(STORAGE_THROUGHPUT_MBPS, storage, "storage type", "types")
    return _elapsed(megabytes / throughput)


def _seek(storage: str) -> Duration:
    milliseconds = _lookup(STORAGE_SEEK_MS, storage, "storage type", "types")
    return Duration(milliseconds / 1000, "second")


def _register_storage_functions() -> None:
    FunctionRegistry.register(FunctionDefinition(
        name="read",
        description="Time to read data sequentially from a storage device",
        category=FunctionCategory.STORAGE,
        parameters=[
            FunctionParameter("size", "any", "Data size"),
            FunctionParameter("storage", "unit", "Device type (ssd, nvme, hdd, ...)"),
        ],
        return_type="duration",
        examples=["read(100 MB, ssd)", "read(1 TB, hdd)"],
        implementation=_read,
    ))
    FunctionRegistry.register(FunctionDefinition(
        name="seek",
        description="Average seek latency of a storage device",
        category=FunctionCategory.STORAGE,
        parameters=[
            FunctionParameter("storage", "unit", "Device type"),
        ],
        return_type="duration",
        examples=["seek(hdd)", "seek(nvme)"],
        implementation=_seek,
    ))


# -----------------------------------------------------------------------------
# Compression Functions
# -----------------------------------------------------------------------------

# Typical compression ratios (original size / compressed size)
COMPRESSION_RATIOS = MappingProxyType({
    "gzip": Decimal(3),
    "lz4": Decimal(2),
    "zstd": Decimal("3.5"),
    "bzip2": Decimal(4),
    "snappy": Decimal("2.5"),
    "none": Decimal(1),
})


def _compress(size: Value, algorithm: str) -> Quantity:
    """Estimated compressed size, kept in the input's unit."""
    size = _plain(size)
    if not isinstance(size, Quantity):
        raise EvaluationError(f"compress() requires a quantity, got {type_name(size)}")
    ratio = _lookup(COMPRESSION_RATIOS, algorithm, "compression algorithm", "algorithms")
    return Quantity(size.value / ratio, size.unit)


def _register_compression_functions() -> None:
    FunctionRegistry.register(FunctionDefinition(
        name="compress",
        description="Estimated size after compression with a typical ratio",
        category=FunctionCategory.COMPRESSION,
        parameters=[
            FunctionParameter("size", "any", "Uncompressed size"),
            FunctionParameter("algorithm", "unit", "gzip, lz4, zstd, bzip2, snappy or none"),
        ],
        return_type="quantity",
        examples=["compress(1 GB, gzip)", "compress(500 MB, zstd)"],
        implementation=_compress,
    ))
