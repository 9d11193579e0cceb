"""Tests for the function registry and built-in functions."""

from decimal import Decimal

import pytest

from calcmark import (
    EvaluationError,
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
    FunctionRegistry,
)
from calcmark.values import Currency, Duration, Napkin, Number, Quantity, Rate


def call(name, *args):
    return FunctionRegistry.call(name, *args)


# =============================================================================
# Registry
# =============================================================================


class TestFunctionRegistry:
    """Tests for FunctionRegistry."""

    def test_builtins_registered(self):
        names = {f.name for f in FunctionRegistry.list_all()}

        assert names == {
            "avg",
            "sqrt",
            "accumulate",
            "convert_rate",
            "capacity",
            "requires",
            "downtime",
            "rtt",
            "throughput",
            "transfer_time",
            "read",
            "seek",
            "compress",
        }

    def test_get_unknown(self):
        with pytest.raises(ValueError) as exc_info:
            FunctionRegistry.get("nonexistent")

        assert "Unknown function" in str(exc_info.value)

    def test_register_custom(self):
        FunctionRegistry.register(FunctionDefinition(
            name="double",
            description="Double a number",
            category=FunctionCategory.MATH,
            parameters=[FunctionParameter("value", "number", "Value")],
            return_type="number",
            implementation=lambda v: Number(v.value * 2),
        ))

        assert FunctionRegistry.is_registered("double")
        assert call("double", Number(Decimal(4))) == Number(Decimal(8))

    def test_call_without_implementation(self):
        FunctionRegistry.register(FunctionDefinition(
            name="stub",
            description="No implementation",
            category=FunctionCategory.MATH,
            parameters=[],
            return_type="number",
        ))

        with pytest.raises(ValueError):
            call("stub")

    def test_list_by_category(self):
        capacity = FunctionRegistry.list_by_category(FunctionCategory.CAPACITY)

        assert sorted(f.name for f in capacity) == ["capacity", "requires"]

    def test_clear(self):
        FunctionRegistry.clear()

        assert FunctionRegistry.list_all() == []

    def test_export_documentation(self):
        docs = FunctionRegistry.export_documentation()

        assert "avg" in docs["functions"]
        assert docs["functions"]["downtime"]["category"] == "reliability"
        assert docs["functions"]["capacity"]["returnType"] == "quantity"
        assert [f["name"] for f in docs["byCategory"]["rate"]] == [
            "accumulate",
            "convert_rate",
        ]

    def test_unit_positions(self):
        assert FunctionRegistry.get("capacity").unit_positions() == frozenset({2})
        assert FunctionRegistry.get("avg").unit_positions() == frozenset()


class TestArity:
    """Tests for argument count checks."""

    def test_exact(self):
        sqrt = FunctionRegistry.get("sqrt")

        assert sqrt.arity_error(1) is None
        assert sqrt.arity_error(2) == "sqrt() requires exactly 1 argument, got 2"

    def test_variadic(self):
        avg = FunctionRegistry.get("avg")

        assert avg.max_args is None
        assert avg.arity_error(10) is None
        assert avg.arity_error(0) == "avg() requires at least 1 argument, got 0"

    def test_optional(self):
        requires = FunctionRegistry.get("requires")

        assert (requires.min_args, requires.max_args) == (2, 3)
        assert requires.arity_error(4) == "requires() requires 2 to 3 arguments, got 4"


# =============================================================================
# Math
# =============================================================================


class TestMathFunctions:
    """Tests for avg and sqrt."""

    def test_avg_numbers(self):
        result = call("avg", Number(Decimal(1)), Number(Decimal(2)), Number(Decimal(3)))

        assert result == Number(Decimal(2))

    def test_avg_keeps_currency(self):
        result = call(
            "avg",
            Currency(Decimal(10), "$", "USD"),
            Currency(Decimal(20), "$", "USD"),
        )

        assert result == Currency(Decimal(15), "$", "USD")

    def test_avg_mixed_units_gives_number(self):
        result = call("avg", Quantity(Decimal(2), "kg"), Number(Decimal(4)))

        assert result == Number(Decimal(3))

    def test_avg_rejects_rates(self):
        with pytest.raises(EvaluationError):
            call("avg", Rate(Quantity(Decimal(1), "MB"), "second"))

    def test_sqrt(self):
        assert call("sqrt", Number(Decimal(16))) == Number(Decimal(4))

    def test_sqrt_keeps_unit(self):
        assert call("sqrt", Quantity(Decimal(9), "m")) == Quantity(Decimal(3), "m")

    def test_sqrt_of_napkin(self):
        assert call("sqrt", Napkin(Decimal(100), "~100")) == Number(Decimal(10))

    def test_sqrt_negative(self):
        with pytest.raises(EvaluationError) as exc_info:
            call("sqrt", Number(Decimal(-4)))

        assert "negative" in exc_info.value.message


# =============================================================================
# Rates
# =============================================================================


class TestRateFunctions:
    """Tests for accumulate and convert_rate."""

    def test_accumulate(self):
        rate = Rate(Quantity(Decimal(5), "GB"), "day")

        assert call("accumulate", rate, Duration(Decimal(1), "week")) == Quantity(
            Decimal(35), "GB"
        )

    def test_accumulate_unitless(self):
        rate = Rate(Quantity(Decimal(2), ""), "minute")

        assert call("accumulate", rate, Duration(Decimal(1), "hour")) == Number(Decimal(120))

    def test_accumulate_requires_rate(self):
        with pytest.raises(EvaluationError):
            call("accumulate", Number(Decimal(5)), Duration(Decimal(1), "hour"))

    def test_accumulate_requires_duration(self):
        rate = Rate(Quantity(Decimal(5), "GB"), "day")

        with pytest.raises(EvaluationError):
            call("accumulate", rate, Number(Decimal(5)))

    def test_convert_rate(self):
        rate = Rate(Quantity(Decimal(1000), "req"), "second")

        assert call("convert_rate", rate, "hour") == Rate(
            Quantity(Decimal(3600000), "req"), "hour"
        )

    def test_convert_rate_accepts_aliases(self):
        rate = Rate(Quantity(Decimal(60), "MB"), "minute")

        assert call("convert_rate", rate, "s") == Rate(Quantity(Decimal(1), "MB"), "second")

    def test_convert_rate_rejects_non_time_unit(self):
        rate = Rate(Quantity(Decimal(60), "MB"), "minute")

        with pytest.raises(EvaluationError) as exc_info:
            call("convert_rate", rate, "disk")

        assert "time unit" in exc_info.value.message


# =============================================================================
# Capacity and reliability
# =============================================================================


class TestCapacityFunctions:
    """Tests for capacity and requires."""

    def test_capacity(self):
        result = call("capacity", Quantity(Decimal(10), "TB"), Quantity(Decimal(3), "TB"), "disk")

        assert result == Quantity(Decimal(4), "disk")

    def test_capacity_with_buffer(self):
        result = call(
            "capacity",
            Rate(Quantity(Decimal(10000), "req"), "second"),
            Rate(Quantity(Decimal(450), "req"), "second"),
            "server",
            Number(Decimal("0.2")),
        )

        assert result == Quantity(Decimal(27), "server")

    def test_capacity_compares_rates_per_second(self):
        result = call(
            "capacity",
            Rate(Quantity(Decimal(120), "req"), "minute"),
            Rate(Quantity(Decimal(1), "req"), "second"),
            "worker",
        )

        assert result == Quantity(Decimal(2), "worker")

    def test_exact_fit_does_not_round_up(self):
        result = call("requires", Number(Decimal(900)), Number(Decimal(450)))

        assert result == Number(Decimal(2))

    def test_negative_buffer(self):
        with pytest.raises(EvaluationError):
            call("requires", Number(Decimal(1)), Number(Decimal(1)), Number(Decimal(-1)))

    def test_negative_capacity(self):
        with pytest.raises(EvaluationError):
            call("requires", Number(Decimal(1)), Number(Decimal(-1)))

    def test_invalid_capacity_type(self):
        with pytest.raises(EvaluationError):
            call("requires", Number(Decimal(1)), Duration(Decimal(1), "hour"))


class TestDowntime:
    """Tests for the downtime function."""

    def test_month(self):
        assert call("downtime", Number(Decimal("0.999")), "month") == Duration(
            Decimal("43.2"), "minute"
        )

    def test_year(self):
        result = call("downtime", Number(Decimal("0.9999")), "year")

        assert result == Duration(Decimal("52.56"), "minute")

    def test_full_availability(self):
        assert call("downtime", Number(Decimal(1)), "day") == Duration(Decimal(0), "second")

    def test_out_of_range(self):
        with pytest.raises(EvaluationError):
            call("downtime", Number(Decimal("1.5")), "day")

    def test_requires_percentage(self):
        with pytest.raises(EvaluationError):
            call("downtime", Quantity(Decimal(1), "kg"), "day")


# =============================================================================
# Network, storage and compression
# =============================================================================


class TestNetworkFunctions:
    """Tests for rtt, throughput and transfer_time."""

    def test_rtt(self):
        assert call("rtt", "regional") == Duration(Decimal("0.01"), "second")
        assert call("rtt", "local") == Duration(Decimal("0.0005"), "second")

    def test_rtt_is_case_insensitive(self):
        assert call("rtt", "Global") == Duration(Decimal("0.15"), "second")

    def test_unknown_scope(self):
        with pytest.raises(EvaluationError) as exc_info:
            call("rtt", "mars")

        assert "unknown network scope 'mars'" in exc_info.value.message
        assert "local, regional, continental, global" in exc_info.value.message

    def test_throughput(self):
        assert call("throughput", "gigabit") == Rate(Quantity(Decimal(125), "MB"), "second")
        assert call("throughput", "four_g") == Rate(Quantity(Decimal("2.5"), "MB"), "second")

    def test_unknown_network(self):
        with pytest.raises(EvaluationError) as exc_info:
            call("throughput", "carrier_pigeon")

        assert "unknown network type" in exc_info.value.message

    def test_transfer_time(self):
        result = call("transfer_time", Quantity(Decimal(1), "GB"), "regional", "gigabit")

        # 1024 MB at 125 MB/s plus a 10 ms round trip
        assert result == Duration(Decimal("8.202"), "second")

    def test_transfer_time_switches_to_minutes(self):
        result = call("transfer_time", Quantity(Decimal(100), "GB"), "local", "wifi")

        assert result.unit == "minute"

    def test_transfer_time_requires_data_size(self):
        with pytest.raises(EvaluationError) as exc_info:
            call("transfer_time", Number(Decimal(5)), "regional", "gigabit")

        assert "data size" in exc_info.value.message

    def test_transfer_time_rejects_other_quantities(self):
        with pytest.raises(EvaluationError):
            call("transfer_time", Quantity(Decimal(5), "kg"), "regional", "gigabit")


class TestStorageFunctions:
    """Tests for read and seek."""

    def test_read_seconds(self):
        result = call("read", Quantity(Decimal(1100), "MB"), "ssd")

        assert result == Duration(Decimal(2), "second")

    def test_read_minutes(self):
        result = call("read", Quantity(Decimal(1), "TB"), "hdd")

        assert result.unit == "minute"
        assert result.value.quantize(Decimal("0.01")) == Decimal("116.51")

    def test_unknown_storage(self):
        with pytest.raises(EvaluationError) as exc_info:
            call("read", Quantity(Decimal(1), "GB"), "floppy")

        assert "unknown storage type 'floppy'" in exc_info.value.message

    def test_seek(self):
        assert call("seek", "hdd") == Duration(Decimal("0.01"), "second")
        assert call("seek", "nvme") == Duration(Decimal("0.00001"), "second")


class TestCompress:
    """Tests for the compress function."""

    def test_keeps_unit(self):
        assert call("compress", Quantity(Decimal(900), "MB"), "gzip") == Quantity(
            Decimal(300), "MB"
        )
        assert call("compress", Quantity(Decimal(1), "GB"), "bzip2") == Quantity(
            Decimal("0.25"), "GB"
        )

    def test_none_is_identity(self):
        assert call("compress", Quantity(Decimal(7), "GB"), "none") == Quantity(
            Decimal(7), "GB"
        )

    def test_requires_quantity(self):
        with pytest.raises(EvaluationError):
            call("compress", Number(Decimal(10)), "gzip")

    def test_unknown_algorithm(self):
        with pytest.raises(EvaluationError) as exc_info:
            call("compress", Quantity(Decimal(1), "GB"), "rar")

        assert "unknown compression algorithm 'rar'" in exc_info.value.message
