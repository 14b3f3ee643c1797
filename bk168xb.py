#!/usr/bin/env python3
"""
BK Precision 168xB Power Supplies - Python API

Covers the 1685B (60V/5A), 1687B (36V/10A) and 1688B (18V/20A). The wire
protocol is ASCII decimal, fixed width and carriage-return delimited. It is
not self-describing: a response can only be parsed by knowing which command
it answers, so every command class names the response class it expects.

Requires: pyserial (`pip install pyserial`)
"""

import enum
import logging
import math
from dataclasses import dataclass
from typing import ClassVar, Optional

import serial

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants: framing
# ---------------------------------------------------------------------------
TERMINATOR = b"\r"  # ends every command
SEPARATOR = b"\r"  # follows a non-empty response argument block
ACK = b"OK\r"  # ends every response

FUNCTION_LEN = 4

# Status responses always use this format, whatever the model
STATUS_DECIMALS = 2
STATUS_DIGITS = 4

# Capabilities responses report voltage with one decimal on every model
CAPABILITIES_VOLTAGE_DECIMALS = 1
# Used for the current field when the model can't be identified
CAPABILITIES_FALLBACK_CURRENT_DECIMALS = 1

# Reported maximums sit a little above the nominal rating
AUTODETECT_BAND = 10

DEFAULT_BAUD = 9600
DEFAULT_TIMEOUT = 1.0


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class BK168xBError(Exception):
    """Base class for everything raised by this module."""


class CommandError(BK168xBError):
    """A command could not be sent."""


class ValueUnrepresentable(CommandError, ValueError):
    """A command argument doesn't fit its field's width or precision."""

    def __init__(self, value: float):
        super().__init__(f"unrepresentable value in command: {value!r}")
        self.value = value


class WriteFailure(CommandError, IOError):
    """The transport failed while writing a command."""


class ResponseError(BK168xBError, IOError):
    """A response could not be received."""


class MalformedResponse(ResponseError):
    """The supply returned data that doesn't match the expected format."""


class NoResponse(ResponseError):
    """The supply returned nothing. Also raised on a read timeout."""


class ReadFailure(ResponseError):
    """The transport failed while reading a response."""


class UnknownSupply(BK168xBError):
    """The connected supply doesn't match any known model."""


# ---------------------------------------------------------------------------
# Supply variants
# ---------------------------------------------------------------------------
class SupplyVariant(enum.Enum):
    """Model-to-model protocol quirks.

    The members are the only variants; they can't be built from loose
    values. Generally a supply reports capabilities slightly above its
    nominal maximums.
    """

    #         model,     V,  A, current_decimals, voltage_decimals
    BK1685B = ("BK1685B", 60, 5, 2, 1)
    BK1687B = ("BK1687B", 36, 10, 1, 1)
    BK1688B = ("BK1688B", 18, 20, 1, 1)

    def __init__(self, model, nominal_max_voltage, nominal_max_current,
                 current_decimals, voltage_decimals):
        self.model = model
        self.nominal_max_voltage = nominal_max_voltage
        self.nominal_max_current = nominal_max_current
        self.current_decimals = current_decimals
        self.voltage_decimals = voltage_decimals

    def voltage_format(self, digits: int = 3) -> "ArgFormat":
        return ArgFormat(decimals=self.voltage_decimals, digits=digits)

    def current_format(self, digits: int = 3) -> "ArgFormat":
        return ArgFormat(decimals=self.current_decimals, digits=digits)

    def __str__(self):
        return (f"{self.model} ({self.nominal_max_voltage}V / "
                f"{self.nominal_max_current}A)")


BK1685B = SupplyVariant.BK1685B
BK1687B = SupplyVariant.BK1687B
BK1688B = SupplyVariant.BK1688B

VARIANTS = (BK1685B, BK1687B, BK1688B)


def variant_for_max_voltage(voltage: float) -> Optional[SupplyVariant]:
    """Identify a model from the maximum voltage it reports.

    Each model claims the band [nominal, nominal + 10). Values between the
    bands (e.g. 47V) belong to no known model and give None.
    """
    for variant in VARIANTS:
        nominal = variant.nominal_max_voltage
        if nominal <= voltage < nominal + AUTODETECT_BAND:
            return variant
    return None


def variant_for_model(name: str) -> SupplyVariant:
    """Look up a variant by model name ("1687B", "bk1687b", ...)."""
    key = name.strip().upper()
    if not key.startswith("BK"):
        key = "BK" + key
    for variant in VARIANTS:
        if variant.model == key:
            return variant
    known = ", ".join(v.model for v in VARIANTS)
    raise ValueError(f"Unknown model {name!r} (known: {known})")


# ---------------------------------------------------------------------------
# Numeric field codec
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ArgFormat:
    """A fixed-width, zero-padded, unsigned decimal field.

    ``decimals`` of the ``digits`` encoded digits are the fractional part, so
    12.3 at (decimals=1, digits=3) is "123".
    """

    decimals: int
    digits: int

    def __post_init__(self):
        if self.decimals < 0 or self.digits < self.decimals:
            raise ValueError(
                f"invalid field format: {self.digits} digits, "
                f"{self.decimals} decimals"
            )

    @property
    def factor(self) -> int:
        return 10 ** self.decimals

    @property
    def max(self) -> float:
        """Largest encodable value."""
        return (10 ** self.digits - 1) / self.factor

    def encode(self, value: float) -> str:
        """Render ``value`` as exactly ``digits`` ASCII digits.

        Rounds half away from zero. Raises ValueUnrepresentable for NaN,
        infinities, negatives and anything above ``max``.
        """
        if not math.isfinite(value) or value < 0 or value > self.max:
            raise ValueUnrepresentable(value)
        scaled = math.floor(value * self.factor + 0.5)
        return f"{scaled:0{self.digits}d}"

    def decode(self, raw: bytes) -> float:
        """Parse exactly ``digits`` ASCII digits back into a float."""
        if len(raw) != self.digits or not raw.isdigit():
            raise MalformedResponse(
                f"expected {self.digits} digits, got {bytes(raw)!r}"
            )
        return int(raw) / self.factor


# Single-digit protocol fields: output flag, preset index
FLAG_FORMAT = ArgFormat(decimals=0, digits=1)


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
class OutputState(enum.Enum):
    ON = "on"
    OFF = "off"

    @property
    def arg_val(self) -> int:
        # The firmware flag means "output suppressed": 0 is on, 1 is off
        return 0 if self is OutputState.ON else 1


class OutputMode(enum.Enum):
    CONSTANT_VOLTAGE = "CV"
    CONSTANT_CURRENT = "CC"


class PresetIndex(enum.IntEnum):
    ONE = 0
    TWO = 1
    THREE = 2

    @property
    def arg_val(self) -> int:
        return int(self)


@dataclass(frozen=True)
class OperatingPoint:
    voltage: float
    current: float


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class Response:
    """Base for response types.

    ``ARG_BYTES`` counts the argument block, including any internal
    separators but not the separator ahead of "OK\\r".
    """

    ARG_BYTES: ClassVar[int] = 0

    @classmethod
    def parse_args(cls, raw: bytes, variant: Optional[SupplyVariant]):
        raise NotImplementedError


@dataclass(frozen=True)
class Ack(Response):
    """Success, with no data."""

    ARG_BYTES: ClassVar[int] = 0

    @classmethod
    def parse_args(cls, raw, variant):
        return cls()


@dataclass(frozen=True)
class Voltage(Response):
    """Answer to GetVoltageLimit."""

    value: float

    ARG_BYTES: ClassVar[int] = 3

    @classmethod
    def parse_args(cls, raw, variant):
        return cls(variant.voltage_format(cls.ARG_BYTES).decode(raw))


@dataclass(frozen=True)
class Current(Response):
    """Answer to GetCurrentLimit."""

    value: float

    ARG_BYTES: ClassVar[int] = 3

    @classmethod
    def parse_args(cls, raw, variant):
        return cls(variant.current_format(cls.ARG_BYTES).decode(raw))


@dataclass(frozen=True)
class Settings(Response):
    """Voltage and current setpoints (GetSettings)."""

    voltage: float
    current: float

    ARG_BYTES: ClassVar[int] = 6

    @classmethod
    def parse_args(cls, raw, variant):
        point = _parse_operating_point(raw, variant)
        return cls(point.voltage, point.current)


@dataclass(frozen=True)
class Status(Response):
    """Measured output and regulation mode, as on the front panel (GetStatus)."""

    voltage: float
    current: float
    mode: OutputMode

    ARG_BYTES: ClassVar[int] = 9

    @classmethod
    def parse_args(cls, raw, variant):
        # Four digits, two decimals, regardless of model
        fmt = ArgFormat(decimals=STATUS_DECIMALS, digits=STATUS_DIGITS)
        if len(raw) != 2 * fmt.digits + 1:
            raise MalformedResponse(f"bad status block {raw!r}")

        voltage = fmt.decode(raw[:fmt.digits])
        current = fmt.decode(raw[fmt.digits:2 * fmt.digits])
        mode_raw = raw[2 * fmt.digits:]
        if mode_raw == b"0":
            mode = OutputMode.CONSTANT_VOLTAGE
        elif mode_raw == b"1":
            mode = OutputMode.CONSTANT_CURRENT
        else:
            raise MalformedResponse(f"bad output mode {mode_raw!r}")

        return cls(voltage, current, mode)


@dataclass(frozen=True)
class Presets(Response):
    """The three stored operating points (GetPresets)."""

    first: OperatingPoint
    second: OperatingPoint
    third: OperatingPoint

    # three 6-byte fields, two separators
    ARG_BYTES: ClassVar[int] = 6 * 3 + 2

    def __iter__(self):
        return iter((self.first, self.second, self.third))

    def __getitem__(self, index: int) -> OperatingPoint:
        return (self.first, self.second, self.third)[index]

    def __len__(self):
        return 3

    @classmethod
    def parse_args(cls, raw, variant):
        chunks = raw.split(SEPARATOR)
        if len(chunks) != 3:
            raise MalformedResponse(f"expected 3 presets, got {len(chunks)}")
        return cls(*(_parse_operating_point(c, variant) for c in chunks))


@dataclass(frozen=True)
class Capabilities(Response):
    """Hardware maximums (GetCapabilities).

    Unaffected by the soft limits from SetVoltageLimit and SetCurrentLimit.
    Currents above 5A are only available on the rear terminals.

    Parsing ignores the variant it's given and identifies the model from the
    reported voltage instead; this is how an unknown supply is detected.
    """

    max_voltage: float
    max_current: float

    ARG_BYTES: ClassVar[int] = 6

    def variant(self) -> Optional[SupplyVariant]:
        """The model these maximums belong to, or None if unknown."""
        return variant_for_max_voltage(self.max_voltage)

    @classmethod
    def parse_args(cls, raw, variant):
        if len(raw) != cls.ARG_BYTES:
            raise MalformedResponse(f"bad capabilities block {raw!r}")

        volt_fmt = ArgFormat(decimals=CAPABILITIES_VOLTAGE_DECIMALS, digits=3)
        voltage = volt_fmt.decode(raw[:volt_fmt.digits])

        detected = variant_for_max_voltage(voltage)
        if detected is not None:
            current_decimals = detected.current_decimals
        else:
            current_decimals = CAPABILITIES_FALLBACK_CURRENT_DECIMALS
        curr_fmt = ArgFormat(decimals=current_decimals, digits=3)
        current = curr_fmt.decode(raw[volt_fmt.digits:])

        return cls(voltage, current)


def _parse_operating_point(raw: bytes, variant: SupplyVariant) -> OperatingPoint:
    """Split a 6-byte voltage+current field."""
    v_fmt = variant.voltage_format()
    i_fmt = variant.current_format()
    if len(raw) != v_fmt.digits + i_fmt.digits:
        raise MalformedResponse(f"bad operating point {raw!r}")
    return OperatingPoint(
        voltage=v_fmt.decode(raw[:v_fmt.digits]),
        current=i_fmt.decode(raw[v_fmt.digits:]),
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
class Command:
    """Base for command types.

    ``FUNCTION`` is the 4-character code that starts the command and
    ``RESPONSE`` the type the supply answers with.
    """

    FUNCTION: ClassVar[str] = ""
    RESPONSE: ClassVar[type] = Ack

    def fields(self, variant: SupplyVariant) -> list[tuple[ArgFormat, float]]:
        """The command's arguments in wire order. None by default."""
        return []


@dataclass(frozen=True)
class SetVoltage(Command):
    voltage: float

    FUNCTION: ClassVar[str] = "VOLT"

    def fields(self, variant):
        return [(variant.voltage_format(), self.voltage)]


@dataclass(frozen=True)
class SetCurrent(Command):
    current: float

    FUNCTION: ClassVar[str] = "CURR"

    def fields(self, variant):
        return [(variant.current_format(), self.current)]


@dataclass(frozen=True)
class SetVoltageLimit(Command):
    """Set the upper bound on the voltage setpoint (OVP)."""

    voltage: float

    FUNCTION: ClassVar[str] = "SOVP"

    def fields(self, variant):
        return [(variant.voltage_format(), self.voltage)]


@dataclass(frozen=True)
class SetCurrentLimit(Command):
    """Set the upper bound on the current setpoint (OCP)."""

    current: float

    FUNCTION: ClassVar[str] = "SOCP"

    def fields(self, variant):
        return [(variant.current_format(), self.current)]


@dataclass(frozen=True)
class SetOutput(Command):
    state: OutputState

    FUNCTION: ClassVar[str] = "SOUT"

    def fields(self, variant):
        return [(FLAG_FORMAT, self.state.arg_val)]


@dataclass(frozen=True)
class SetPresets(Command):
    """Store three operating points. All 18 digits run together."""

    first: OperatingPoint
    second: OperatingPoint
    third: OperatingPoint

    FUNCTION: ClassVar[str] = "PROM"

    def fields(self, variant):
        v_fmt = variant.voltage_format()
        i_fmt = variant.current_format()
        out = []
        for point in (self.first, self.second, self.third):
            out.append((v_fmt, point.voltage))
            out.append((i_fmt, point.current))
        return out


@dataclass(frozen=True)
class SelectPreset(Command):
    index: PresetIndex

    FUNCTION: ClassVar[str] = "RUNM"

    def fields(self, variant):
        try:
            index = PresetIndex(self.index)
        except ValueError:
            raise ValueUnrepresentable(self.index) from None
        return [(FLAG_FORMAT, index.arg_val)]


@dataclass(frozen=True)
class GetSettings(Command):
    FUNCTION: ClassVar[str] = "GETS"
    RESPONSE: ClassVar[type] = Settings


@dataclass(frozen=True)
class GetStatus(Command):
    FUNCTION: ClassVar[str] = "GETD"
    RESPONSE: ClassVar[type] = Status


@dataclass(frozen=True)
class GetVoltageLimit(Command):
    FUNCTION: ClassVar[str] = "GOVP"
    RESPONSE: ClassVar[type] = Voltage


@dataclass(frozen=True)
class GetCurrentLimit(Command):
    FUNCTION: ClassVar[str] = "GOCP"
    RESPONSE: ClassVar[type] = Current


@dataclass(frozen=True)
class GetCapabilities(Command):
    FUNCTION: ClassVar[str] = "GMAX"
    RESPONSE: ClassVar[type] = Capabilities


@dataclass(frozen=True)
class GetPresets(Command):
    FUNCTION: ClassVar[str] = "GETM"
    RESPONSE: ClassVar[type] = Presets


@dataclass(frozen=True)
class StartSession(Command):
    """Put the supply under remote control, locking the front panel."""

    FUNCTION: ClassVar[str] = "SESS"


@dataclass(frozen=True)
class EndSession(Command):
    """Return the supply to front-panel control."""

    FUNCTION: ClassVar[str] = "ENDS"


COMMANDS = {
    cls.FUNCTION: cls
    for cls in (
        SetVoltage, SetCurrent, SetVoltageLimit, SetCurrentLimit, SetOutput,
        SetPresets, SelectPreset, GetSettings, GetStatus, GetVoltageLimit,
        GetCurrentLimit, GetCapabilities, GetPresets, StartSession, EndSession,
    )
}


# ---------------------------------------------------------------------------
# Wire encode / decode
# ---------------------------------------------------------------------------
def serialize(command: Command, variant: SupplyVariant) -> bytes:
    """Encode a command: function code, run-together fields, terminator.

    Raises ValueUnrepresentable if any field doesn't fit; nothing is
    produced in that case.
    """
    parts = [command.FUNCTION]
    for fmt, value in command.fields(variant):
        parts.append(fmt.encode(value))
    return "".join(parts).encode("ascii") + TERMINATOR


def send_command(sink, command: Command, variant: SupplyVariant) -> None:
    """Serialize ``command`` and write it to ``sink`` in one call."""
    data = serialize(command, variant)
    logger.debug("TX %r", data)
    try:
        sink.write(data)
    except (serial.SerialException, OSError) as e:
        raise WriteFailure(f"failed to write command: {e}") from e


def frame_length(response_type: type) -> int:
    """Total bytes on the wire for a response of ``response_type``."""
    arg_bytes = response_type.ARG_BYTES
    before_ack = arg_bytes + len(SEPARATOR) if arg_bytes else 0
    return before_ack + len(ACK)


def read_response(source, response_type: type,
                  variant: Optional[SupplyVariant]):
    """Read and parse one response frame from ``source``.

    Exactly one ``source.read()`` is issued for the whole frame. A short
    read is a malformed frame; nothing more is read to complete it.
    """
    total = frame_length(response_type)
    try:
        buf = source.read(total)
    except (serial.SerialException, OSError) as e:
        raise ReadFailure(f"failed to read response: {e}") from e
    logger.debug("RX %r", buf)

    if not buf:
        raise NoResponse("no command response")
    if len(buf) != total:
        raise MalformedResponse(
            f"expected {total} bytes, got {len(buf)}: {bytes(buf)!r}"
        )

    before_ack, ack = buf[:total - len(ACK)], buf[total - len(ACK):]
    if ack != ACK:
        raise MalformedResponse(f"bad acknowledgment {ack!r}")

    if response_type.ARG_BYTES:
        args, sep = before_ack[:-len(SEPARATOR)], before_ack[-len(SEPARATOR):]
        if sep != SEPARATOR:
            raise MalformedResponse(f"bad separator {sep!r}")
    else:
        args = before_ack

    return response_type.parse_args(args, variant)


# ---------------------------------------------------------------------------
# BK168xB class
# ---------------------------------------------------------------------------
class BK168xB:
    """Python API for BK Precision 1685B/1687B/1688B power supplies.

    Usage::

        with BK168xB("/dev/ttyUSB0") as psu:
            print(psu.get_status())
            psu.set_output(5.0, 1.0)

    The model is detected on connect unless ``variant`` is given.
    """

    def __init__(self, port: str, baud: int = DEFAULT_BAUD,
                 variant: Optional[SupplyVariant] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self._port = port
        self._baud = baud
        self._timeout = timeout
        self._ser: Optional[serial.Serial] = None

        self._variant: Optional[SupplyVariant] = variant
        self._capabilities: Optional[Capabilities] = None

    # -- Properties ----------------------------------------------------------

    @property
    def port(self) -> str:
        return self._port

    @property
    def variant(self) -> Optional[SupplyVariant]:
        return self._variant

    @property
    def model(self) -> Optional[str]:
        return self._variant.model if self._variant else None

    @property
    def capabilities(self) -> Optional[Capabilities]:
        return self._capabilities

    @property
    def max_voltage(self) -> Optional[float]:
        if self._capabilities:
            return self._capabilities.max_voltage
        if self._variant:
            return float(self._variant.nominal_max_voltage)
        return None

    @property
    def max_current(self) -> Optional[float]:
        if self._capabilities:
            return self._capabilities.max_current
        if self._variant:
            return float(self._variant.nominal_max_current)
        return None

    # -- Context manager -----------------------------------------------------

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # -- Low-level I/O -------------------------------------------------------

    def _require_open(self) -> serial.Serial:
        if self._ser is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._ser

    def send(self, command: Command):
        """Write one command. Pair with exactly one receive()."""
        send_command(self._require_open(), command, self._variant)

    def receive(self, response_type: type):
        """Read one response of the given type."""
        return read_response(self._require_open(), response_type,
                             self._variant)

    def query(self, command: Command):
        """Send a command and read the response it's paired with."""
        self.send(command)
        return self.receive(command.RESPONSE)

    # -- Connection lifecycle ------------------------------------------------

    def connect(self):
        """Open the serial port and identify the supply.

        Reads the hardware maximums (GMAX). If no variant was given, the
        model is detected from them; UnknownSupply is raised if that fails.
        """
        self._ser = serial.Serial(
            self._port, self._baud,
            bytesize=8, parity="N", stopbits=1,
            timeout=self._timeout,
        )
        self._ser.reset_input_buffer()

        try:
            caps = self.get_capabilities()
        except BK168xBError:
            self.close()
            raise

        if self._variant is None:
            detected = caps.variant()
            if detected is None:
                logger.warning(
                    "No known model reports %.1fV / %.2fA",
                    caps.max_voltage, caps.max_current,
                )
                self.close()
                raise UnknownSupply(
                    f"Unrecognized supply on {self._port}: "
                    f"max {caps.max_voltage:.1f}V / {caps.max_current:.2f}A"
                )
            self._variant = detected
            logger.info("Detected %s on %s", detected, self._port)

    def disconnect(self):
        """Turn output off and close the port (safe shutdown)."""
        if self._ser is not None:
            try:
                self.output_off()
            except BK168xBError as e:
                logger.warning("Could not turn output off: %s", e)
        self.close()

    def close(self):
        """Close the port, leaving the supply in its current state."""
        if self._ser is not None and self._ser.is_open:
            self._ser.close()
        self._ser = None

    # -- Session -------------------------------------------------------------

    def start_session(self):
        """Lock the front panel for remote control."""
        self.query(StartSession())

    def end_session(self):
        """Release the front panel."""
        self.query(EndSession())

    # -- Readings ------------------------------------------------------------

    def get_capabilities(self) -> Capabilities:
        """Read the hardware maximums and cache them for validation."""
        self._capabilities = self.query(GetCapabilities())
        return self._capabilities

    def get_settings(self) -> Settings:
        """Read the voltage and current setpoints."""
        return self.query(GetSettings())

    def get_status(self) -> Status:
        """Read the measured output voltage, current and CV/CC mode."""
        return self.query(GetStatus())

    def get_voltage_limit(self) -> float:
        return self.query(GetVoltageLimit()).value

    def get_current_limit(self) -> float:
        return self.query(GetCurrentLimit()).value

    def get_presets(self) -> Presets:
        return self.query(GetPresets())

    # -- Output control ------------------------------------------------------

    def _check_voltage(self, volts: float, what: str = "Voltage"):
        if volts < 0:
            raise ValueError(f"{what} must be non-negative, got {volts:.3f}V")
        limit = self.max_voltage
        if limit is not None and volts > limit:
            raise ValueError(
                f"{what} {volts:.3f}V out of range [0, {limit:.1f}V]"
            )

    def _check_current(self, amps: float, what: str = "Current"):
        if amps < 0:
            raise ValueError(f"{what} must be non-negative, got {amps:.3f}A")
        limit = self.max_current
        if limit is not None and amps > limit:
            raise ValueError(
                f"{what} {amps:.3f}A out of range [0, {limit:.2f}A]"
            )

    def set_voltage(self, volts: float):
        """Set the voltage setpoint. Validates against the supply maximum."""
        self._check_voltage(volts)
        self.query(SetVoltage(volts))

    def set_current(self, amps: float):
        """Set the current setpoint. Validates against the supply maximum."""
        self._check_current(amps)
        self.query(SetCurrent(amps))

    def set_voltage_limit(self, volts: float):
        """Set the over-voltage limit (caps the voltage setpoint)."""
        self._check_voltage(volts, "OVP")
        self.query(SetVoltageLimit(volts))

    def set_current_limit(self, amps: float):
        """Set the over-current limit (caps the current setpoint)."""
        self._check_current(amps, "OCP")
        self.query(SetCurrentLimit(amps))

    def output_on(self):
        self.query(SetOutput(OutputState.ON))

    def output_off(self):
        self.query(SetOutput(OutputState.OFF))

    def set_output(self, volts: float, amps: float):
        """Set voltage and current, then enable output.

        V and A are set *before* enabling to prevent transients.
        """
        self.set_voltage(volts)
        self.set_current(amps)
        self.output_on()

    # -- Presets -------------------------------------------------------------

    def set_presets(self, first: OperatingPoint, second: OperatingPoint,
                    third: OperatingPoint):
        """Store all three presets. The supply only accepts them together."""
        for n, point in enumerate((first, second, third), start=1):
            self._check_voltage(point.voltage, f"Preset {n} voltage")
            self._check_current(point.current, f"Preset {n} current")
        self.query(SetPresets(first, second, third))

    def select_preset(self, index: PresetIndex):
        """Switch the output to a stored preset."""
        self.query(SelectPreset(PresetIndex(index)))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------
def _cli(argv: Optional[list] = None):
    import argparse
    import json as _json
    import sys

    parser = argparse.ArgumentParser(
        prog="bk168xb",
        description="BK Precision 168xB command-line interface",
    )
    parser.add_argument(
        "-p", "--port",
        default="/dev/ttyUSB0",
        help="serial port (default: %(default)s)",
    )
    parser.add_argument(
        "-b", "--baud", type=int, default=DEFAULT_BAUD,
        help="baud rate (default: %(default)s)",
    )
    parser.add_argument(
        "-t", "--timeout", type=float, default=DEFAULT_TIMEOUT,
        help="read timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "-m", "--model",
        help="supply model, e.g. 1687B (default: autodetect)",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="log more (-v info, -vv wire traffic)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # -- readings ------------------------------------------------------------
    sub.add_parser("info", help="show model and hardware maximums")
    sub.add_parser("settings", help="read voltage/current setpoints")
    sub.add_parser("status", help="read measured output and CV/CC mode")
    sub.add_parser("limits", help="read OVP/OCP limits")

    # -- setpoints -----------------------------------------------------------
    p = sub.add_parser("set-voltage", help="set voltage setpoint")
    p.add_argument("volts", type=float)

    p = sub.add_parser("set-current", help="set current setpoint")
    p.add_argument("amps", type=float)

    p = sub.add_parser("set-output", help="set V/A and enable output")
    p.add_argument("volts", type=float)
    p.add_argument("amps", type=float)

    # -- limits --------------------------------------------------------------
    p = sub.add_parser("set-ovp", help="set over-voltage limit")
    p.add_argument("volts", type=float)

    p = sub.add_parser("set-ocp", help="set over-current limit")
    p.add_argument("amps", type=float)

    # -- on / off ------------------------------------------------------------
    sub.add_parser("on", help="enable output")
    sub.add_parser("off", help="disable output")

    # -- presets -------------------------------------------------------------
    sub.add_parser("presets", help="read all presets")

    p = sub.add_parser("set-presets", help="store presets M1-M3")
    for n in range(1, 4):
        p.add_argument(f"volts{n}", type=float)
        p.add_argument(f"amps{n}", type=float)

    p = sub.add_parser("select-preset", help="switch to a preset (M1-M3)")
    p.add_argument("n", type=int, choices=range(1, 4), metavar="N")

    args = parser.parse_args(argv)

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        variant = variant_for_model(args.model) if args.model else None
        psu = BK168xB(args.port, baud=args.baud, variant=variant,
                      timeout=args.timeout)
        psu.connect()
    except (ValueError, IOError, BK168xBError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        cmd = args.command

        if cmd == "info":
            print(f"Model:    {psu.model}")
            print(f"Max V:    {psu.max_voltage:.1f} V")
            print(f"Max A:    {psu.max_current:.2f} A")

        elif cmd == "settings":
            s = psu.get_settings()
            print(_json.dumps({"voltage": s.voltage, "current": s.current}))
        elif cmd == "status":
            s = psu.get_status()
            print(f"{s.voltage:.2f} V  {s.current:.2f} A  {s.mode.value}")
        elif cmd == "limits":
            print(f"OVP: {psu.get_voltage_limit():.2f} V")
            print(f"OCP: {psu.get_current_limit():.2f} A")

        elif cmd == "set-voltage":
            psu.set_voltage(args.volts)
            print(f"Voltage setpoint: {args.volts:.2f} V")
        elif cmd == "set-current":
            psu.set_current(args.amps)
            print(f"Current setpoint: {args.amps:.2f} A")
        elif cmd == "set-output":
            psu.set_output(args.volts, args.amps)
            print(f"Output ON: {args.volts:.2f} V / {args.amps:.2f} A")

        elif cmd == "set-ovp":
            psu.set_voltage_limit(args.volts)
            print(f"OVP: {args.volts:.2f} V")
        elif cmd == "set-ocp":
            psu.set_current_limit(args.amps)
            print(f"OCP: {args.amps:.2f} A")

        elif cmd == "on":
            psu.output_on()
            print("Output ON")
        elif cmd == "off":
            psu.output_off()
            print("Output OFF")

        elif cmd == "presets":
            for i, p in enumerate(psu.get_presets()):
                print(f"M{i+1}: {p.voltage:.2f} V / {p.current:.2f} A")
        elif cmd == "set-presets":
            points = [
                OperatingPoint(getattr(args, f"volts{n}"), getattr(args, f"amps{n}"))
                for n in range(1, 4)
            ]
            psu.set_presets(*points)
            for n, p in enumerate(points, start=1):
                print(f"M{n}: {p.voltage:.2f} V / {p.current:.2f} A")
        elif cmd == "select-preset":
            psu.select_preset(PresetIndex(args.n - 1))
            print(f"Preset M{args.n} selected")

    except (ValueError, IOError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        psu.close()


if __name__ == "__main__":
    _cli()
