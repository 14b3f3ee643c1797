#!/usr/bin/env python3
"""
BK Precision 168xB MCP Server

Exposes a 1685B/1687B/1688B power supply as MCP tools for LLM-driven control.

Requires: Python 3.10+, fastmcp (`pip install fastmcp`), pyserial

Run:
    python bk168xb_mcp.py                      # stdio transport (default)

Or configure in an MCP client's settings:
    {
        "mcpServers": {
            "bk168xb": {
                "command": "python3",
                "args": ["bk168xb_mcp.py"]
            }
        }
    }
"""

import json
from typing import Optional

from fastmcp import FastMCP

from bk168xb import BK168xB, OperatingPoint, PresetIndex, variant_for_model

mcp = FastMCP(
    "BK Precision 168xB Power Supply",
    instructions=(
        "Controls a BK Precision 1685B (60V/5A), 1687B (36V/10A) or 1688B "
        "(18V/20A) DC power supply over USB serial. Always connect() first; "
        "the model is detected automatically. Voltage and current values are "
        "validated against the hardware maximums the supply reports. "
        "disconnect() turns the output off. The OVP/OCP limits cap the "
        "setpoints and protect connected circuits."
    ),
)

# Global device handle, one connection at a time
_psu: Optional[BK168xB] = None


def _require_connection() -> BK168xB:
    if _psu is None:
        raise RuntimeError("Not connected. Call connect() first.")
    return _psu


def _point(p) -> dict:
    return {"voltage": p.voltage, "current": p.current}


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def connect(port: str, model: Optional[str] = None) -> str:
    """Connect to the power supply.

    Opens the serial port, reads the hardware maximums and identifies the
    model from them.

    Args:
        port: Serial port path, e.g. "/dev/ttyUSB0" (Linux) or "COM3"
              (Windows).
        model: Optional model name ("1685B", "1687B", "1688B") to skip
               autodetection.
    """
    global _psu
    if _psu is not None:
        return json.dumps({"error": "Already connected. disconnect() first."})

    variant = variant_for_model(model) if model else None
    psu = BK168xB(port, variant=variant)
    psu.connect()
    _psu = psu

    return json.dumps({
        "status": "connected",
        "model": psu.model,
        "max_voltage": psu.max_voltage,
        "max_current": psu.max_current,
    })


@mcp.tool()
def disconnect() -> str:
    """Disconnect from the power supply.

    Turns the output OFF before closing the port.
    """
    global _psu
    if _psu is None:
        return json.dumps({"status": "already disconnected"})

    _psu.disconnect()
    _psu = None
    return json.dumps({"status": "disconnected", "output": "off"})


@mcp.tool()
def read_settings() -> str:
    """Read the voltage and current setpoints (GETS)."""
    psu = _require_connection()
    return json.dumps(_point(psu.get_settings()))


@mcp.tool()
def read_status() -> str:
    """Read the measured output voltage and current, and the regulation
    mode: "CV" (constant voltage) or "CC" (constant current)."""
    psu = _require_connection()
    status = psu.get_status()
    return json.dumps({
        "voltage": status.voltage,
        "current": status.current,
        "mode": status.mode.value,
    })


@mcp.tool()
def read_limits() -> str:
    """Read the over-voltage and over-current limits (GOVP / GOCP)."""
    psu = _require_connection()
    return json.dumps({
        "ovp": psu.get_voltage_limit(),
        "ocp": psu.get_current_limit(),
    })


@mcp.tool()
def set_voltage(volts: float) -> str:
    """Set the voltage setpoint (VOLT).

    Only changes the setpoint; it does not enable the output.

    Args:
        volts: Desired voltage in volts (0 to max_voltage).
    """
    psu = _require_connection()
    psu.set_voltage(volts)
    return json.dumps({"status": "ok", "voltage_setpoint": volts})


@mcp.tool()
def set_current(amps: float) -> str:
    """Set the current setpoint (CURR).

    Only changes the setpoint; it does not enable the output.

    Args:
        amps: Desired current in amps (0 to max_current).
    """
    psu = _require_connection()
    psu.set_current(amps)
    return json.dumps({"status": "ok", "current_setpoint": amps})


@mcp.tool()
def set_output(volts: float, amps: float) -> str:
    """Set voltage and current, then enable the output.

    V and A are always set *before* the output is enabled.

    Args:
        volts: Desired voltage in volts.
        amps: Desired current in amps.
    """
    psu = _require_connection()
    psu.set_output(volts, amps)
    return json.dumps({
        "status": "ok",
        "output": "on",
        "voltage_setpoint": volts,
        "current_setpoint": amps,
    })


@mcp.tool()
def output_on() -> str:
    """Enable the output at the configured setpoints."""
    psu = _require_connection()
    psu.output_on()
    return json.dumps({"status": "ok", "output": "on"})


@mcp.tool()
def output_off() -> str:
    """Disable the output. Setpoints are kept."""
    psu = _require_connection()
    psu.output_off()
    return json.dumps({"status": "ok", "output": "off"})


@mcp.tool()
def set_ovp(volts: float) -> str:
    """Set the over-voltage limit (SOVP).

    Args:
        volts: OVP limit in volts.
    """
    psu = _require_connection()
    psu.set_voltage_limit(volts)
    return json.dumps({"status": "ok", "ovp": volts})


@mcp.tool()
def set_ocp(amps: float) -> str:
    """Set the over-current limit (SOCP).

    Args:
        amps: OCP limit in amps.
    """
    psu = _require_connection()
    psu.set_current_limit(amps)
    return json.dumps({"status": "ok", "ocp": amps})


@mcp.tool()
def get_presets() -> str:
    """Read the three stored presets M1-M3 (GETM)."""
    psu = _require_connection()
    return json.dumps({"presets": [_point(p) for p in psu.get_presets()]})


@mcp.tool()
def set_presets(presets: list[dict]) -> str:
    """Store the three presets M1-M3 (PROM).

    The supply only accepts all three at once.

    Args:
        presets: Exactly three objects with "voltage" and "current" keys.
    """
    psu = _require_connection()
    if len(presets) != 3:
        raise ValueError(f"Exactly 3 presets required, got {len(presets)}")
    points = [OperatingPoint(float(p["voltage"]), float(p["current"]))
              for p in presets]
    psu.set_presets(*points)
    return json.dumps({"status": "ok", "presets": [_point(p) for p in points]})


@mcp.tool()
def select_preset(n: int) -> str:
    """Switch the output to a stored preset (RUNM).

    Args:
        n: Preset number, 1-3.
    """
    psu = _require_connection()
    if n < 1 or n > 3:
        raise ValueError(f"Preset number must be 1-3, got {n}")
    psu.select_preset(PresetIndex(n - 1))
    return json.dumps({"status": "ok", "preset": n})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    mcp.run()
