"""
Flow CLI wrapper for destination-ledger access.

Transactions and scripts are sent through the ``flow`` command line tool with
JSON output, the same transport the bridge has always used to reach Cadence.
Failures are classified into transient and permanent relay errors.
"""

import asyncio
import json
import logging
import re
import subprocess
from decimal import Decimal
from typing import Any

from ..errors import PermanentError, RelayError, TransientError

logger = logging.getLogger(__name__)

# Substrings in Flow CLI / access node errors that indicate a retryable condition
TRANSIENT_MARKERS = (
    "connection refused",
    "connection reset",
    "deadline exceeded",
    "unavailable",
    "timeout",
    "timed out",
    "rate limit",
    "resource exhausted",
    "context canceled",
    "eof",
)

_TEXT_TX_ID = re.compile(r"Transaction ID:\s*([a-f0-9]{64})")

_INT_TYPES = {
    "Int", "Int8", "Int16", "Int32", "Int64", "Int128", "Int256",
    "UInt", "UInt8", "UInt16", "UInt32", "UInt64", "UInt128", "UInt256",
    "Word8", "Word16", "Word32", "Word64",
}
_FIX_TYPES = {"UFix64", "Fix64"}
_COMPOSITE_TYPES = {"Struct", "Resource", "Event", "Contract", "Enum"}


def classify_flow_error(message: str) -> RelayError:
    """Map a Flow CLI error message onto the relay error taxonomy."""
    lowered = message.lower()
    if any(marker in lowered for marker in TRANSIENT_MARKERS):
        return TransientError(message)
    return PermanentError(message)


def cadence_arg(cadence_type: str, value: Any) -> dict[str, Any]:
    """Build one JSON-Cadence argument for ``--args-json``."""
    match cadence_type:
        case "UFix64" | "Fix64":
            return {"type": cadence_type, "value": f"{Decimal(value):.8f}"}
        case "Bool":
            return {"type": cadence_type, "value": bool(value)}
        case "Optional":
            return {"type": cadence_type, "value": value}
        case _:
            return {"type": cadence_type, "value": str(value)}


def decode_cadence(value: Any) -> Any:
    """Decode a JSON-Cadence value into plain Python objects.

    Values that are not JSON-Cadence encoded are returned unchanged, so the
    decoder also accepts output that the CLI already flattened.
    """
    if not isinstance(value, dict) or "type" not in value:
        return value

    cadence_type = value["type"]
    inner = value.get("value")

    if cadence_type in _INT_TYPES:
        return int(inner)
    if cadence_type in _FIX_TYPES:
        return Decimal(inner)
    if cadence_type == "Optional":
        return None if inner is None else decode_cadence(inner)
    if cadence_type == "Array":
        return [decode_cadence(item) for item in inner or []]
    if cadence_type == "Dictionary":
        return {
            decode_cadence(entry["key"]): decode_cadence(entry["value"])
            for entry in inner or []
        }
    if cadence_type in _COMPOSITE_TYPES:
        fields = (inner or {}).get("fields", [])
        return {item["name"]: decode_cadence(item["value"]) for item in fields}
    if cadence_type == "Void":
        return None
    return inner


class FlowCli:
    """Runs Flow CLI commands against one network with one signer."""

    def __init__(
        self,
        network: str,
        signer: str,
        config_path: str | None = None,
        timeout: float = 60.0,
        executable: str = "flow",
    ) -> None:
        """
        Initialize the CLI wrapper.

        Args:
            network: Flow network name from flow.json (emulator, testnet, mainnet)
            signer: Account name from flow.json used to sign transactions
            config_path: Optional path to flow.json
            timeout: Seconds before a command is abandoned as unknown-outcome
            executable: Name or path of the flow binary
        """
        self.network = network
        self.signer = signer
        self.config_path = config_path
        self.timeout = timeout
        self.executable = executable

    def transaction_command(self, path: str, args: list[dict[str, Any]]) -> list[str]:
        command = [
            self.executable, "transactions", "send", path,
            "--args-json", json.dumps(args),
            "--network", self.network,
            "--signer", self.signer,
            "--output", "json",
        ]
        return self._with_config(command)

    def script_command(self, path: str, args: list[dict[str, Any]]) -> list[str]:
        command = [
            self.executable, "scripts", "execute", path,
            "--args-json", json.dumps(args),
            "--network", self.network,
            "--output", "json",
        ]
        return self._with_config(command)

    def _with_config(self, command: list[str]) -> list[str]:
        if self.config_path:
            command += ["--config-path", self.config_path]
        return command

    def run(self, command: list[str]) -> dict[str, Any]:
        """Run a CLI command synchronously and return its parsed JSON output.

        Raises:
            TransientError: On timeout or network-level failures
            PermanentError: On rejected transactions or a missing CLI binary
        """
        logger.debug(f"Running: {' '.join(command[:4])} ...")
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TransientError(f"Flow CLI timed out after {self.timeout}s") from e
        except FileNotFoundError as e:
            raise PermanentError(f"Flow CLI not found: {self.executable}") from e

        return self.parse_output(completed.returncode, completed.stdout, completed.stderr)

    async def run_async(self, command: list[str]) -> dict[str, Any]:
        """Run a CLI command without blocking the event loop.

        The subprocess is killed if the caller is cancelled or the command
        exceeds the timeout; the outcome on the ledger is then unknown.
        """
        logger.debug(f"Running: {' '.join(command[:4])} ...")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise PermanentError(f"Flow CLI not found: {self.executable}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise TransientError(f"Flow CLI timed out after {self.timeout}s") from e
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        return self.parse_output(
            process.returncode or 0,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )

    @staticmethod
    def parse_output(returncode: int, stdout: str, stderr: str) -> dict[str, Any]:
        """Parse CLI JSON output, raising a classified error on failure."""
        if returncode != 0:
            message = (stderr or stdout).strip() or f"Flow CLI exited with code {returncode}"
            raise classify_flow_error(message)

        try:
            result = json.loads(stdout)
        except json.JSONDecodeError:
            # Older CLI versions print text even when JSON output is requested
            match = _TEXT_TX_ID.search(stdout)
            result = {"id": match.group(1) if match else None, "raw": stdout}

        if not isinstance(result, dict):
            result = {"value": result}

        if error := result.get("error"):
            raise classify_flow_error(str(error))

        return result


def find_event(result: dict[str, Any], event_name: str) -> dict[str, Any] | None:
    """Return the decoded fields of the first event whose type ends with ``event_name``."""
    for event in result.get("events") or []:
        event_type = str(event.get("type", ""))
        if event_type.split(".")[-1] == event_name:
            return decode_cadence(event.get("values", {}))
    return None


def script_value(result: dict[str, Any]) -> Any:
    """Decode the return value of a script from ``FlowCli.run`` output."""
    if "type" in result:
        return decode_cadence(result)
    if "value" in result:
        return decode_cadence(result["value"])
    return result
