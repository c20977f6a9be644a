"""Command table for the BMS write characteristic."""

from __future__ import annotations

from types import MappingProxyType

from ultibridge.core.model import CommandName

# charge_on repeats the discharge_on frame; kept byte-for-byte until the
# device's own charge-enable command is confirmed.
COMMANDS = MappingProxyType(
    {
        CommandName.DISCHARGE_ON: bytes.fromhex("dd5ae1020000ff1d77"),
        CommandName.DISCHARGE_OFF: bytes.fromhex("dd5ae1020002ff1b77"),
        CommandName.CHARGE_ON: bytes.fromhex("dd5ae1020000ff1d77"),
        CommandName.CHARGE_OFF: bytes.fromhex("dd5ae1020001ff1c77"),
        CommandName.REQUEST_READ: bytes.fromhex("dda50300fffd77"),
        CommandName.REQUEST_CELL_VOLTAGE: bytes.fromhex("dda50400fffc77"),
        CommandName.REQUEST_INFO: bytes.fromhex("dda50500fffb77"),
    }
)


def encode(name: CommandName | str) -> bytes:
    return COMMANDS[CommandName(name)]
