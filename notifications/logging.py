"""
Console output for trading and relay events.

Colored multi-line summaries for position opens, closes and SMS forwards,
printed next to the regular log stream.
"""
from __future__ import annotations

from typing import Callable, Optional, Sequence

from colorama import Fore, Style

from core.models import Position, Trade


def _emit_line(line: str, print_fn: Callable[[str], None]) -> None:
    print_fn(line + Style.RESET_ALL)


def emit_open_console_log(
    position: Position,
    *,
    user_id: str,
    balance: float,
    print_fn: Callable[[str], None] = print,
) -> None:
    """Emit the OPEN console lines for a newly opened position."""
    color = Fore.GREEN if position.side.direction > 0 else Fore.RED
    _emit_line(
        f"{color}[OPEN] {position.symbol} {position.side.value} {position.leverage}x "
        f"@ ${position.entry_price:.4f}",
        print_fn,
    )
    _emit_line(
        f"  ├─ Size: {position.quantity:.6f} | Margin: ${position.margin:.2f} "
        f"| Notional: ${position.position_size:.2f}",
        print_fn,
    )
    _emit_line(f"  ├─ Liquidation: ${position.liquidation_price:.4f}", print_fn)
    if position.take_profit is not None or position.stop_loss is not None:
        _emit_line(f"  ├─ TP: {position.take_profit} | SL: {position.stop_loss}", print_fn)
    _emit_line(f"  ├─ Fee: ${position.commission:.4f}", print_fn)
    _emit_line(f"  └─ User {user_id} | Balance: ${balance:.2f}", print_fn)


def emit_close_console_log(
    trade: Trade,
    *,
    user_id: str,
    balance: float,
    print_fn: Callable[[str], None] = print,
) -> None:
    """Emit the CLOSE console lines for a closed position."""
    color = Fore.GREEN if trade.pnl >= 0 else Fore.RED
    _emit_line(
        f"{color}[CLOSE] {trade.symbol} {trade.side.value} {trade.quantity:.6f} "
        f"@ ${trade.exit_price:.4f}",
        print_fn,
    )
    _emit_line(f"  ├─ Entry: ${trade.entry_price:.4f} | Gross PnL: ${trade.gross_pnl:.2f}", print_fn)
    if trade.total_commission > 0:
        _emit_line(
            f"  ├─ Fees Paid: ${trade.total_commission:.4f} "
            f"(includes exit fee ${trade.close_commission:.4f})",
            print_fn,
        )
    _emit_line(f"  ├─ Net PnL: ${trade.pnl:.2f} | ROI: {trade.roi:.2f}%", print_fn)
    _emit_line(f"  ├─ Reason: {trade.status.value}", print_fn)
    _emit_line(f"  └─ User {user_id} | Balance: ${balance:.2f}", print_fn)


def emit_forward_console_log(
    *,
    sender: str,
    number: str,
    otp: Optional[str],
    delivered: Sequence[str],
    failed: Sequence[str],
    print_fn: Callable[[str], None] = print,
) -> None:
    """Emit the FORWARD console lines for one relayed SMS."""
    color = Fore.CYAN if not failed else Fore.YELLOW
    _emit_line(f"{color}[FORWARD] {sender} -> {number}", print_fn)
    if otp:
        _emit_line(f"  ├─ OTP: {otp}", print_fn)
    if failed:
        _emit_line(f"  ├─ {Fore.RED}Failed: {', '.join(failed)}", print_fn)
    _emit_line(f"  └─ Delivered: {len(delivered)}/{len(delivered) + len(failed)}", print_fn)
