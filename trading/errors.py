"""Error taxonomy for discovery, pricing and swap execution."""

from __future__ import annotations

from decimal import Decimal

E_FEED = "E_FEED"
E_EXEC = "E_EXEC"
E_EXEC_APPROVAL = "E_EXEC_APPROVAL"
E_EXEC_TX = "E_EXEC_TX"
E_EXEC_TRANSPORT = "E_EXEC_TRANSPORT"
E_EXEC_UNCONFIRMED = "E_EXEC_UNCONFIRMED"
E_DISCOVERY = "E_DISCOVERY"
E_CONFIG_GAP = "E_CONFIG_GAP"


class SniperError(RuntimeError):
    code = "E_UNKNOWN"

    def __init__(self, message: str = "", *, detail: object | None = None) -> None:
        super().__init__(message)
        self.detail = detail


class TransientFeedError(SniperError):
    """Quote fetch failed; the next poll retries without any state change."""

    code = E_FEED


class ExecutionError(SniperError):
    """Swap or approval failed; surfaced to the caller for that one position."""

    code = E_EXEC


class ApprovalRejected(ExecutionError):
    code = E_EXEC_APPROVAL


class TransactionRejected(ExecutionError):
    code = E_EXEC_TX


class SwapTransportError(ExecutionError):
    code = E_EXEC_TRANSPORT


class SwapUnconfirmed(ExecutionError):
    """The swap was broadcast but its receipt could not be read; it must not be re-submitted."""

    code = E_EXEC_UNCONFIRMED

    def __init__(
        self,
        message: str = "",
        *,
        tx_hash: str = "",
        expected_amount: Decimal | None = None,
        detail: object | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.tx_hash = tx_hash
        self.expected_amount = expected_amount


class DiscoveryError(SniperError):
    code = E_DISCOVERY


class DiscoveryUnavailable(DiscoveryError):
    """The scraper exited non-zero, timed out, or printed something that is not a candidate list."""


class ConfigurationGap(SniperError):
    """A candidate's blockchain has no complete routing entry."""

    code = E_CONFIG_GAP


def short_error_text(exc: BaseException | str, limit: int = 180) -> str:
    text = " ".join(str(exc or "").split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text
