"""Early unlock: PIN check and partner one-time codes."""

import hmac
import secrets
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta

from loguru import logger

from lock_in.clock import Clock, SystemClock
from lock_in.schema import OneTimeCode
from lock_in.session import SessionLifecycleManager
from lock_in.settings import settings
from lock_in.store import StateStore
from lock_in.transport import Transport


def is_valid_pin(pin: str) -> bool:
    return len(pin) == 4 and pin.isdigit()


def new_code() -> str:
    """Four digits, never starting with zero."""
    return f"{1000 + secrets.randbelow(9000):04d}"


class UnlockProtocol:
    def __init__(
        self,
        store: StateStore,
        sessions: SessionLifecycleManager,
        transport: Transport | None = None,
        clock: Clock | None = None,
        validity: timedelta | None = None,
    ):
        self.store = store
        self.sessions = sessions
        self.transport = transport
        self.clock = clock or SystemClock()
        self.validity = validity or timedelta(minutes=settings.otc_validity_minutes)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="otc-delivery")

    # PIN

    def set_pin(self, pin: str) -> None:
        if not is_valid_pin(pin):
            raise ValueError("PIN must be exactly 4 digits.")
        with self.store.transaction() as state:
            state.unlock.pin = pin
        logger.info("Unlock PIN updated")

    def has_pin(self) -> bool:
        return self.store.load().unlock.pin is not None

    def verify_pin(self, entered: str) -> bool:
        stored = self.store.load().unlock.pin
        if stored is None or not is_valid_pin(entered):
            return False
        return hmac.compare_digest(entered, stored)

    def unlock_with_pin(self, entered: str) -> bool:
        if not self.verify_pin(entered):
            logger.warning("Unlock attempt with wrong PIN")
            return False
        logger.info("Session unlocked with PIN")
        return self.sessions.end(completed=False)

    # One-time codes

    def set_partner(self, destination: str) -> None:
        destination = destination.strip()
        if not destination:
            raise ValueError("Partner destination must not be empty.")
        with self.store.transaction() as state:
            state.unlock.partner_destination = destination
        logger.info(f"Accountability partner set to {destination}")

    def generate_otc(self) -> OneTimeCode:
        """Creates a fresh code, replacing any outstanding one."""
        now_ms = self.clock.now_ms()
        otc = OneTimeCode(
            code=new_code(),
            generated_at_ms=now_ms,
            expires_at_ms=now_ms + int(self.validity.total_seconds() * 1000),
        )
        with self.store.transaction() as state:
            state.otc = otc
        logger.info("Generated one-time unlock code")
        return otc

    def validate_otc(self, entered: str) -> bool:
        """Single use: success and expiry both clear the stored code."""
        with self.store.transaction() as state:
            otc = state.otc
            if otc is None:
                return False
            if self.clock.now_ms() > otc.expires_at_ms:
                logger.info("One-time code expired")
                state.otc = None
                return False
            if not hmac.compare_digest(entered.strip(), otc.code):
                return False
            state.otc = None
        return True

    def unlock_with_code(self, entered: str) -> bool:
        if not self.validate_otc(entered):
            logger.warning("Unlock attempt with invalid one-time code")
            return False
        logger.info("Session unlocked with partner code")
        return self.sessions.end(completed=False)

    def otc_remaining_ms(self) -> int:
        otc = self.store.load().otc
        if otc is None:
            return 0
        return max(0, otc.expires_at_ms - self.clock.now_ms())

    def request_delivery(self, destination: str | None = None) -> bool:
        """Generates a code and sends it to the partner.

        On failure the just-generated code is cleared again so that no
        valid code the partner never received stays outstanding.
        """
        destination = destination or self.store.load().unlock.partner_destination
        if not destination:
            logger.warning("No accountability partner configured")
            return False
        if self.transport is None:
            logger.warning("No delivery transport configured")
            return False

        otc = self.generate_otc()
        try:
            delivered = self.transport.send(otc.code, destination)
        except Exception:
            logger.exception("Unlock code delivery raised")
            delivered = False

        if not delivered:
            with self.store.transaction() as state:
                if state.otc is not None and state.otc.code == otc.code:
                    state.otc = None
            logger.warning(f"Failed to deliver unlock code to {destination}")
        return delivered

    def request_delivery_async(self, destination: str | None = None) -> Future:
        return self._executor.submit(self.request_delivery, destination)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
